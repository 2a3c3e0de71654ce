from .prometheus import PipelineMetrics, start_metrics_server

__all__ = ["PipelineMetrics", "start_metrics_server"]
