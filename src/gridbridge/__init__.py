"""Uniform job, queue, host and health operations over SLURM and SGE command-line tools."""

__version__ = "0.1.0"
