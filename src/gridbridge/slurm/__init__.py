"""Output parsers for squeue, sbatch, scancel, sinfo and scontrol."""
