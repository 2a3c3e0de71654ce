"""Output parsers for qstat, qsub, qdel, qhost, qconf and qping."""
