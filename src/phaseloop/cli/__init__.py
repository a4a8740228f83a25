"""``phaseloop`` command line."""
