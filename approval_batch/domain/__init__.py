"""Pure scheduling types and evaluation.  ZERO I/O."""
