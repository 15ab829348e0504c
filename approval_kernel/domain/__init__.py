"""Pure domain layer: value objects, state machines and decision functions.  ZERO I/O."""
