"""Pure domain types for the workflow kernel. ZERO I/O."""
