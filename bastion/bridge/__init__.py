"""Bridge — typed result and payload contracts."""
