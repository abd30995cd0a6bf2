"""Background task definitions."""
