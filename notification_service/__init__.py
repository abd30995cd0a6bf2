"""Multi-channel notification delivery service."""
