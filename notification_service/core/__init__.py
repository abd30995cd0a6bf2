"""Core layer: settings, exceptions and database foundations."""
