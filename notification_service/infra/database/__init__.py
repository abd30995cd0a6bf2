"""Database infrastructure: engine and session lifecycle."""

from .session import create_engine, create_session_factory, create_tables, session_scope

__all__ = ["create_engine", "create_session_factory", "create_tables", "session_scope"]
