"""User directory used to resolve notification recipients."""

from .models import User
from .repository import UserRepository

__all__ = ["User", "UserRepository"]
