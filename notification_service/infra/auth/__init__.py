"""Authentication support: token revocation."""

from .blacklist import TokenBlacklist

__all__ = ["TokenBlacklist"]
