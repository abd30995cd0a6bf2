"""Shared key/value store."""

from .redis import CounterStore, RedisCounterStore

__all__ = ["CounterStore", "RedisCounterStore"]
