from .base import BaseStore
from .memory import MemoryStore
from .oauth import OAuthStore
from .redis import RedisStore


def create_store(url: str, socket_timeout: float = 5.0) -> BaseStore:
    """Build a store from a URL. ``memory://`` selects the in-process store."""
    if url.startswith("memory://"):
        return MemoryStore()
    return RedisStore.from_url(url, socket_timeout=socket_timeout)


__all__ = [
    "BaseStore",
    "MemoryStore",
    "OAuthStore",
    "RedisStore",
    "create_store",
]
