"""In-memory resource cache."""

from hahaha.cache.resource_cache import ChangeListener, ResourceCache

__all__ = ["ChangeListener", "ResourceCache"]
