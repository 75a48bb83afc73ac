"""
Process-local TTL cache
Used for the notice board feed and curriculum lookups
"""
import hashlib
import json
import threading
import time
from functools import wraps


class CacheManager:
    _store = {}
    _lock = threading.Lock()
    DEFAULT_TTL = 300

    @classmethod
    def get(cls, key):
        with cls._lock:
            entry = cls._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at < time.time():
                del cls._store[key]
                return None
            return value

    @classmethod
    def set(cls, key, value, ttl=None):
        ttl = cls.DEFAULT_TTL if ttl is None else ttl
        expires_at = time.time() + ttl if ttl > 0 else None
        with cls._lock:
            cls._store[key] = (value, expires_at)
        return True

    @classmethod
    def delete(cls, key):
        with cls._lock:
            return cls._store.pop(key, None) is not None

    @classmethod
    def delete_prefix(cls, prefix):
        with cls._lock:
            for key in [k for k in cls._store if k.startswith(prefix)]:
                del cls._store[key]

    @classmethod
    def clear(cls):
        with cls._lock:
            cls._store.clear()

    @staticmethod
    def generate_key(*args, **kwargs):
        raw = json.dumps({'args': args, 'kwargs': kwargs}, sort_keys=True, default=str)
        return hashlib.md5(raw.encode('utf-8')).hexdigest()


def cached(ttl=None, prefix=None):
    """Cache a function's return value keyed on its arguments"""
    def decorator(f):
        key_prefix = prefix or f.__name__

        @wraps(f)
        def wrapper(*args, **kwargs):
            key = f"{key_prefix}:{CacheManager.generate_key(*args, **kwargs)}"
            value = CacheManager.get(key)
            if value is not None:
                return value
            value = f(*args, **kwargs)
            if value is not None:
                CacheManager.set(key, value, ttl)
            return value
        wrapper.cache_prefix = key_prefix
        return wrapper
    return decorator
