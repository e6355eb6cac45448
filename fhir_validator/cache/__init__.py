from .value_set_cache import MemoryValueSetCache, RedisValueSetCache, ValueSetCache

__all__ = ["MemoryValueSetCache", "RedisValueSetCache", "ValueSetCache"]
