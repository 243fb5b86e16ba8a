"""Code store backends.

- CodeStore: interface consumed by the pairing manager
- MemoryCodeStore: in-process dict with TTL
- RedisRestCodeStore: Redis over its REST command API
"""

from .base import CodeStore
from .memory import MemoryCodeStore
from .redis_rest import RedisRestCodeStore

__all__ = [
    "CodeStore",
    "MemoryCodeStore",
    "RedisRestCodeStore",
]
