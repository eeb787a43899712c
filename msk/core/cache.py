"""
Redis distributed lock used to serialise scheduled sync runs.
"""

import uuid
from typing import Optional

import redis

from msk.config.settings import settings
from msk.core.logging import logger


class CacheManager:
    """Redis 管理器（仅用于分布式锁）"""

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self._redis_client = redis_client

    @property
    def redis_client(self) -> redis.Redis:
        # 延迟连接，CLI 场景不依赖 Redis
        if self._redis_client is None:
            self._redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        return self._redis_client

    def acquire_lock(self, key: str, timeout: int = 300, value: Optional[str] = None) -> bool:
        """尝试获取分布式锁（使用 SET NX EX）

        Args:
            key: 锁的 key
            timeout: 锁的超时时间（秒）
            value: 锁的值（用于标识锁的持有者），如果不提供则自动生成 UUID

        Returns:
            如果成功获取锁返回 True，否则返回 False
        """
        lock_value = value if value else str(uuid.uuid4())
        try:
            result = self.redis_client.set(key, lock_value, nx=True, ex=timeout)
        except redis.RedisError as e:
            logger.error(f"获取锁失败: key={key}, 错误={e}")
            return False
        return bool(result)

    def release_lock(self, key: str, value: str) -> bool:
        """释放分布式锁（Lua 脚本保证只有持有者才能释放）"""
        lua_script = """
        if redis.call("get", KEYS[1]) == ARGV[1] then
            return redis.call("del", KEYS[1])
        else
            return 0
        end
        """
        try:
            result = self.redis_client.eval(lua_script, 1, key, value)
        except redis.RedisError as e:
            logger.error(f"释放锁失败: key={key}, 错误={e}")
            return False
        return bool(result)


# 全局缓存管理器实例
cache_manager = CacheManager()
