from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Protocol, Tuple, TypeVar

from fsfollower.core.config import AppConfig
from fsfollower.core.errors import ExclusionLostError

T = TypeVar("T")

logger = logging.getLogger("exclusion")


class ExclusionProvider(Protocol):
    name: str

    def run_exclusive(self, fn: Callable[[], T]) -> Tuple[bool, Optional[T]]:
        """Run ``fn`` while holding the lock. Returns ``(False, None)`` when it was not acquired."""
        ...

    def keepalive(self) -> None:
        """Called by the running pass between events; raises ExclusionLostError when the lock is gone."""
        ...


class LocalExclusion:
    """Serializes passes inside one process."""

    def __init__(self, name: str = "fsf:sync:file", blocking_timeout: Optional[float] = 0):
        self.name = name
        self.blocking_timeout = blocking_timeout
        self._lock = threading.Lock()

    def _acquire(self) -> bool:
        if self.blocking_timeout is None:
            return self._lock.acquire()
        if self.blocking_timeout <= 0:
            return self._lock.acquire(blocking=False)
        return self._lock.acquire(timeout=self.blocking_timeout)

    def run_exclusive(self, fn: Callable[[], T]) -> Tuple[bool, Optional[T]]:
        if not self._acquire():
            logger.warning("lock_busy name=%s mode=standalone", self.name)
            return False, None
        try:
            return True, fn()
        finally:
            self._lock.release()

    def keepalive(self) -> None:
        pass


class RedisExclusion:
    """Serializes passes across every replica sharing one redis."""

    def __init__(
        self,
        redis_client: Any,
        name: str = "fsf:sync:file",
        lock_timeout: Optional[float] = 300,
        blocking_timeout: float = 0,
    ):
        self.redis = redis_client
        self.name = name
        self.lock_timeout = lock_timeout
        self.blocking_timeout = blocking_timeout
        self._held = None

    def run_exclusive(self, fn: Callable[[], T]) -> Tuple[bool, Optional[T]]:
        from redis.exceptions import RedisError

        lock = self.redis.lock(self.name, timeout=self.lock_timeout, thread_local=False)
        try:
            if self.blocking_timeout > 0:
                acquired = lock.acquire(blocking=True, blocking_timeout=self.blocking_timeout)
            else:
                acquired = lock.acquire(blocking=False)
        except RedisError as e:
            logger.warning("lock_acquire_failed name=%s mode=cluster error=%s", self.name, e)
            return False, None
        if not acquired:
            logger.info("lock_busy name=%s mode=cluster", self.name)
            return False, None

        self._held = lock
        try:
            return True, fn()
        finally:
            self._held = None
            try:
                lock.release()
            except RedisError as e:
                # LockError here means the lease expired while the pass ran.
                logger.warning("lock_release_failed name=%s error=%s", self.name, e)

    def keepalive(self) -> None:
        """Reset the lease to its full length so a long pass keeps the lock."""
        from redis.exceptions import RedisError

        lock = self._held
        if lock is None or self.lock_timeout is None:
            return
        try:
            lock.reacquire()
        except RedisError as e:
            raise ExclusionLostError(f"lock_lost: name={self.name}: {e}") from e


def build_redis_client(cfg: AppConfig):
    import redis

    return redis.Redis(
        host=cfg.redis.host,
        port=cfg.redis.port,
        db=cfg.redis.db,
        password=cfg.redis.password or None,
        socket_timeout=cfg.client.timeout_sec,
    )


def build_exclusion(cfg: AppConfig, redis_client: Any = None) -> ExclusionProvider:
    if cfg.sync.mode == "cluster":
        return RedisExclusion(
            redis_client if redis_client is not None else build_redis_client(cfg),
            name=cfg.sync.lock_name,
            lock_timeout=cfg.redis.lock_timeout_sec,
            blocking_timeout=cfg.redis.blocking_timeout_sec,
        )
    return LocalExclusion(name=cfg.sync.lock_name)
