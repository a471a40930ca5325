"""Lock client abstraction - Redis or in-memory fallback."""
import time
import uuid
from contextlib import contextmanager
from threading import Lock
from typing import Optional
import logging

logger = logging.getLogger(__name__)

# Delete the key only while it still holds the caller's token, atomically on the server
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class LockClient:
    """Named, expiring, non-blocking locks. Uses Redis if available, else in-memory."""

    def __init__(self, redis_url: Optional[str] = None):
        self.backend = "memory"
        self._memory_locks: dict[str, tuple[str, float]] = {}
        self._memory_lock = Lock()

        if redis_url:
            try:
                import redis
                client = redis.from_url(redis_url, decode_responses=True)
                client.ping()
                self._use_redis(client)
                logger.info("Using Redis for locks")
            except Exception as e:
                logger.warning(f"Redis not available, using in-memory locks: {e}")
        else:
            logger.info("Using in-memory locks (Redis URL not provided)")

    def _use_redis(self, client) -> None:
        self.redis = client
        self._release_script = client.register_script(RELEASE_SCRIPT)
        self.backend = "redis"

    def acquire(self, name: str, timeout: int = 10) -> Optional[str]:
        """Try to take ``name`` for ``timeout`` seconds.

        Returns:
            A release token, or None when somebody else holds the lock.
        """
        token = uuid.uuid4().hex
        if self.backend == "redis":
            acquired = self.redis.set(f"lock:{name}", token, nx=True, ex=timeout)
            return token if acquired else None

        now = time.monotonic()
        with self._memory_lock:
            held = self._memory_locks.get(name)
            if held and held[1] > now:
                return None
            self._memory_locks[name] = (token, now + timeout)
        return token

    def release(self, name: str, token: str) -> bool:
        """Release ``name`` if ``token`` still owns it."""
        if self.backend == "redis":
            return bool(self._release_script(keys=[f"lock:{name}"], args=[token]))

        with self._memory_lock:
            held = self._memory_locks.get(name)
            if held and held[0] == token:
                del self._memory_locks[name]
                return True
            return False

    def is_locked(self, name: str) -> bool:
        if self.backend == "redis":
            return bool(self.redis.exists(f"lock:{name}"))
        with self._memory_lock:
            held = self._memory_locks.get(name)
            return bool(held and held[1] > time.monotonic())

    @contextmanager
    def single_flight(self, name: str, timeout: int = 600):
        """Context manager yielding True when this caller holds ``name``.

        Callers that get False should skip their work; another worker is on it.
        """
        token = self.acquire(name, timeout=timeout)
        try:
            yield token is not None
        finally:
            if token is not None:
                self.release(name, token)
