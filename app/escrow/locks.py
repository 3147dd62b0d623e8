"""
Redis-backed distributed lock.

Used where a unit of work must not overlap across processes or servers:
- one money movement per case at a time (payout_service); dispute
  opening and admin status changes refuse while it is held
- one purge tick at a time (workers.purge_worker)

The lock only narrows races. Correctness still rests on database
constraints (unique Payout per case) and conditional updates.

Usage:
    from escrow.locks import DistributedLock, case_payout_lock

    with case_payout_lock(case_id):
        settle_payout(case_id)

    # Skip instead of waiting when another worker holds the lock
    try:
        with DistributedLock("escrow:purge", ttl=300, blocking=False):
            purge_tick()
    except LockAcquisitionError:
        pass
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING

from django_redis import get_redis_connection

from escrow.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Features:
        - TTL releases the lock if the holder crashes
        - Token-based ownership: only the holder can release
        - Blocking (with timeout) and non-blocking acquisition
        - Context manager support

    Args:
        key: Lock identifier (will be prefixed with "lock:")
        ttl: Lock TTL in seconds
        blocking: If True, acquire() polls until the lock is free
        timeout: Maximum wait time in seconds (only if blocking=True)

    Note:
        The TTL must exceed the expected duration of the guarded work,
        including bounded gateway timeouts.
    """

    # Delete only if we still own the key
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Returns:
            True once the lock is held

        Raises:
            LockAcquisitionError: If the lock is held elsewhere (non-blocking)
                or could not be obtained within timeout (blocking)
        """
        token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            end_time = time.time() + self.timeout
            while time.time() < end_time:
                if self._try_acquire(redis, token):
                    return True
                time.sleep(0.05)

            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis, token):
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def _try_acquire(self, redis: Redis, token: str) -> bool:
        if redis.set(self.key, token, nx=True, ex=self.ttl):
            self._token = token
            return True
        return False

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Returns:
            True if released, False if we did not hold it (or it expired)
        """
        if self._token is None:
            return False

        redis = self._get_redis()
        result = redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


# Payout lock TTL (seconds); covers bounded Stripe timeouts and retries
PAYOUT_LOCK_TTL = 120

# Wait for a running payout before giving up (seconds)
PAYOUT_LOCK_TIMEOUT = 10.0


def case_payout_lock(case_id, *, blocking: bool = True) -> DistributedLock:
    """Lock held for the whole of a payout on one case."""
    return DistributedLock(
        f"escrow:payout:{case_id}",
        ttl=PAYOUT_LOCK_TTL,
        blocking=blocking,
        timeout=PAYOUT_LOCK_TIMEOUT,
    )


__all__ = [
    "DistributedLock",
    "case_payout_lock",
]
