"""
Concurrency control utilities for payment operations.

Two complementary mechanisms:

1. **Distributed Locks** (DistributedLock)
   - Redis-based mutual exclusion across workers
   - TTL prevents deadlocks from crashed processes
   - Used to keep two scheduled runs of the same job from overlapping.
     It only saves work: correctness comes from row locks and the
     provider duplicate-guard.

2. **Row Locks** (lock_row)
   - SELECT ... FOR UPDATE inside the caller's transaction
   - Every TransferRecord transition re-reads the row under this lock and
     checks the expected pre-state before writing (conditional update)

Usage:

    from payments.locks import DistributedLock, lock_row

    with DistributedLock("payments:process_transfers", ttl=900, blocking=False):
        run_transfers()

    with transaction.atomic():
        record = lock_row(TransferRecord, record_id)
        if record.status == TransferStatus.READY:
            record.mark_funds_moved(transfer_id)
            record.save()
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.db import models

from django_redis import get_redis_connection

from payments.exceptions import LockAcquisitionError, PaymentNotFoundError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Features:
        - Automatic TTL prevents deadlocks from crashed processes
        - Token-based ownership prevents release by another process
        - Blocking and non-blocking acquisition
        - Context manager support

    Example:
        try:
            with DistributedLock("payments:process_payouts", ttl=900, blocking=False):
                PayoutProcessor(deps).run()
        except LockAcquisitionError:
            logger.info("Another payout run is in progress")

    Args:
        key: Lock identifier (prefixed with "lock:")
        ttl: Lock TTL in seconds (auto-releases after this time)
        blocking: If True, acquire() waits until the lock is available
        timeout: Maximum wait time in seconds (blocking mode only)

    Note:
        The TTL should exceed the expected run duration.
    """

    # Atomic check-and-delete so only the owner releases
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
            True once acquired

        Raises:
            LockAcquisitionError: If the lock is held elsewhere (non-blocking)
                or could not be acquired within the timeout (blocking)
        """
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            end_time = time.time() + self.timeout
            while time.time() < end_time:
                if self._try_acquire(redis):
                    return True
                time.sleep(0.05)

            self._token = None
            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis):
            self._token = None
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def _try_acquire(self, redis: Redis) -> bool:
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Returns:
            True if released, False if we did not hold it
        """
        if self._token is None:
            return False

        redis = self._get_redis()
        result = redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

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


# =============================================================================
# Row Locks
# =============================================================================


def lock_row(model_class: type[T], pk: Any) -> T:
    """
    Re-read a row with SELECT ... FOR UPDATE.

    Must be called inside transaction.atomic(); the lock is held until the
    transaction ends. Callers check the expected state on the returned
    instance before applying a transition.

    Raises:
        PaymentNotFoundError: If the row does not exist
    """
    instance = model_class.objects.select_for_update().filter(pk=pk).first()
    if instance is None:
        model_name = model_class.__name__
        raise PaymentNotFoundError(
            f"{model_name} {pk} not found",
            details={"pk": str(pk)},
        )
    return instance


__all__ = [
    "DistributedLock",
    "lock_row",
]
