"""Concurrency control for deployment saga operations.

Provides per-deployment locking so two operations on the same request ID
inside one process run one after the other. Writers in other processes are
caught by the version column on the deployment record.
"""

import asyncio
import logging
import weakref
from typing import Optional

from contractdeploy.errors import ConcurrentModificationError

logger = logging.getLogger(__name__)

# Global lock registry: deployment key -> asyncio.Lock.
# An entry lives only while some DeploymentLock holds or awaits it.
_deployment_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
    weakref.WeakValueDictionary()
)


def get_deployment_lock(key: str) -> asyncio.Lock:
    """Get or create the lock for a deployment.

    Args:
        key: Request ID (or internal ID before one is assigned)

    Returns:
        asyncio.Lock for the deployment. The caller must keep a reference
        for as long as it uses the lock.
    """
    lock = _deployment_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _deployment_locks[key] = lock
    return lock


class DeploymentLock:
    """Context manager for exclusive access to one deployment saga.

    Example:
        async with DeploymentLock(request_id, operation="approve"):
            record = await repo.get_by_request_id(request_id)
            ...
    """

    def __init__(
        self,
        key: str,
        timeout: Optional[float] = 30.0,
        operation: str = "deployment_operation",
    ):
        """Initialize the lock.

        Args:
            key: Request ID of the deployment
            timeout: Maximum time to wait for lock (None = wait forever)
            operation: Description of the operation for logging
        """
        self.key = key
        self.timeout = timeout
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "DeploymentLock":
        """Acquire the lock."""
        self._lock = get_deployment_lock(self.key)

        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
            self._acquired = True
            logger.debug(f"Lock acquired for deployment {self.key}: {self.operation}")
            return self

        except asyncio.TimeoutError:
            logger.warning(
                f"Lock timeout for deployment {self.key} after {self.timeout}s: {self.operation}"
            )
            raise LockTimeoutError(
                f"Deployment {self.key} is busy with another operation"
            )

    def is_busy(self) -> bool:
        """Check whether another operation currently holds the lock."""
        return get_deployment_lock(self.key).locked()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Release the lock."""
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            self._lock = None
            logger.debug(f"Lock released for deployment {self.key}: {self.operation}")
        return False


class LockTimeoutError(ConcurrentModificationError):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


def clear_deployment_locks() -> None:
    """Clear all deployment locks (useful for testing)."""
    _deployment_locks.clear()
