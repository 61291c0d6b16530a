"""Non-blocking per-environment locks."""

import fcntl
import os
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from driftscan.state.models import utcnow
from driftscan.utils.errors import EnvironmentLockedError, ErrorContext
from driftscan.utils.logging import get_logger

logger = get_logger(__name__)


class EnvironmentLock:
    """An acquired lock on one environment."""

    def __init__(
        self,
        manager: "LockManager",
        environment: str,
        token: str,
        fd: Optional[int] = None
    ):
        self.manager = manager
        self.environment = environment
        self.token = token
        self.acquired_at: datetime = utcnow()
        self._fd = fd
        self.released = False

    def release(self) -> None:
        """Release the lock. Releasing twice is a no-op."""
        self.manager.release(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


class LockManager:
    """Grants at most one lock holder per environment.

    Contention fails immediately with EnvironmentLockedError instead of
    waiting. Locks are tracked in-process and, when a lock directory is
    configured, also with an fcntl lock file so other processes are excluded.
    """

    def __init__(self, lock_dir: Optional[str] = None):
        """Initialize LockManager.

        Args:
            lock_dir: Directory for lock files; in-process locking only when None
        """
        self.lock_dir = Path(lock_dir) if lock_dir else None
        self._held: Dict[str, EnvironmentLock] = {}
        self._mutex = threading.Lock()

    def acquire(self, environment: str) -> EnvironmentLock:
        """Acquire the lock for an environment without blocking.

        Args:
            environment: Environment name

        Returns:
            The acquired lock

        Raises:
            EnvironmentLockedError: If the environment is already locked
        """
        token = uuid.uuid4().hex

        with self._mutex:
            holder = self._held.get(environment)
            if holder is not None:
                raise self._locked_error(environment, holder.token)

            fd = self._acquire_file_lock(environment, token) if self.lock_dir else None
            lock = EnvironmentLock(self, environment, token, fd)
            self._held[environment] = lock

        logger.debug(f"Acquired lock on {environment} (token {token[:8]})")
        return lock

    def release(self, lock: EnvironmentLock) -> None:
        """Release a previously acquired lock."""
        with self._mutex:
            if lock.released:
                return
            lock.released = True

            if self._held.get(lock.environment) is lock:
                del self._held[lock.environment]

            if lock._fd is not None:
                try:
                    fcntl.flock(lock._fd, fcntl.LOCK_UN)
                    os.close(lock._fd)
                finally:
                    lock._fd = None

        logger.debug(f"Released lock on {lock.environment} (token {lock.token[:8]})")

    def is_locked(self, environment: str) -> bool:
        """Check if this process holds the lock for an environment."""
        with self._mutex:
            return environment in self._held

    def holder(self, environment: str) -> Optional[str]:
        """Token of the current in-process lock holder."""
        with self._mutex:
            lock = self._held.get(environment)
            return lock.token if lock else None

    def _acquire_file_lock(self, environment: str, token: str) -> int:
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        lock_path = self.lock_dir / f"{environment}.lock"
        fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR)

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.lseek(fd, 0, os.SEEK_SET)
            other = os.read(fd, 64).decode(errors="replace").strip() or None
            os.close(fd)
            raise self._locked_error(environment, other)
        except OSError:
            os.close(fd)
            raise

        # Record the holder token for diagnostics
        os.ftruncate(fd, 0)
        os.write(fd, token.encode())
        return fd

    @staticmethod
    def _locked_error(environment: str, holder: Optional[str]) -> EnvironmentLockedError:
        return EnvironmentLockedError(
            f"Environment '{environment}' is locked by another plan",
            holder=holder,
            context=ErrorContext(environment=environment, operation="lock"),
            suggestions=[
                "Wait for the running plan to complete or fail, then retry",
                "Remove a stale lock file only if no scanner process is running"
            ]
        )
