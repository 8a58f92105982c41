"""File locking primitives for mutating maintenance commands.

The healthcheck marker is written without locking by the container start
script, so the lock only serialises iobmaint invocations against each other:
two operators running ``maintenance upgrade`` and ``maintenance restore`` at
the same time would otherwise interleave state writes and kill signals.
"""
from __future__ import annotations

import fcntl
import json
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

CONTROLLER_LOCK_NAME = "iobmaint"
_POLL_INTERVAL = 0.05


class LockError(RuntimeError):
    """Raised when a lock file cannot be opened."""


class LockTimeoutError(LockError):
    """Raised when a lock is still held by another process after the timeout."""


@dataclass(slots=True)
class LockHandle:
    """Information about an acquired lock."""

    path: Path
    wait_ms: int


@dataclass(slots=True)
class LockManager:
    """Create and acquire exclusive lock files under ``runtime_dir``."""

    runtime_dir: Path
    default_timeout: float = 5.0

    def lock_path(self, name: str) -> Path:
        """Return the lock file path for *name*."""
        return self.runtime_dir / f"{name}.lock"

    @contextmanager
    def controller_lock(self, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the lock shared by all mutating maintenance commands."""
        with self.acquire(CONTROLLER_LOCK_NAME, timeout=timeout) as handle:
            yield handle

    @contextmanager
    def acquire(self, name: str, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Acquire the lock called *name*, waiting up to *timeout* seconds."""
        path = self.lock_path(name)
        limit = self.default_timeout if timeout is None else timeout
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as exc:
            raise LockError(f"Unable to open lock file {path}: {exc}") from exc

        started = time.monotonic()
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() - started >= limit:
                        raise LockTimeoutError(
                            f"Timed out after {limit:.1f}s waiting for lock {path}."
                        ) from None
                    time.sleep(_POLL_INTERVAL)

            wait_ms = int((time.monotonic() - started) * 1000)
            _write_metadata(fd, path)
            try:
                yield LockHandle(path=path, wait_ms=wait_ms)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


def _write_metadata(fd: int, path: Path) -> None:
    payload = {
        "pid": os.getpid(),
        "path": str(path),
        "acquired_at": datetime.now(tz=UTC).isoformat(timespec="seconds"),
    }
    data = json.dumps(payload).encode("utf-8")
    os.ftruncate(fd, 0)
    os.lseek(fd, 0, os.SEEK_SET)
    os.write(fd, data)


__all__ = ["LockError", "LockHandle", "LockManager", "LockTimeoutError"]
