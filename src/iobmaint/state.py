"""Healthcheck marker file holding the container lifecycle state.

The container start script and the Docker healthcheck read the same file.
The start script writes ``starting`` and ``normal``; iobmaint only ever writes
``maintenance`` and ``stopping``. Because the writers never produce the same
tokens, no locking is applied to the marker itself.
"""
from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

LOGGER = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    """Tokens understood by the healthcheck marker."""

    NORMAL = "normal"
    STARTING = "starting"
    MAINTENANCE = "maintenance"
    STOPPING = "stopping"

    @classmethod
    def parse(cls, raw: str) -> LifecycleState:
        """Return the state for *raw*, falling back to ``NORMAL``."""
        token = raw.strip()
        for state in cls:
            if state.value == token:
                return state
        return cls.NORMAL


@dataclass(frozen=True)
class StateStore:
    """Read and atomically replace the healthcheck marker file."""

    path: Path

    def __post_init__(self) -> None:
        """Normalise the marker path after initialisation."""
        object.__setattr__(self, "path", Path(self.path).expanduser())

    def current_state(self) -> LifecycleState:
        """Return the persisted state; missing or unreadable files mean ``NORMAL``."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return LifecycleState.NORMAL
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("Cannot read healthcheck file %s: %s", self.path, exc)
            return LifecycleState.NORMAL
        return LifecycleState.parse(raw)

    def is_maintenance(self) -> bool:
        """Return True when maintenance mode is active."""
        return self.current_state() is LifecycleState.MAINTENANCE

    def is_starting(self) -> bool:
        """Return True while the container start script is still running."""
        return self.current_state() is LifecycleState.STARTING

    def set_state(self, state: LifecycleState) -> None:
        """Replace the marker with *state*; ``NORMAL`` removes the file."""
        if state is LifecycleState.NORMAL:
            self.path.unlink(missing_ok=True)
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=f".{self.path.name}."
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(f"{state.value}\n")
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, self.path)
        finally:
            tmp_path.unlink(missing_ok=True)
        LOGGER.debug("Healthcheck state set to %s", state.value)


__all__ = ["LifecycleState", "StateStore"]
