"""Signal and inspect processes owned by the service user via pkill/pgrep."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum


class ProcessError(RuntimeError):
    """Raised when pkill/pgrep cannot be executed."""


class MatchStatus(Enum):
    """Outcome of a pkill/pgrep invocation (procps exit status 0, 1, >= 2)."""

    MATCHED = "matched"
    NO_MATCH = "no-match"
    FAILED = "failed"

    @classmethod
    def from_returncode(cls, returncode: int) -> MatchStatus:
        """Map a procps exit status to a :class:`MatchStatus`."""
        if returncode == 0:
            return cls.MATCHED
        if returncode == 1:
            return cls.NO_MATCH
        return cls.FAILED


@dataclass(slots=True)
class ProcessProvider:
    """Thin wrapper around ``pkill``/``pgrep`` scoped to one user."""

    user: str
    pkill_bin: str = "pkill"
    pgrep_bin: str = "pgrep"

    def signal_matching(self, pattern: str, *, signal: str = "TERM") -> MatchStatus:
        """Send *signal* to the user's processes whose command line matches *pattern*."""
        result = self._run([self.pkill_bin, "--signal", signal, "-u", self.user, "-f", pattern])
        return MatchStatus.from_returncode(result.returncode)

    def signal_user(self, *, signal: str = "KILL") -> MatchStatus:
        """Send *signal* to every process owned by the service user."""
        result = self._run([self.pkill_bin, "--signal", signal, "-u", self.user])
        return MatchStatus.from_returncode(result.returncode)

    def any_running(self, pattern: str) -> bool:
        """Return True unless pgrep reports that nothing matches *pattern*."""
        result = self._run([self.pgrep_bin, "-u", self.user, "-f", pattern])
        return MatchStatus.from_returncode(result.returncode) is not MatchStatus.NO_MATCH

    def list_matching(self, pattern: str) -> list[str]:
        """Return ``pid command`` lines for the user's processes matching *pattern*."""
        result = self._run([self.pgrep_bin, "--list-full", "-u", self.user, "-f", pattern])
        if MatchStatus.from_returncode(result.returncode) is not MatchStatus.MATCHED:
            return []
        return [line for line in (result.stdout or "").splitlines() if line.strip()]

    # ------------------------------------------------------------------
    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(  # noqa: S603 - controlled command execution
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ProcessError(f"{args[0]} not found: {exc}") from exc


__all__ = ["MatchStatus", "ProcessError", "ProcessProvider"]
