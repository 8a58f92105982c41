"""Wrapper around the ``iobroker`` command line interface."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path


class IoBrokerError(RuntimeError):
    """Raised when an ioBroker CLI call fails."""


@dataclass(slots=True)
class IoBrokerProvider:
    """Invoke version, upgrade and restore operations on the ioBroker CLI."""

    bin: str = "iobroker"

    def component_version(self, component: str) -> str:
        """Return the installed version of *component* (e.g. ``js-controller``)."""
        result = self._run_command([self.bin, "version", component], capture_output=True)
        if result.returncode != 0:
            raise IoBrokerError(
                f"'{self.bin} version {component}' failed (exit {result.returncode}): "
                f"{_describe_output(result)}"
            )
        lines = [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]
        if not lines:
            raise IoBrokerError(f"'{self.bin} version {component}' returned no output.")
        return lines[-1]

    def update(self) -> None:
        """Refresh the adapter repository (``iobroker update``)."""
        self._check_streamed(["update"])

    def upgrade_self(self) -> None:
        """Upgrade the js-controller (``iobroker upgrade self``)."""
        self._check_streamed(["upgrade", "self"])

    def restore(self, archive_name: str, *, log_path: Path, force: bool = True) -> int:
        """Run ``iobroker restore`` writing all output to *log_path*.

        Returns the exit status; the caller decides how to report failures.
        """
        args = [self.bin, "restore", archive_name]
        if force:
            args.append("--force")
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("w", encoding="utf-8") as handle:
            try:
                result = subprocess.run(  # noqa: S603 - controlled command execution
                    args,
                    stdout=handle,
                    stderr=subprocess.STDOUT,
                    text=True,
                    check=False,
                )
            except FileNotFoundError as exc:
                raise IoBrokerError(f"{self.bin} not found: {exc}") from exc
        return result.returncode

    # ------------------------------------------------------------------
    def _check_streamed(self, args: Sequence[str]) -> None:
        result = self._run_command([self.bin, *args], capture_output=False)
        if result.returncode != 0:
            joined = " ".join(args)
            raise IoBrokerError(f"'{self.bin} {joined}' failed (exit {result.returncode}).")

    def _run_command(
        self,
        args: Sequence[str],
        *,
        capture_output: bool,
    ) -> subprocess.CompletedProcess[str]:
        try:
            if capture_output:
                return subprocess.run(  # noqa: S603 - controlled command execution
                    list(args),
                    capture_output=True,
                    text=True,
                    check=False,
                )
            return subprocess.run(  # noqa: S603 - controlled command execution
                list(args),
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise IoBrokerError(f"{args[0]} not found: {exc}") from exc


def _describe_output(result: subprocess.CompletedProcess[str]) -> str:
    stdout = getattr(result, "stdout", "") or ""
    stderr = getattr(result, "stderr", "") or ""
    return stderr.strip() or stdout.strip() or "no output"


__all__ = ["IoBrokerError", "IoBrokerProvider"]
