"""Command handlers for the maintenance CLI.

Each handler follows the same shape: optional confirmation, a write to the
healthcheck marker, a call into the process terminator and some operator
messaging. Aborts are raised as :mod:`iobmaint.errors` exceptions before any
side effect takes place.
"""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from rich.console import Console

from .config import DelayConfig
from .errors import ExternalOperationError, UserDeclinedError
from .logging import OperationScope
from .prompts import Confirmer
from .providers.iobroker import IoBrokerError, IoBrokerProvider
from .providers.processes import MatchStatus, ProcessError, ProcessProvider
from .state import LifecycleState, StateStore
from .terminator import ProcessTerminator, StopOutcome, StopReport


@dataclass(slots=True)
class CommandResult:
    """Outcome reported back to the CLI for logging."""

    message: str
    changed: int = 0


@dataclass(slots=True)
class MaintenanceController:
    """Implements status/on/off/upgrade/restart for one CLI invocation."""

    state: StateStore
    terminator: ProcessTerminator
    processes: ProcessProvider
    iobroker: IoBrokerProvider
    confirmer: Confirmer
    console: Console
    delays: DelayConfig = field(default_factory=DelayConfig)
    forced_signal: str = "KILL"
    auto_confirm: bool = False
    kill_by_name: bool = False
    op: OperationScope | None = None
    sleep: Callable[[float], None] = time.sleep

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    def status(self) -> CommandResult:
        """Report whether maintenance mode is active."""
        current = self.state.current_state()
        self._step("state.read", status="info", detail=current.value)
        if current is LifecycleState.MAINTENANCE:
            self.console.print("Maintenance mode is turned ON.")
        else:
            self.console.print("Maintenance mode is turned OFF.")
        return CommandResult(f"Lifecycle state is {current.value}.")

    def enable_maintenance(self, *, auto_confirm: bool | None = None) -> CommandResult:
        """Switch maintenance mode on and stop ioBroker."""
        if self.state.is_maintenance():
            self.console.print("Maintenance mode is already turned ON.")
            self._step("state.check", status="info", detail="already maintenance")
            return CommandResult("Maintenance mode already enabled.")

        self.console.print(
            "You are now going to stop ioBroker and activate maintenance mode for this container."
        )
        if not self.kill_by_name:
            self.require_confirmation(auto_confirm=auto_confirm)

        self.console.print("Activating maintenance mode...")
        self.write_state(LifecycleState.MAINTENANCE)
        self.sleep(self.delays.after_maintenance)
        self.stop_iobroker()
        return CommandResult("Maintenance mode enabled.", changed=2)

    def disable_maintenance(self) -> CommandResult:
        """Leave maintenance mode by stopping the container's processes."""
        if not self.state.is_maintenance():
            self.console.print("Maintenance mode is already turned OFF.")
            self._step("state.check", status="info", detail="not in maintenance")
            return CommandResult("Maintenance mode already disabled.")

        self.console.print("You are now going to deactivate maintenance mode for this container.")
        self.console.print(
            "Depending on the restart policy, your container will be stopped or restarted "
            "immediately."
        )
        self.require_confirmation()

        self.console.print(
            "Deactivating maintenance mode and forcing container to stop or restart..."
        )
        self.write_state(LifecycleState.STOPPING)
        self.kill_service_user()
        self.console.print("Done.")
        return CommandResult("Maintenance mode disabled.", changed=2)

    def upgrade(self) -> CommandResult:
        """Enter maintenance mode, upgrade the js-controller and recycle the container."""
        self.console.print("You are now going to upgrade your js-controller.")
        self.console.print(
            "As this will change data in /opt/iobroker, make sure you have a backup!"
        )
        self.console.print(
            "During the upgrade process, the container will automatically switch into "
            "maintenance mode and stop ioBroker."
        )
        self.console.print(
            "Depending on the restart policy, your container will be stopped or restarted "
            "automatically after the upgrade."
        )
        self.require_confirmation()

        if not self.state.is_maintenance():
            self.enable_maintenance(auto_confirm=True)

        self.console.print("Upgrading js-controller...")
        try:
            self.iobroker.update()
            self._step("iobroker.update")
            self.sleep(self.delays.between_steps)
            self.iobroker.upgrade_self()
            self._step("iobroker.upgrade_self")
        except IoBrokerError as exc:
            self._step("iobroker.upgrade", status="error", detail=str(exc))
            raise ExternalOperationError(
                f"js-controller upgrade failed: {exc} Maintenance mode is still active."
            ) from exc
        self.sleep(self.delays.between_steps)
        self.console.print("Done.")

        self.schedule_container_stop(self.delays.before_stop)
        return CommandResult("js-controller upgraded.", changed=3)

    def restart(self) -> CommandResult:
        """Stop ioBroker (unless already in maintenance) and recycle the container."""
        self.console.print("You are now going to call a restart of your container.")
        self.console.print("Restarting will work depending on the configured restart policy.")
        self.require_confirmation()

        if not self.state.is_maintenance():
            self.stop_iobroker()

        self.schedule_container_stop(self.delays.before_stop)
        return CommandResult("Container restart requested.", changed=2)

    # ------------------------------------------------------------------
    # Building blocks shared with the restore workflow
    # ------------------------------------------------------------------
    def require_confirmation(self, *, auto_confirm: bool | None = None) -> None:
        """Ask the operator to continue, raising :class:`UserDeclinedError` on refusal."""
        auto = self.auto_confirm if auto_confirm is None else auto_confirm
        if not self.confirmer.confirm(auto_confirmed=auto):
            self._step("confirm.declined", status="warning")
            raise UserDeclinedError()
        self._step("confirm.accepted", status="info", detail="auto" if auto else "operator")

    def write_state(self, state: LifecycleState) -> None:
        """Persist *state* to the healthcheck marker."""
        try:
            self.state.set_state(state)
        except OSError as exc:
            self._step("state.write", status="error", detail=str(exc))
            raise ExternalOperationError(
                f"Cannot write healthcheck file {self.state.path}: {exc}"
            ) from exc
        self._step("state.write", detail=state.value)

    def stop_iobroker(self) -> StopReport:
        """Stop ioBroker through the terminator, printing progress dots."""
        self.console.print("Stopping ioBroker...", end="")
        try:
            report = self.terminator.stop(kill_by_name=self.kill_by_name, on_tick=self._tick)
        except ProcessError as exc:
            self.console.print()
            self._step("process.stop", status="error", detail=str(exc))
            raise ExternalOperationError(f"Stopping ioBroker failed: {exc}") from exc

        if report.outcome is StopOutcome.FATAL:
            self.console.print()
            self._step("process.stop", status="error", detail=report.outcome.value)
            raise ExternalOperationError(
                "Stopping ioBroker failed: pkill reported a syntax or fatal error."
            )
        if report.outcome is StopOutcome.NOTHING_TO_STOP:
            self.console.print(" ioBroker is not running.")
        elif report.escalated:
            self.console.print()
            self.console.print("Timeout reached. Killing remaining processes...")
            for line in report.leftovers:
                self.console.print(line, markup=False, highlight=False)
            self.console.print("Done.")
        else:
            self.console.print("Done.")
            self.console.print()
        self._step(
            "process.stop",
            detail={"outcome": report.outcome.value, "escalated": report.escalated},
        )
        return report

    def schedule_container_stop(self, delay: float) -> None:
        """Announce, wait *delay* seconds, mark ``stopping`` and kill the service user."""
        self.console.print(f"Container will be stopped or restarted in {delay:g} seconds...")
        self.sleep(delay)
        self.write_state(LifecycleState.STOPPING)
        self.kill_service_user()

    def kill_service_user(self) -> None:
        """Send the forced signal to every process of the service user."""
        self._step("process.signal_user", status="info", detail=self.forced_signal)
        try:
            status = self.processes.signal_user(signal=self.forced_signal)
        except ProcessError as exc:
            raise ExternalOperationError(f"Signalling the service user failed: {exc}") from exc
        if status is MatchStatus.FAILED:
            raise ExternalOperationError(
                f"Signalling processes of user '{self.processes.user}' failed."
            )

    # ------------------------------------------------------------------
    def _tick(self) -> None:
        self.console.print(".", end="")

    def _step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        if self.op is not None:
            self.op.add_step(name, status=status, detail=detail)


__all__ = ["CommandResult", "MaintenanceController"]
