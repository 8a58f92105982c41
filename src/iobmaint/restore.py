"""Restore ioBroker from a backup archive.

The workflow walks through a small state machine::

    SELECTING -> METADATA_EXTRACTED -> VERSION_RECONCILED -> RESTORING -> DONE
                                                  (any phase) -> ABORTED

Selection, metadata extraction and version reconciliation are read-only.
Maintenance mode is switched on only when the restore is about to run, so
declining a prompt or picking an unusable backup leaves the container as it
was. Once ``iobroker restore`` has started nothing is rolled back: a failed
restore keeps maintenance mode active for diagnosis.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from packaging.version import InvalidVersion, Version
from rich.panel import Panel

from .archive import (
    BackupArchiveError,
    collect_component_versions,
    discover_backups,
    read_archive_member,
)
from .config import BackupConfig
from .controller import CommandResult, MaintenanceController
from .errors import (
    ExternalOperationError,
    MaintenanceError,
    PreconditionError,
    UserDeclinedError,
)
from .providers.iobroker import IoBrokerError
from .state import LifecycleState

RESTORE_NOTICE = (
    "The maintenance script restored iobroker from a backup file.\n"
    "Check {log} to see if restore was successful.\n"
    "When ioBroker starts it will reinstall all Adapters automatically.\n"
    "This might take a looooong time! Please be patient!\n"
    "You can view installation process by taking a look at ioBroker log."
)


class RestorePhase(Enum):
    """Phases of :class:`RestoreOrchestrator`."""

    SELECTING = "selecting"
    METADATA_EXTRACTED = "metadata-extracted"
    VERSION_RECONCILED = "version-reconciled"
    RESTORING = "restoring"
    DONE = "done"
    ABORTED = "aborted"


def describe_version_gap(installed: str, backup: str) -> str | None:
    """Return ``"newer"``/``"older"`` for the backup relative to *installed*."""
    try:
        installed_version = Version(installed)
        backup_version = Version(backup)
    except InvalidVersion:
        return None
    if backup_version > installed_version:
        return "newer"
    if backup_version < installed_version:
        return "older"
    return None


@dataclass(slots=True)
class RestoreOrchestrator:
    """Select a backup, reconcile js-controller versions and run the restore."""

    controller: MaintenanceController
    backups: BackupConfig
    component: str = "js-controller"
    read_metadata: Callable[[Path, str], Mapping[str, object]] = read_archive_member
    phase: RestorePhase = RestorePhase.SELECTING
    selected: Path | None = None
    versions: list[str] = field(default_factory=list)
    installed_version: str | None = None

    def run(self) -> CommandResult:
        """Execute the restore workflow, marking the phase ``ABORTED`` on failure."""
        try:
            return self._run()
        except MaintenanceError:
            self.phase = RestorePhase.ABORTED
            raise

    # ------------------------------------------------------------------
    def _run(self) -> CommandResult:
        controller = self.controller
        console = controller.console
        console.print("You are now going to perform a restore of your iobroker.")
        console.print(
            "During the restore process, the container will automatically switch into "
            "maintenance mode and stop ioBroker."
        )
        console.print(
            "Depending on the restart policy, your container will be stopped or restarted "
            "automatically after the restore."
        )
        controller.require_confirmation()
        console.print()

        if controller.state.is_starting():
            raise PreconditionError(
                "Startup script is still running. Please check container log and wait "
                "until ioBroker is successfully started."
            )

        self.phase = RestorePhase.SELECTING
        archive = self._select_archive()
        self.selected = archive

        backup_version = self._extract_version(archive)
        self.phase = RestorePhase.METADATA_EXTRACTED

        self._reconcile(backup_version)
        self.phase = RestorePhase.VERSION_RECONCILED

        if not controller.state.is_maintenance():
            controller.enable_maintenance(auto_confirm=True)

        self.phase = RestorePhase.RESTORING
        self._restore(archive)

        self._finish()
        self.phase = RestorePhase.DONE
        return CommandResult(f"Restored ioBroker from {archive.name}.", changed=3)

    def _select_archive(self) -> Path:
        controller = self.controller
        console = controller.console
        root = self.backups.root
        files = discover_backups(root)
        if not files:
            raise PreconditionError(
                f"There are no backup files in {root}. Please check and try again."
            )

        if len(files) == 1:
            selected = files[0]
        else:
            console.print(f'There is more than one backup file in "{root}".', markup=False)
            console.print()
            index = controller.confirmer.select(
                [path.name for path in files],
                title="Please select file for restore:",
                question="Enter the number of the backup to restore",
            )
            selected = files[index]
            console.print()

        if not selected.is_file():
            raise PreconditionError(
                f'Backup file "{selected.name}" is no longer available in {root}.'
            )
        console.print(f'Selected backup file is "{selected.name}".', markup=False)
        controller._step("restore.select", detail=selected.name)
        return selected

    def _extract_version(self, archive: Path) -> str:
        controller = self.controller
        detection_error = (
            "There was a problem detecting the js-controller version in the selected "
            "backup file."
        )
        try:
            document = self.read_metadata(archive, self.backups.metadata_member)
        except BackupArchiveError as exc:
            controller._step("restore.extract", status="error", detail=str(exc))
            raise PreconditionError(detection_error) from exc

        self.versions = collect_component_versions(document, self.backups.controller_title)
        controller._step("restore.extract", detail={"versions": list(self.versions)})
        if not any(self.versions):
            raise PreconditionError(detection_error)
        if len(set(self.versions)) > 1:
            raise PreconditionError(
                "Detected different js-controller versions in the selected backup file."
            )
        return self.versions[0]

    def _reconcile(self, backup_version: str) -> None:
        controller = self.controller
        console = controller.console
        console.print("Checking js-controller versions... ", end="")
        try:
            installed = controller.iobroker.component_version(self.component)
        except IoBrokerError as exc:
            console.print("Failed.")
            raise ExternalOperationError(
                f"Could not determine the installed js-controller version: {exc}"
            ) from exc
        self.installed_version = installed
        console.print("Done.")
        console.print()
        console.print(f"Installed js-controller version:  {installed}", highlight=False)
        console.print(f"Backup js-controller version:     {backup_version}", highlight=False)
        console.print()
        controller._step(
            "restore.reconcile",
            status="info",
            detail={"installed": installed, "backup": backup_version},
        )
        if installed == backup_version:
            return

        console.print(
            "The installed js-controller version is different from the version in the "
            "selected backup file."
        )
        gap = describe_version_gap(installed, backup_version)
        if gap is not None:
            console.print(f"The js-controller in the backup is {gap} than the installed one.")
        console.print(
            'If you continue, the script will use the "--force" option to restore your backup.'
        )
        console.print(
            "Although this is normally safe with small version differences, you should know, "
            "that the recommended way is to first install the same js-controller version "
            "before restoring the backup file."
        )
        # The version override is never auto-confirmed.
        if not controller.confirmer.confirm(auto_confirmed=False):
            controller._step("confirm.declined", status="warning", detail="version mismatch")
            raise UserDeclinedError()
        controller._step("confirm.accepted", status="info", detail="version mismatch")

    def _restore(self, archive: Path) -> None:
        controller = self.controller
        console = controller.console
        log_path = self.backups.restore_log
        console.print(f'Restoring ioBroker from "{archive.name}"... ', end="", markup=False)
        try:
            returncode = controller.iobroker.restore(archive.name, log_path=log_path, force=True)
        except (IoBrokerError, OSError) as exc:
            console.print("Failed.")
            controller._step("restore.run", status="error", detail=str(exc))
            raise ExternalOperationError(f"Restore could not be started: {exc}") from exc

        if returncode != 0:
            console.print("Failed.")
            controller._step("restore.run", status="error", detail=f"exit {returncode}")
            raise ExternalOperationError(
                f'Restore failed. For more details see "{log_path}". Please check backup '
                "file location and permissions and try again.",
                log_path=log_path,
            )
        console.print("Done.")
        console.print()
        controller._step("restore.run", detail=str(log_path))

    def _finish(self) -> None:
        controller = self.controller
        console = controller.console
        delays = controller.delays
        console.print(
            Panel(
                RESTORE_NOTICE.format(log=self.backups.restore_log),
                title="IMPORTANT NOTE",
                border_style="bold yellow",
                expand=False,
            )
        )
        controller.sleep(delays.restore_notice)
        console.print(
            f"Container will be stopped or restarted in {delays.restore_final:g} seconds..."
        )
        controller.write_state(LifecycleState.STOPPING)
        controller.sleep(delays.restore_final)
        controller.kill_service_user()


__all__ = ["RestoreOrchestrator", "RestorePhase", "describe_version_gap"]
