"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import io
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from rich.console import Console

from iobmaint.config import BackupConfig, DelayConfig
from iobmaint.controller import MaintenanceController
from iobmaint.prompts import Confirmer
from iobmaint.providers.iobroker import IoBrokerError
from iobmaint.providers.processes import MatchStatus, ProcessError
from iobmaint.state import StateStore
from iobmaint.terminator import StopOutcome, StopReport


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@dataclass
class FakeProcesses:
    """Records user-wide signals instead of calling pkill."""

    user: str = "iobroker"
    status: MatchStatus = MatchStatus.MATCHED
    error: ProcessError | None = None
    signals: list[str] = field(default_factory=list)

    def signal_user(self, *, signal: str = "KILL") -> MatchStatus:
        if self.error is not None:
            raise self.error
        self.signals.append(signal)
        return self.status


@dataclass
class FakeTerminator:
    """Returns a canned stop report."""

    report: StopReport = field(default_factory=lambda: StopReport(StopOutcome.STOPPED))
    error: ProcessError | None = None
    calls: list[dict[str, object]] = field(default_factory=list)

    def stop(
        self,
        grace_period: float | None = None,
        *,
        kill_by_name: bool = False,
        on_tick: Callable[[], None] | None = None,
    ) -> StopReport:
        self.calls.append({"grace_period": grace_period, "kill_by_name": kill_by_name})
        if self.error is not None:
            raise self.error
        if on_tick is not None:
            on_tick()
            on_tick()
        return self.report


@dataclass
class FakeIoBroker:
    """Scriptable stand-in for the ioBroker CLI."""

    version: str = "6.1.0"
    version_error: IoBrokerError | None = None
    upgrade_error: IoBrokerError | None = None
    restore_rc: int = 0
    calls: list[str] = field(default_factory=list)
    restores: list[tuple[str, Path, bool]] = field(default_factory=list)

    def component_version(self, component: str) -> str:
        self.calls.append(f"version {component}")
        if self.version_error is not None:
            raise self.version_error
        return self.version

    def update(self) -> None:
        self.calls.append("update")

    def upgrade_self(self) -> None:
        self.calls.append("upgrade self")
        if self.upgrade_error is not None:
            raise self.upgrade_error

    def restore(self, archive_name: str, *, log_path: Path, force: bool = True) -> int:
        self.calls.append(f"restore {archive_name}")
        self.restores.append((archive_name, log_path, force))
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text("restore output\n", encoding="utf-8")
        return self.restore_rc


@dataclass
class FakeOperation:
    """Collects the steps a handler records."""

    steps: list[tuple[str, str, object]] = field(default_factory=list)

    def add_step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        self.steps.append((name, status, detail))

    @property
    def names(self) -> list[str]:
        return [name for name, _, _ in self.steps]


class ScriptedReader:
    """Line reader that replays canned answers."""

    def __init__(self) -> None:
        self.replies: list[str] = []
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.replies:
            raise AssertionError(f"Unexpected prompt: {prompt!r}")
        return self.replies.pop(0)


@dataclass
class Harness:
    """Everything needed to drive a controller without touching the system."""

    root: Path
    state: StateStore
    processes: FakeProcesses
    terminator: FakeTerminator
    iobroker: FakeIoBroker
    reader: ScriptedReader
    op: FakeOperation
    output: io.StringIO
    console: Console
    sleeps: list[float] = field(default_factory=list)

    @property
    def marker(self) -> Path:
        return self.state.path

    @property
    def backups(self) -> BackupConfig:
        return BackupConfig(
            root=self.root / "backups",
            metadata_member="backup/backup.json",
            controller_title="JS controller",
            restore_log=self.root / "log" / "restore.log",
        )

    def answer(self, *replies: str) -> None:
        self.reader.replies.extend(replies)

    def text(self) -> str:
        return self.output.getvalue()

    def controller(self, **kwargs: object) -> MaintenanceController:
        return MaintenanceController(
            state=self.state,
            terminator=self.terminator,  # type: ignore[arg-type]
            processes=self.processes,  # type: ignore[arg-type]
            iobroker=self.iobroker,  # type: ignore[arg-type]
            confirmer=Confirmer(read_line=self.reader, console=self.console),
            console=self.console,
            delays=DelayConfig(),
            op=self.op,  # type: ignore[arg-type]
            sleep=self.sleeps.append,
            **kwargs,  # type: ignore[arg-type]
        )


@pytest.fixture()
def harness(tmp_path: Path) -> Harness:
    """Return a controller harness rooted in ``tmp_path``."""
    output = io.StringIO()
    return Harness(
        root=tmp_path,
        state=StateStore(tmp_path / ".docker_config" / ".healthcheck"),
        processes=FakeProcesses(),
        terminator=FakeTerminator(),
        iobroker=FakeIoBroker(),
        reader=ScriptedReader(),
        op=FakeOperation(),
        output=output,
        console=Console(file=output, width=200, color_system=None),
    )
