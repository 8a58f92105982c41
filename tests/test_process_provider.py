"""Tests for the pkill/pgrep wrapper."""
from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from iobmaint.providers.processes import MatchStatus, ProcessError, ProcessProvider


def _stub(path: Path, *, exit_code: int = 0, stdout: str = "") -> Path:
    """Write an executable that records its arguments and exits with *exit_code*."""
    log = path.with_suffix(".args")
    path.write_text(
        "#!/bin/sh\n"
        f'printf "%s\\n" "$*" >> "{log}"\n'
        f"printf '{stdout}'\n"
        f"exit {exit_code}\n",
        encoding="utf-8",
    )
    path.chmod(0o755)
    return log


@pytest.mark.parametrize(
    ("returncode", "status"),
    [
        (0, MatchStatus.MATCHED),
        (1, MatchStatus.NO_MATCH),
        (2, MatchStatus.FAILED),
        (3, MatchStatus.FAILED),
    ],
)
def test_match_status_from_returncode(returncode: int, status: MatchStatus) -> None:
    """procps exit codes map to match states."""
    assert MatchStatus.from_returncode(returncode) is status


def test_signal_matching_builds_pkill_command(tmp_path: Path) -> None:
    """Signals are scoped to the service user and the full command line."""
    pkill = tmp_path / "pkill"
    log = _stub(pkill, exit_code=0)
    provider = ProcessProvider("iobroker", pkill_bin=str(pkill))

    status = provider.signal_matching("iobroker.js-controller", signal="TERM")

    assert status is MatchStatus.MATCHED
    assert log.read_text(encoding="utf-8").splitlines() == [
        "--signal TERM -u iobroker -f iobroker.js-controller"
    ]


def test_signal_user_targets_every_process(tmp_path: Path) -> None:
    """The user-wide signal omits the pattern."""
    pkill = tmp_path / "pkill"
    log = _stub(pkill, exit_code=1)
    provider = ProcessProvider("iobroker", pkill_bin=str(pkill))

    assert provider.signal_user(signal="KILL") is MatchStatus.NO_MATCH
    assert log.read_text(encoding="utf-8").splitlines() == ["--signal KILL -u iobroker"]


@pytest.mark.parametrize(("exit_code", "running"), [(0, True), (1, False), (2, True)])
def test_any_running_interprets_pgrep(tmp_path: Path, exit_code: int, running: bool) -> None:
    """Only an explicit no-match means nothing is running."""
    pgrep = tmp_path / "pgrep"
    log = _stub(pgrep, exit_code=exit_code)
    provider = ProcessProvider("iobroker", pgrep_bin=str(pgrep))

    assert provider.any_running(r"io\..") is running
    assert log.read_text(encoding="utf-8").splitlines() == [r"-u iobroker -f io\.."]


def test_list_matching_returns_process_lines(tmp_path: Path) -> None:
    """Leftover processes are listed with their command line."""
    pgrep = tmp_path / "pgrep"
    log = _stub(pgrep, exit_code=0, stdout="101 io.admin.0\\n102 io.web.0\\n")
    provider = ProcessProvider("iobroker", pgrep_bin=str(pgrep))

    assert provider.list_matching(r"io\..") == ["101 io.admin.0", "102 io.web.0"]
    assert log.read_text(encoding="utf-8").startswith("--list-full -u iobroker")


def test_list_matching_is_empty_without_matches(tmp_path: Path) -> None:
    """No match yields an empty list."""
    pgrep = tmp_path / "pgrep"
    _stub(pgrep, exit_code=1)
    provider = ProcessProvider("iobroker", pgrep_bin=str(pgrep))

    assert provider.list_matching("anything") == []


def test_missing_binary_raises_process_error(tmp_path: Path) -> None:
    """A missing pkill is reported as ProcessError."""
    provider = ProcessProvider("iobroker", pkill_bin=str(tmp_path / "does-not-exist"))

    with pytest.raises(ProcessError, match="not found"):
        provider.signal_user()


def test_run_does_not_raise_on_nonzero(monkeypatch: pytest.MonkeyPatch) -> None:
    """Non-zero exits are returned, not raised."""
    calls: list[list[str]] = []

    def fake_run(args: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        calls.append(args)
        assert kwargs["check"] is False
        return subprocess.CompletedProcess(args, 2, stdout="", stderr="pkill: bad regex")

    monkeypatch.setattr(subprocess, "run", fake_run)
    provider = ProcessProvider("iobroker")

    assert provider.signal_matching("[") is MatchStatus.FAILED
    assert calls == [["pkill", "--signal", "TERM", "-u", "iobroker", "-f", "["]]
