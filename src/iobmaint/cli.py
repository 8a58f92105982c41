"""Typer entry point for the ``maintenance`` command.

The command keeps the token grammar of the container maintenance script
(``maintenance on -y``, ``m upgr --yes`` ...), so Typer only collects the raw
tokens and :mod:`iobmaint.dispatch` interprets them. Everything else follows
the usual shape: build a :class:`RuntimeContext` from the layered config, run
the handler inside a structured log operation and translate
:class:`~iobmaint.errors.MaintenanceError` into an exit code.
"""
from __future__ import annotations

import os
import sys
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from .config import AppConfig, ConfigError, load_config
from .controller import CommandResult, MaintenanceController
from .dispatch import (
    Command,
    Invocation,
    UnknownArgumentError,
    parse_arguments,
    truncate_at_terminator,
)
from .errors import (
    ExternalOperationError,
    InputError,
    MaintenanceError,
    PreconditionError,
    UserDeclinedError,
)
from .exit_codes import ExitCode
from .locking import LockError, LockManager, LockTimeoutError
from .logging import OperationScope, StructuredLogger
from .prompts import Confirmer
from .providers import IoBrokerProvider, ProcessProvider
from .restore import RestoreOrchestrator
from .state import StateStore
from .terminator import ProcessTerminator

console = Console()
err_console = Console(stderr=True)

HELP_TEXT = textwrap.dedent(
    """
    This script helps you manage your ioBroker container!

    Usage: maintenance [ COMMAND ] [ OPTION ]
           maint [ COMMAND ] [ OPTION ]
           m [ COMMAND ] [ OPTION ]

    COMMANDS
    ------------------
           status     > reports the current state of maintenance mode
           on         > switches maintenance mode ON
           off        > switches maintenance mode OFF and stops or restarts the container
           upgrade    > puts the container to maintenance mode and upgrades ioBroker
           restart    > stops iobroker and stops or restarts the container
           restore    > stops iobroker and restores the last backup
           help       > shows this help

    OPTIONS
    ------------------
           -y|--yes   > confirms the used command without asking
           -h|--help  > shows this help
    """
).strip("\n")

app = typer.Typer(
    add_completion=False,
    help="Manage maintenance mode of an ioBroker container.",
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    state: StateStore
    processes: ProcessProvider
    iobroker: IoBrokerProvider
    terminator: ProcessTerminator
    confirmer: Confirmer
    locks: LockManager
    logger: StructuredLogger


def _build_runtime(config: AppConfig) -> RuntimeContext:
    processes_config = config.processes
    processes = ProcessProvider(
        user=config.service_user,
        pkill_bin=processes_config.pkill_bin,
        pgrep_bin=processes_config.pgrep_bin,
    )
    terminator = ProcessTerminator(
        processes=processes,
        primary_pattern=processes_config.primary_pattern,
        component_pattern=processes_config.component_pattern,
        grace_period=processes_config.stop_timeout,
        poll_interval=processes_config.poll_interval,
        kill_by_name_wait=processes_config.kill_by_name_wait,
        graceful_signal=processes_config.graceful_signal,
        forced_signal=processes_config.forced_signal,
    )
    return RuntimeContext(
        config=config,
        state=StateStore(config.healthcheck_file),
        processes=processes,
        iobroker=IoBrokerProvider(bin=config.iobroker.bin),
        terminator=terminator,
        confirmer=Confirmer(console=console),
        locks=LockManager(config.runtime_dir, config.lock_timeout),
        logger=StructuredLogger(config.logs_dir),
    )


def _ensure_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    try:
        config = load_config()
    except ConfigError as exc:
        err_console.print(f"[red]{escape(str(exc))}[/red]", highlight=False)
        raise typer.Exit(code=ExitCode.FAILURE) from exc
    runtime = _build_runtime(config)
    ctx.obj = runtime
    return runtime


def _check_user(config: AppConfig) -> None:
    if config.allow_root or os.geteuid() != 0:
        return
    console.print(
        f'WARNING! This script should be executed as user "{config.service_user}"! '
        "Please switch user and try again.",
        markup=False,
        highlight=False,
    )
    raise typer.Exit(code=ExitCode.FAILURE)


def _parse_tokens(tokens: Sequence[str]) -> Invocation:
    try:
        return parse_arguments(tokens)
    except UnknownArgumentError as exc:
        err_console.print(str(exc), markup=False, highlight=False)
        err_console.print("Please try again or see help (help|-h|--help).", highlight=False)
        raise typer.Exit(code=ExitCode.FAILURE) from exc


def _command_error(op: OperationScope, exc: MaintenanceError) -> NoReturn:
    """Report *exc* to the operator and the structured log, then exit."""
    message = str(exc)
    rc = int(exc.rc)
    context: dict[str, object] = {"error": type(exc).__name__}
    if isinstance(exc, ExternalOperationError) and exc.log_path is not None:
        context["log_path"] = str(exc.log_path)
    if isinstance(exc, UserDeclinedError):
        op.error(message, rc=rc, context=context)
        raise typer.Exit(code=rc)
    target = err_console if isinstance(exc, InputError) else console
    target.print(f"[red]{escape(message)}[/red]", highlight=False)
    op.error(message, rc=rc, context=context)
    raise typer.Exit(code=rc)


def _dispatch(
    runtime: RuntimeContext,
    invocation: Invocation,
    op: OperationScope,
) -> CommandResult:
    config = runtime.config
    controller = MaintenanceController(
        state=runtime.state,
        terminator=runtime.terminator,
        processes=runtime.processes,
        iobroker=runtime.iobroker,
        confirmer=runtime.confirmer,
        console=console,
        delays=config.delays,
        forced_signal=config.processes.forced_signal,
        auto_confirm=invocation.auto_confirm,
        kill_by_name=invocation.kill_by_name,
        op=op,
    )
    command = invocation.command
    if command is Command.STATUS:
        return controller.status()
    if command is Command.ON:
        return controller.enable_maintenance()
    if command is Command.OFF:
        return controller.disable_maintenance()
    if command is Command.UPGRADE:
        return controller.upgrade()
    if command is Command.RESTART:
        return controller.restart()
    orchestrator = RestoreOrchestrator(
        controller=controller,
        backups=config.backups,
        component=config.iobroker.controller_component,
    )
    return orchestrator.run()


def _run_locked(
    runtime: RuntimeContext,
    invocation: Invocation,
    op: OperationScope,
) -> CommandResult:
    try:
        with runtime.locks.controller_lock() as handle:
            op.set_lock_wait_ms(handle.wait_ms)
            return _dispatch(runtime, invocation, op)
    except LockTimeoutError as exc:
        raise PreconditionError(
            "Another maintenance operation is in progress. Please wait and try again."
        ) from exc
    except LockError as exc:
        raise ExternalOperationError(str(exc)) from exc


@app.command(
    context_settings={
        "ignore_unknown_options": True,
        "allow_extra_args": True,
        "help_option_names": [],
    }
)
def maintenance(
    ctx: typer.Context,
    tokens: list[str] | None = typer.Argument(None),  # noqa: B008 - Typer pattern
) -> None:
    """Manage maintenance mode of an ioBroker container."""
    runtime = _ensure_runtime(ctx)
    _check_user(runtime.config)
    invocation = _parse_tokens(list(tokens or []) + list(ctx.args))

    with runtime.logger.operation(
        f"maintenance {invocation.command.value}",
        args={
            "auto_confirm": invocation.auto_confirm,
            "kill_by_name": invocation.kill_by_name,
        },
        target={
            "healthcheck_file": str(runtime.config.healthcheck_file),
            "service_user": runtime.config.service_user,
        },
    ) as op:
        if invocation.command is Command.HELP:
            console.print(HELP_TEXT, markup=False, highlight=False)
            op.success("Displayed help.", changed=0)
            return
        try:
            if invocation.command.mutating:
                result = _run_locked(runtime, invocation, op)
            else:
                result = _dispatch(runtime, invocation, op)
        except MaintenanceError as exc:
            _command_error(op, exc)
        op.success(result.message, changed=result.changed)


def main(argv: Sequence[str] | None = None) -> None:
    """Console script entry point."""
    args = list(sys.argv[1:] if argv is None else argv)
    prog_name = Path(sys.argv[0]).name if sys.argv and sys.argv[0] else "maintenance"
    app(args=truncate_at_terminator(args), prog_name=prog_name)


__all__ = ["HELP_TEXT", "RuntimeContext", "app", "main"]
