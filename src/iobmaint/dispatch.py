"""Argument grammar for the ``maintenance`` command.

The CLI keeps the historic token syntax of the container maintenance script:
commands and options may appear in any order, the last command wins, ``--``
ends parsing and any unknown token is fatal::

    maintenance on -y
    maintenance -kbn --yes on
    maintenance upgr --yes
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from .errors import InputError

OPTIONS_TERMINATOR = "--"


class Command(str, Enum):
    """Commands understood by the maintenance CLI."""

    HELP = "help"
    STATUS = "status"
    ON = "on"
    OFF = "off"
    UPGRADE = "upgrade"
    RESTART = "restart"
    RESTORE = "restore"

    @property
    def mutating(self) -> bool:
        """Return True when the command may change the container state."""
        return self not in (Command.HELP, Command.STATUS)


COMMAND_TOKENS: dict[str, Command] = {
    "help": Command.HELP,
    "-h": Command.HELP,
    "--help": Command.HELP,
    "status": Command.STATUS,
    "stat": Command.STATUS,
    "s": Command.STATUS,
    "on": Command.ON,
    "off": Command.OFF,
    "upgrade": Command.UPGRADE,
    "upgr": Command.UPGRADE,
    "u": Command.UPGRADE,
    "restart": Command.RESTART,
    "rest": Command.RESTART,
    "r": Command.RESTART,
    "restore": Command.RESTORE,
}

AUTO_CONFIRM_TOKENS = frozenset({"-y", "--yes"})
KILL_BY_NAME_TOKENS = frozenset({"-kbn", "--killbyname"})


class UnknownArgumentError(InputError):
    """Raised for a token that is neither a command nor an option."""

    def __init__(self, argument: str) -> None:
        super().__init__(f"Unknown parameter: {argument}")
        self.argument = argument


@dataclass(frozen=True, slots=True)
class Invocation:
    """Parsed command line: one command plus modifier flags."""

    command: Command = Command.HELP
    auto_confirm: bool = False
    kill_by_name: bool = False


def truncate_at_terminator(argv: Sequence[str]) -> list[str]:
    """Return the tokens preceding the first ``--``."""
    tokens = list(argv)
    if OPTIONS_TERMINATOR in tokens:
        return tokens[: tokens.index(OPTIONS_TERMINATOR)]
    return tokens


def parse_arguments(argv: Sequence[str]) -> Invocation:
    """Parse *argv* into an :class:`Invocation`.

    Raises :class:`UnknownArgumentError` for unrecognised tokens. Tokens after
    ``--`` are ignored.
    """
    command = Command.HELP
    auto_confirm = False
    kill_by_name = False
    for token in truncate_at_terminator(argv):
        if token in COMMAND_TOKENS:
            command = COMMAND_TOKENS[token]
        elif token in AUTO_CONFIRM_TOKENS:
            auto_confirm = True
        elif token in KILL_BY_NAME_TOKENS:
            kill_by_name = True
        else:
            raise UnknownArgumentError(token)
    return Invocation(command=command, auto_confirm=auto_confirm, kill_by_name=kill_by_name)


__all__ = [
    "COMMAND_TOKENS",
    "Command",
    "Invocation",
    "UnknownArgumentError",
    "parse_arguments",
    "truncate_at_terminator",
]
