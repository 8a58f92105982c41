"""Interactive operator prompts.

Handlers never read stdin directly. They go through a :class:`Confirmer`,
whose line reader can be swapped for a scripted one in tests or for
non-interactive automation.
"""
from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import typer
from rich.console import Console

from .errors import InputError

CONTINUE_PROMPT = "Do you want to continue [yes/no]? "
_ACCEPTED_REPLIES = frozenset({"y", "yes"})

LineReader = Callable[[str], str]


def read_console_line(prompt: str) -> str:
    """Print *prompt* and return one line of operator input (empty on EOF)."""
    try:
        value = typer.prompt(prompt, default="", show_default=False, prompt_suffix="")
    except typer.Abort:
        return ""
    return str(value)


@dataclass(slots=True)
class Confirmer:
    """Ask the operator for confirmations and selections."""

    read_line: LineReader = read_console_line
    console: Console = field(default_factory=Console)

    def confirm(self, prompt: str = CONTINUE_PROMPT, *, auto_confirmed: bool = False) -> bool:
        """Return True when auto-confirmed or the operator answers ``y``/``yes``."""
        if auto_confirmed:
            return True
        reply = self.read_line(prompt)
        return reply.strip().lower() in _ACCEPTED_REPLIES

    def select(
        self,
        candidates: Sequence[str],
        *,
        title: str,
        question: str = "Enter a number",
    ) -> int:
        """Show *candidates* as an indexed list and return the chosen index.

        Non-numeric or out-of-range answers raise :class:`InputError`.
        """
        if not candidates:
            raise InputError("There is nothing to select from.")
        self.console.print(title, markup=False, highlight=False)
        for index, label in enumerate(candidates):
            self.console.print(f"{index}: {label}", markup=False, highlight=False)
        self.console.print()

        last = len(candidates) - 1
        reply = self.read_line(f"{question} (0-{last}): ").strip()
        if not (reply.isascii() and reply.isdecimal()):
            raise InputError(
                f"Invalid selection '{reply}'. Expected a number between 0 and {last}."
            )
        choice = int(reply)
        if not 0 <= choice <= last:
            raise InputError(f"Selection {choice} is out of range (0-{last}).")
        return choice


__all__ = ["CONTINUE_PROMPT", "Confirmer", "LineReader", "read_console_line"]
