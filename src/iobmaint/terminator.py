"""Graceful-then-forced shutdown of the ioBroker process tree.

The js-controller is asked to stop with a catchable signal. Its adapter
processes (``io.<adapter>.<instance>``) are then polled until they are gone;
anything still alive when the grace period runs out is killed.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .providers.processes import MatchStatus, ProcessProvider

LOGGER = logging.getLogger(__name__)


class StopOutcome(Enum):
    """Result of :meth:`ProcessTerminator.stop`."""

    STOPPED = "stopped"
    NOTHING_TO_STOP = "nothing-to-stop"
    FATAL = "fatal"


@dataclass(slots=True)
class StopReport:
    """Details about a stop attempt."""

    outcome: StopOutcome
    escalated: bool = False
    leftovers: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ProcessTerminator:
    """Stop every ioBroker process owned by the service user."""

    processes: ProcessProvider
    primary_pattern: str
    component_pattern: str
    grace_period: float = 10.0
    poll_interval: float = 1.0
    kill_by_name_wait: float = 3.0
    graceful_signal: str = "TERM"
    forced_signal: str = "KILL"
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep

    def stop(
        self,
        grace_period: float | None = None,
        *,
        kill_by_name: bool = False,
        on_tick: Callable[[], None] | None = None,
    ) -> StopReport:
        """Stop ioBroker and wait for its components to exit.

        With *kill_by_name* the component poll is skipped and a fixed pause is
        used instead, for environments where the component pattern cannot be
        trusted.
        """
        period = self.grace_period if grace_period is None else grace_period
        deadline = self.clock() + period

        status = self.processes.signal_matching(
            self.primary_pattern, signal=self.graceful_signal
        )
        if status is MatchStatus.FAILED:
            LOGGER.error("pkill rejected pattern %r", self.primary_pattern)
            return StopReport(StopOutcome.FATAL)
        if status is MatchStatus.NO_MATCH:
            LOGGER.debug("No process matched %r", self.primary_pattern)
            return StopReport(StopOutcome.NOTHING_TO_STOP)

        if kill_by_name:
            waited = 0.0
            while waited < self.kill_by_name_wait:
                step = min(self.poll_interval, self.kill_by_name_wait - waited)
                self.sleep(step)
                waited += step
                if on_tick is not None:
                    on_tick()
            return StopReport(StopOutcome.STOPPED)

        while self.processes.any_running(self.component_pattern):
            if self.clock() > deadline:
                leftovers = self.processes.list_matching(self.component_pattern)
                LOGGER.warning(
                    "Grace period of %.0fs exceeded, killing %d process(es)",
                    period,
                    len(leftovers),
                )
                self.processes.signal_matching(self.component_pattern, signal=self.forced_signal)
                return StopReport(StopOutcome.STOPPED, escalated=True, leftovers=leftovers)
            self.sleep(self.poll_interval)
            if on_tick is not None:
                on_tick()
        return StopReport(StopOutcome.STOPPED)


__all__ = ["ProcessTerminator", "StopOutcome", "StopReport"]
