"""Provider interfaces for iobmaint."""
from __future__ import annotations

from .iobroker import IoBrokerError, IoBrokerProvider
from .processes import MatchStatus, ProcessError, ProcessProvider

__all__ = [
    "IoBrokerError",
    "IoBrokerProvider",
    "MatchStatus",
    "ProcessError",
    "ProcessProvider",
]
