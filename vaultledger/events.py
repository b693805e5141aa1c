"""
events.py - Contract Event Records

Every state-changing operation of the token, vaults, factory and manager
appends an immutable ContractEvent to a shared EventLog. Balance effects are
already in the ledger's transaction log; the event log records the business
facts around them (who invested how much, which lock period applies, ...).

Events are just data:
1. ContractEvent: Immutable record of what happened, when and where
2. EventLog: Append-only list with simple queries
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional


# Event names
INVESTMENT_MADE = "InvestmentMade"
WITHDRAWAL_INITIATED = "WithdrawalInitiated"
LOCK_PERIOD_CHANGED = "LockPeriodChanged"
ACCOUNT_CREATED = "AccountCreated"
ACCOUNT_REMOVED = "AccountRemoved"
TOKENS_BURNED = "TokensBurned"
MINTER_CHANGED = "MinterChanged"
PAUSED = "Paused"
UNPAUSED = "Unpaused"


@dataclass(frozen=True, slots=True)
class ContractEvent:
    """
    Immutable record of an emitted event.

    Attributes:
        name: Event name (e.g., "InvestmentMade")
        timestamp: Ledger time at emission
        source: Address of the emitting component
        params: Event arguments as frozen tuple of (key, value) pairs
    """
    name: str
    timestamp: datetime
    source: str
    params: tuple = ()

    @property
    def params_dict(self) -> Dict[str, Any]:
        """Get params as a dictionary for convenience."""
        return dict(self.params)

    def __getitem__(self, key: str) -> Any:
        return self.params_dict[key]

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v}" for k, v in self.params)
        return f"{self.name}({args}) @ {self.timestamp.isoformat()} from {self.source}"


class EventLog:
    """Append-only event store shared by all components of one deployment."""

    def __init__(self):
        self._events: List[ContractEvent] = []

    def emit(self, name: str, timestamp: datetime, source: str, **params: Any) -> ContractEvent:
        """Record an event and return it."""
        event = ContractEvent(
            name=name,
            timestamp=timestamp,
            source=source,
            params=tuple(params.items()),
        )
        self._events.append(event)
        return event

    def filter(self, name: str) -> List[ContractEvent]:
        """All events with the given name, oldest first."""
        return [e for e in self._events if e.name == name]

    def last(self, name: Optional[str] = None) -> Optional[ContractEvent]:
        """Most recent event, optionally restricted to one name."""
        for event in reversed(self._events):
            if name is None or event.name == name:
                return event
        return None

    def truncate(self, length: int) -> None:
        """
        Drop every event recorded after the first `length`.

        Lets an operation that fails halfway withdraw the events it already
        emitted, so a failed call leaves no trace.
        """
        if length < 0 or length > len(self._events):
            raise ValueError(f"Cannot truncate {len(self._events)} events to {length}")
        del self._events[length:]

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[ContractEvent]:
        return iter(list(self._events))
