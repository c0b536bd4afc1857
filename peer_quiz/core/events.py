"""Results of room operations, independent of the transport that delivers them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class Event:
    name: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {"event": self.name, "data": self.data}


@dataclass(slots=True)
class Outcome:
    """Direct reply for the requester plus events for everyone in ``room_code``."""

    reply: Event | None = None
    broadcasts: list[Event] = field(default_factory=list)
    room_code: str | None = None

    def broadcast(self, name: str, data: dict[str, Any]) -> None:
        self.broadcasts.append(Event(name, data))
