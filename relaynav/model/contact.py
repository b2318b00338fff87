"""Single wireless contacts and the heading inferred from them."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from relaynav.model.node import is_sensor


class Direction(Enum):
    """Heading of a sensor relative to a contacted node."""

    WITHDRAWAL = "withdrawal"
    APPROACH = "approach"
    UNKNOWN = "unknown"


@dataclass
class WirelessContact:
    node_id: int
    strength: float
    direction: Direction = Direction.UNKNOWN

    @property
    def is_relay(self) -> bool:
        return not is_sensor(self.node_id)

    def to_dict(self) -> dict:
        return {"deviceId": self.node_id, "strength": self.strength}

    @classmethod
    def from_dict(cls, d: dict) -> WirelessContact:
        return cls(node_id=int(d["deviceId"]), strength=float(d["strength"]))

    def __str__(self) -> str:
        return f"contact to {self.node_id} (strength {self.strength:.2f}, {self.direction.value})"


def strongest_signal(candidates: Iterable[WirelessContact]) -> WirelessContact | None:
    """Strongest contact, the earliest one winning ties. None for no candidates."""
    best: WirelessContact | None = None
    for contact in candidates:
        if best is None or best.strength < contact.strength:
            best = contact
    return best
