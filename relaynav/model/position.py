"""One-dimensional positions along topology edges or paths."""

from __future__ import annotations

import math
from dataclasses import dataclass

from relaynav.model.node import Relay


@dataclass(frozen=True)
class Position:
    """A point `offset` units from `start` along the shortest path to `dest`.

    `total` is the length of that path. It may be infinite when the position
    only describes a route whose extent is unbounded.
    """

    start: Relay
    dest: Relay
    offset: float
    total: float

    @property
    def anchored(self) -> bool:
        return True

    @property
    def fully_travelled(self) -> bool:
        return same_length(self.offset, self.total)

    def to_dict(self) -> dict:
        return {
            "start": self.start.id,
            "destination": self.dest.id,
            "distanceTraveled": self.offset,
            "totalDistance": self.total,
        }

    def __str__(self) -> str:
        return f"travelled {self.offset:.2f} of {self.total:.2f} from {self.start} to {self.dest}"


@dataclass(frozen=True)
class UnanchoredPosition:
    """Position on the way to `dest` from an origin that is not known."""

    dest: Relay
    offset: float = 0.0

    @property
    def start(self) -> None:
        return None

    @property
    def total(self) -> float:
        return math.inf

    @property
    def anchored(self) -> bool:
        return False

    @property
    def fully_travelled(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {
            "start": None,
            "destination": self.dest.id,
            "distanceTraveled": self.offset,
            "totalDistance": self.total,
        }

    def __str__(self) -> str:
        return f"somewhere before {self.dest}"


AnyPosition = Position | UnanchoredPosition


@dataclass(frozen=True)
class RendezVous:
    """Position of a cross-sensor contact and who observed it when."""

    position: Position
    interceptor_id: int
    timestamp: int


def same_length(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-6)
