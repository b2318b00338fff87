"""Node identities: the id space is split between mobile sensors and fixed relays."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

# Ids below this are sensors, everything else is a relay.
SENSOR_ID_LIMIT = 1000

DEFAULT_RADIUS = math.sqrt(10)


class NodeKind(Enum):
    SENSOR = "sensor"
    RELAY = "relay"


def node_kind(node_id: int) -> NodeKind:
    return NodeKind.SENSOR if node_id < SENSOR_ID_LIMIT else NodeKind.RELAY


def is_sensor(node_id: int) -> bool:
    """Whether an id denotes a sensor. Says nothing about the sensor existing."""
    return node_kind(node_id) is NodeKind.SENSOR


def is_relay(node_id: int) -> bool:
    return node_kind(node_id) is NodeKind.RELAY


@dataclass(frozen=True)
class Relay:
    """Fixed vertex of the topology with an effective contact radius."""

    id: int
    radius: float = field(default=DEFAULT_RADIUS, compare=False)

    def __post_init__(self) -> None:
        if is_sensor(self.id):
            raise ValueError(f"id {self.id} is reserved for sensors")

    def __str__(self) -> str:
        return f"relay {self.id}"
