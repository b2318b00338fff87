"""Movement phases: maximal runs of one sensor's packages sharing a heading."""

from __future__ import annotations

import math
from collections.abc import Sequence
from enum import Enum

import numpy as np

from relaynav.errors import DistanceNotSetError, EmptyEpochError
from relaynav.model.contact import Direction, WirelessContact
from relaynav.model.package import Package
from relaynav.model.position import Position


class EpochType(Enum):
    RELAY_WITHDRAWAL = "withdrawal"
    RELAY_APPROACH = "approach"
    VOYAGE = "voyage"


_DIRECTION_TYPES = {
    Direction.APPROACH: EpochType.RELAY_APPROACH,
    Direction.WITHDRAWAL: EpochType.RELAY_WITHDRAWAL,
    Direction.UNKNOWN: EpochType.VOYAGE,
}


def type_from_direction(direction: Direction) -> EpochType:
    return _DIRECTION_TYPES[direction]


class Epoch:
    """Packages of one sensor recorded while it kept the same heading.

    Packages are ordered by timestamp. `start_time` is the first package's
    timestamp unless the epoch was pinned to the end of its predecessor.
    For every contacted sensor the epoch remembers the package with the
    strongest signal to it; those packages are where rendezvous are checked.
    """

    def __init__(self, epoch_type: EpochType, package: Package, start_time: int | None = None) -> None:
        self.type = epoch_type
        self.packages: list[Package] = []
        self.distance = math.nan
        # Known physical end of the epoch. May stay None for resolved epochs.
        self.end_position: Position | None = None
        self.strongest_contact: dict[int, Package] = {}
        self._start_time = start_time
        self._relay_contact: WirelessContact | None = None
        self.add_package(package)

    def add_package(self, package: Package) -> None:
        self.packages.append(package)
        self._update_strongest_contact(package)

    def _update_strongest_contact(self, package: Package) -> None:
        for contact in package.sensor_contacts():
            stored = self.strongest_contact.get(contact.node_id)
            stored_contact = stored.contact_to(contact.node_id) if stored is not None else None
            if stored_contact is None or stored_contact.strength <= contact.strength:
                self.strongest_contact[contact.node_id] = package

    def renew_strongest_contact_info(self) -> None:
        """Rebuild the strongest-contact index after packages were moved."""
        self.strongest_contact.clear()
        for package in self.packages:
            self._update_strongest_contact(package)

    @property
    def latest(self) -> Package:
        if not self.packages:
            raise EmptyEpochError("epoch has no packages")
        return self.packages[-1]

    @property
    def start_time(self) -> int:
        if self._start_time is not None:
            return self._start_time
        if not self.packages:
            raise EmptyEpochError("epoch has no packages")
        return self.packages[0].timestamp

    @property
    def end_time(self) -> int:
        return self.latest.timestamp

    @property
    def duration(self) -> int:
        return self.end_time - self.start_time

    @property
    def relay_contact(self) -> WirelessContact | None:
        """Strongest relay heard by the latest package, else the inherited one."""
        strongest = self.latest.strongest_relay()
        return strongest if strongest is not None else self._relay_contact

    @relay_contact.setter
    def relay_contact(self, contact: WirelessContact | None) -> None:
        self._relay_contact = contact

    def has_contact_to(self, node_id: int) -> bool:
        return any(p.contact_to(node_id) is not None for p in self.packages)

    def _average_speed(self) -> float:
        if math.isnan(self.distance):
            raise DistanceNotSetError("distance not set")
        duration = self.duration
        if duration == 0:
            return 1.0
        return self.distance / duration

    def set_package_positions(self, distance: float, starting_position: Position) -> None:
        """Interpolate package positions along the route of `starting_position`.

        The sensor is assumed to cover `distance` at constant speed between
        the epoch's start and end time. Offsets are clipped to the route.
        """
        if math.isnan(distance):
            raise DistanceNotSetError("cannot place packages without a travelled distance")
        if not self.packages:
            raise DistanceNotSetError("an empty epoch has no span to place packages on")

        self.distance = distance
        elapsed = np.array([p.timestamp for p in self.packages], dtype=float) - self.start_time
        offsets = np.clip(
            starting_position.offset + elapsed * self._average_speed(),
            0.0,
            starting_position.total,
        )
        for package, offset in zip(self.packages, offsets):
            package.position = Position(
                starting_position.start,
                starting_position.dest,
                float(offset),
                starting_position.total,
            )

        if self.end_position is None:
            self.end_position = self.latest.position

    def split(self, split_package: Package, end_position: Position) -> Epoch | None:
        """Move every package after `split_package` into a new epoch of the same type.

        This epoch then ends at `end_position`. Returns None without touching
        anything if `split_package` is the last package.
        """
        index = self.packages.index(split_package)
        tail = self.packages[index + 1:]
        if not tail:
            return None

        self.end_position = end_position
        del self.packages[index + 1:]
        self.renew_strongest_contact_info()

        split_off = Epoch(self.type, tail[0], start_time=split_package.timestamp)
        for package in tail[1:]:
            split_off.add_package(package)
        return split_off

    def __str__(self) -> str:
        return f"{self.type.value} epoch with {len(self.packages)} packages"

    def __repr__(self) -> str:
        return f"Epoch({self.type.name}, packages={len(self.packages)})"


def _same_relay(a: Epoch, b: Epoch) -> bool:
    contact_a, contact_b = a.relay_contact, b.relay_contact
    return contact_a is not None and contact_b is not None and contact_a.node_id == contact_b.node_id


def get_last_non_voyage_epoch(epochs: Sequence[Epoch], index: int, backwards: bool) -> Epoch | None:
    """Nearest relay-contact epoch before (or after) `index`.

    Runs of same-typed epochs right next to `index` are skipped when they are
    voyages or contact the same relay, since those stem from a split rather
    than a real change of heading. Returns None at the list border or when no
    relay-contact epoch exists in that direction.
    """
    if (backwards and index < 1) or (not backwards and index > len(epochs) - 2):
        return None

    step = -1 if backwards else 1
    indices = range(index - 1, -1, -1) if backwards else range(index + 1, len(epochs))
    skip = True
    for i in indices:
        epoch = epochs[i]
        adjacent_index = i - step
        if skip and 0 < adjacent_index < len(epochs):
            adjacent = epochs[adjacent_index]
            if adjacent.type is epoch.type:
                if adjacent.type is EpochType.VOYAGE or _same_relay(adjacent, epoch):
                    continue
        skip = False
        if epoch.type is not EpochType.VOYAGE:
            return epoch
    return None


def get_neighbour_relay(epochs: Sequence[Epoch], index: int, backwards: bool) -> WirelessContact | None:
    """Relay contact of the nearest relay-contact epoch in one direction."""
    epoch = get_last_non_voyage_epoch(epochs, index, backwards)
    return epoch.relay_contact if epoch is not None else None
