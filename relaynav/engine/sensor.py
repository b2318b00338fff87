"""Per-sensor localization state."""

from __future__ import annotations

import logging

from relaynav.engine.epoch import Epoch, EpochType
from relaynav.errors import EmptyEpochError, EpochError
from relaynav.model.node import is_sensor
from relaynav.model.package import Package
from relaynav.model.position import AnyPosition, RendezVous

log = logging.getLogger(__name__)


class Sensor:
    """Mobile node with a queue of epochs that still lack positions.

    `last_epoch_end` is the end time of the previous epoch while epochs are
    being opened, and the timestamp of the last resolved package once a
    batch has been cleared. Checkpoints are rendezvous reported by other
    sensors and are only kept while they are newer than that watermark.
    """

    def __init__(self, sensor_id: int) -> None:
        if not is_sensor(sensor_id):
            raise ValueError(f"id {sensor_id} is reserved for relays")
        self.id = sensor_id
        self.mystery_epochs: list[Epoch] = []
        self.last_epoch_end = 0
        self.last_known_position: AnyPosition | None = None
        self.checkpoints: list[RendezVous] = []
        self._pristine = True

    @property
    def latest_epoch(self) -> Epoch | None:
        return self.mystery_epochs[-1] if self.mystery_epochs else None

    @property
    def last_package(self) -> Package | None:
        epoch = self.latest_epoch
        return epoch.latest if epoch is not None else None

    def add_epoch(self, epoch_type: EpochType, package: Package) -> Epoch:
        """Open a new epoch with `package` at the end of the queue.

        Apart from the very first epoch of a sensor, a new epoch starts where
        the previous one ended.
        """
        if self.mystery_epochs:
            self.last_epoch_end = self.latest_epoch.end_time

        if self._pristine:
            epoch = Epoch(epoch_type, package)
            self._pristine = False
        else:
            epoch = Epoch(epoch_type, package, start_time=min(self.last_epoch_end, package.timestamp))

        self.mystery_epochs.append(epoch)
        log.debug("sensor %d: opened %s at t=%d", self.id, epoch, package.timestamp)
        return epoch

    def merge_and_clear_epochs(self, count: int) -> list[Package]:
        """Remove the first `count` epochs and return their packages in order."""
        if not self.mystery_epochs:
            raise EmptyEpochError(f"sensor {self.id} has no epochs to clear")
        if not 1 <= count <= len(self.mystery_epochs):
            raise EpochError(f"cannot clear {count} of {len(self.mystery_epochs)} epochs")

        result = [p for epoch in self.mystery_epochs[:count] for p in epoch.packages]
        del self.mystery_epochs[:count]

        last = result[-1]
        self.last_epoch_end = last.timestamp
        self.last_known_position = last.position
        self.checkpoints = [c for c in self.checkpoints if c.timestamp > self.last_epoch_end]
        log.debug("sensor %d: resolved %d packages up to t=%d", self.id, len(result), last.timestamp)
        return result

    def get_checkpoint(self, start: int, end: int) -> RendezVous | None:
        """Take the newest checkpoint strictly between `start` and `end`.

        Older checkpoints in the same window are superseded and dropped.
        """
        in_window = [c for c in self.checkpoints if start < c.timestamp < end]
        if not in_window:
            return None

        newest = max(in_window, key=lambda c: c.timestamp)
        self.checkpoints = [c for c in self.checkpoints if not start < c.timestamp < end]
        return newest

    def add_rendezvous(self, rendezvous: RendezVous) -> bool:
        if rendezvous.timestamp <= self.last_epoch_end:
            return False
        self.checkpoints.append(rendezvous)
        return True

    def last_relay_contact_id(self, timestamp_bound: int | None = None) -> int | None:
        """Id of the relay this sensor most recently had contact with.

        Epochs ending after `timestamp_bound` are ignored. Without a buffered
        relay contact, the last resolved position is consulted.
        """
        for epoch in reversed(self.mystery_epochs):
            if timestamp_bound is not None and epoch.end_time > timestamp_bound:
                continue
            contact = epoch.relay_contact
            if contact is not None:
                return contact.node_id

        position = self.last_known_position
        if position is None:
            return None
        if position.dest is not None:
            return position.dest.id
        return position.start.id if position.start is not None else None

    def __repr__(self) -> str:
        return f"Sensor({self.id}, epochs={len(self.mystery_epochs)}, checkpoints={len(self.checkpoints)})"
