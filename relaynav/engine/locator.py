"""Incremental localization of sensors from relay contact sequences.

Packages are buffered per sensor in epochs. Whenever a sensor arrives at or
turns away from a relay, the buffered epochs between two known relays can be
placed on the route connecting them, and the packages inside are returned
with their positions filled in.
"""

from __future__ import annotations

import logging
import math
from enum import Enum
from pathlib import Path

from relaynav.config import LocatorConfig, load_config
from relaynav.engine.epoch import (
    Epoch,
    EpochType,
    get_last_non_voyage_epoch,
    get_neighbour_relay,
    type_from_direction,
)
from relaynav.engine.sensor import Sensor
from relaynav.errors import NoPathError, NoSuchEdgeInRouteError
from relaynav.model.contact import Direction, strongest_signal
from relaynav.model.package import Package
from relaynav.model.position import Position, RendezVous, UnanchoredPosition
from relaynav.topology.analyzer import TopologyAnalyzer

log = logging.getLogger(__name__)


class Resolution(Enum):
    RESOLVED = "resolved"
    NEEDS_TYPE_FLIP = "needs-type-flip"


_FLIPPED = {
    EpochType.RELAY_APPROACH: EpochType.RELAY_WITHDRAWAL,
    EpochType.RELAY_WITHDRAWAL: EpochType.RELAY_APPROACH,
}


class Locator:
    """Annotates fed packages with positions along the relay topology."""

    def __init__(
        self,
        topology: TopologyAnalyzer | None = None,
        config: LocatorConfig | None = None,
    ) -> None:
        self.topology = topology if topology is not None else TopologyAnalyzer.sample()
        self.config = config if config is not None else LocatorConfig()
        self.max_signal = self.config.max_signal
        self.sensors: dict[int, Sensor] = {}

    @classmethod
    def from_config_file(cls, path: Path, topology: TopologyAnalyzer | None = None, **overrides) -> Locator:
        return cls(topology, load_config(path, **overrides))

    def _ensure_sensor(self, sensor_id: int) -> Sensor:
        sensor = self.sensors.get(sensor_id)
        if sensor is None:
            sensor = Sensor(sensor_id)
            self.sensors[sensor_id] = sensor
        return sensor

    # -- admission --------------------------------------------------------

    def feed(self, package: Package) -> list[Package]:
        """Feed the next package of a sensor.

        Returns the previously fed packages of that sensor whose positions
        became known because of this one, ordered by timestamp. Most calls
        return an empty list.
        """
        relay_contacts = package.relay_contacts()
        for contact in relay_contacts:
            self.topology.relay(contact.node_id)

        sensor = self._ensure_sensor(package.sensor_id)
        for contact in package.sensor_contacts():
            self._ensure_sensor(contact.node_id)
        for contact in relay_contacts:
            self.max_signal = max(self.max_signal, contact.strength)

        if not relay_contacts:
            self._add_to_epochs(sensor, package, EpochType.VOYAGE)
            return []

        strongest = strongest_signal(relay_contacts)
        last_package = sensor.last_package

        # Heading towards each relay relative to the previous package
        for contact in relay_contacts:
            previous = last_package.contact_to(contact.node_id) if last_package is not None else None
            if previous is None:
                # A sensor without buffered packages was just purged passing under a relay
                contact.direction = Direction.WITHDRAWAL if last_package is None else Direction.APPROACH
            elif previous.strength < contact.strength:
                contact.direction = Direction.APPROACH
            else:
                contact.direction = Direction.WITHDRAWAL
                if self._follows_approach(sensor):
                    self._add_to_epochs(sensor, package, EpochType.RELAY_WITHDRAWAL)
                    return self._clear_sensor_epochs(sensor)

        # Next to a relay, so the buffered history can be placed
        if strongest.strength + self.config.tolerance >= self.max_signal:
            anchor = get_last_non_voyage_epoch(sensor.mystery_epochs, len(sensor.mystery_epochs), True)
            if anchor is None:
                epoch_type = self._add_to_epochs(sensor, package, EpochType.RELAY_APPROACH)
                if epoch_type is EpochType.RELAY_APPROACH:
                    return self._clear_sensor_epochs(sensor)
                return self._after_admission(sensor, epoch_type)
            if anchor.type is EpochType.RELAY_APPROACH:
                self._add_to_epochs(sensor, package, type_from_direction(strongest.direction))
                return self._clear_sensor_epochs(sensor)

        epoch_type = self._add_to_epochs(sensor, package, type_from_direction(strongest.direction))
        return self._after_admission(sensor, epoch_type)

    def _follows_approach(self, sensor: Sensor) -> bool:
        """Whether the nearest relay epoch before the current heading is an approach."""
        epochs = sensor.mystery_epochs
        index = len(epochs)
        if epochs and epochs[-1].type is EpochType.RELAY_WITHDRAWAL:
            index -= 1
        anchor = get_last_non_voyage_epoch(epochs, index, True)
        return anchor is not None and anchor.type is EpochType.RELAY_APPROACH

    def _after_admission(self, sensor: Sensor, epoch_type: EpochType) -> list[Package]:
        epochs = sensor.mystery_epochs
        anchor = get_last_non_voyage_epoch(epochs, len(epochs) - 1, True)
        if anchor is None:
            return []
        if epoch_type is EpochType.RELAY_WITHDRAWAL:
            if anchor.type is EpochType.RELAY_APPROACH:
                return self._clear_sensor_epochs(sensor)
        elif epoch_type is EpochType.RELAY_APPROACH:
            # Everything before the approach that just opened can be placed
            return self._clear_sensor_epochs(sensor, len(epochs) - 1)
        return []

    def _add_to_epochs(self, sensor: Sensor, package: Package, epoch_type: EpochType) -> EpochType:
        """Put `package` into the sensor's epoch queue and return the type it ended up in."""
        current = sensor.latest_epoch
        if current is None:
            sensor.add_epoch(epoch_type, package)
            return epoch_type

        if current.type is not epoch_type:
            if epoch_type is not EpochType.VOYAGE and self._collapse_false_reversal(sensor, package):
                return EpochType.RELAY_WITHDRAWAL
            sensor.add_epoch(epoch_type, package)
            return epoch_type

        checkpoint = sensor.get_checkpoint(current.packages[0].timestamp, package.timestamp)
        if checkpoint is None:
            current.add_package(package)
            return epoch_type

        self._truncate_at_checkpoint(sensor, current, checkpoint, package)
        return epoch_type

    def _collapse_false_reversal(self, sensor: Sensor, package: Package) -> bool:
        """Fold a jittery heading change back into one withdrawal from the same relay.

        If the package's strongest relay is the relay of the latest relay
        epoch (or the relay the sensor was last resolved next to), everything
        after that epoch plus the package becomes a single withdrawal.
        """
        epochs = sensor.mystery_epochs
        strongest = package.strongest_relay()
        if strongest is None:
            return False

        anchor = get_last_non_voyage_epoch(epochs, len(epochs), True)
        previous_relay_id = None
        if anchor is not None:
            anchor_index = epochs.index(anchor)
            contact = anchor.relay_contact
            if contact is not None:
                previous_relay_id = contact.node_id
        else:
            anchor_index = -1
            last = sensor.last_known_position
            if last is not None and last.total - last.offset <= last.dest.radius:
                previous_relay_id = last.dest.id

        if previous_relay_id != strongest.node_id:
            return False

        collapsed = [p for epoch in epochs[anchor_index + 1:] for p in epoch.packages]
        collapsed.append(package)
        del epochs[anchor_index + 1:]

        if anchor_index >= 0 and epochs[anchor_index].type is EpochType.RELAY_WITHDRAWAL:
            target = epochs[anchor_index]
        else:
            target = sensor.add_epoch(EpochType.RELAY_WITHDRAWAL, collapsed.pop(0))
        for p in collapsed:
            target.add_package(p)

        log.debug("sensor %d: collapsed reversal at relay %d into %s", sensor.id, strongest.node_id, target)
        return True

    def _truncate_at_checkpoint(
        self,
        sensor: Sensor,
        current: Epoch,
        checkpoint: RendezVous,
        package: Package,
    ) -> None:
        """End `current` at a rendezvous and carry its later packages into a new epoch."""
        keep = 0
        for i in range(len(current.packages) - 1, -1, -1):
            if current.packages[i].timestamp <= checkpoint.timestamp:
                keep = i + 1
                break

        carried = current.packages[keep:] + [package]
        del current.packages[keep:]
        current.end_position = checkpoint.position
        current.renew_strongest_contact_info()

        opened = sensor.add_epoch(current.type, carried[0])
        for p in carried[1:]:
            opened.add_package(p)
        if opened.relay_contact is not None:
            current.relay_contact = opened.relay_contact

        log.debug(
            "sensor %d: split %s at rendezvous with sensor %d (t=%d)",
            sensor.id, current, checkpoint.interceptor_id, checkpoint.timestamp,
        )

    # -- resolution -------------------------------------------------------

    def _calculate_epoch_position(self, sensor: Sensor, index: int) -> list[Package] | None:
        """Place the packages of one epoch.

        Returns None when the epoch was placed and the caller may go on. A
        list means the caller has to stop: empty if nothing can be placed
        yet, otherwise the packages of the epochs that were cleared instead.
        """
        epoch = sensor.mystery_epochs[index]
        for flipped in (False, True):
            outcome = self._locate_epoch(sensor, index)
            if outcome is Resolution.RESOLVED:
                return None
            if outcome is not Resolution.NEEDS_TYPE_FLIP:
                return outcome
            if flipped:
                break
            epoch.type = _FLIPPED[epoch.type]
            log.debug("sensor %d: end position contradicts heading, retrying as %s", sensor.id, epoch)

        # Only an anchored end position can contradict a heading
        log.warning("sensor %d: %s contradicts its end position in both headings, pinning it there", sensor.id, epoch)
        for package in epoch.packages:
            package.position = epoch.end_position
        return None

    def _locate_epoch(self, sensor: Sensor, index: int) -> Resolution | list[Package]:
        if sensor.mystery_epochs[index].type is EpochType.VOYAGE:
            return self._locate_voyage(sensor, index)
        return self._locate_relay_epoch(sensor, index)

    def _locate_voyage(self, sensor: Sensor, index: int) -> Resolution | list[Package]:
        epochs = sensor.mystery_epochs
        epoch = epochs[index]
        previous = epochs[index - 1] if index >= 1 else None

        future_contact = get_neighbour_relay(epochs, index, False)
        if future_contact is None:
            if previous is not None and previous.end_position is not None:
                return sensor.merge_and_clear_epochs(index)
            return []
        future = self.topology.relay(future_contact.node_id)

        origin = None
        if previous is not None and previous.end_position is not None:
            origin = previous.end_position
            if origin.fully_travelled:
                origin = Position(origin.dest, future, 0.0, self.topology.distance(origin.dest.id, future.id))
            last = origin.start
        elif sensor.last_known_position is not None:
            origin = sensor.last_known_position
            last = origin.dest
        else:
            # The origin stays unknown no matter what comes later
            for package in epoch.packages:
                package.position = UnanchoredPosition(future)
            return Resolution.RESOLVED

        last = self.topology.relay(last.id)
        total = self.topology.distance(last.id, future.id)
        already = 0.0
        if origin.start is not None and origin.start.id == last.id and origin.dest.id == future.id:
            already = origin.offset

        distance = None
        if epoch.end_position is not None:
            try:
                route_position = self.topology.total_route_position(epoch.end_position, last, future)
                distance = route_position.offset - already
            except NoSuchEdgeInRouteError:
                log.debug("sensor %d: end of %s is off the route %s-%s", sensor.id, epoch, last, future)
        if distance is None:
            distance = total - (already + future.radius)

        epoch.set_package_positions(max(distance, 0.0), Position(last, future, already, total))
        return Resolution.RESOLVED

    def _locate_relay_epoch(self, sensor: Sensor, index: int) -> Resolution | list[Package]:
        epochs = sensor.mystery_epochs
        epoch = epochs[index]

        contact = epoch.relay_contact
        if contact is None:
            return []
        relay = self.topology.relay(contact.node_id)

        prev_relay = None
        prev_contact = get_neighbour_relay(epochs, index, True)
        if prev_contact is not None:
            prev_relay = self.topology.relay(prev_contact.node_id)
        elif sensor.last_known_position is not None:
            last = sensor.last_known_position
            prev_relay = last.dest if last.dest != relay else last.start
            if prev_relay == relay:
                prev_relay = None

        next_relay = None
        next_contact = get_neighbour_relay(epochs, index, False)
        if next_contact is not None:
            next_relay = self.topology.relay(next_contact.node_id)

        end = epoch.end_position
        if epoch.type is EpochType.RELAY_APPROACH:
            if end is not None:
                if end.start == relay:
                    return Resolution.NEEDS_TYPE_FLIP
                prev_relay = end.start

            # Entered the contact radius on the side of the previous relay
            if prev_relay is not None:
                total = self.topology.distance(prev_relay.id, relay.id)
                starting = Position(prev_relay, relay, total - relay.radius, total)
            elif next_relay is not None:
                position = Position(relay, next_relay, 0.0, self.topology.distance(relay.id, next_relay.id))
                epoch.end_position = position
                for package in epoch.packages:
                    package.position = position
                return Resolution.RESOLVED
            else:
                return []
        else:
            if end is not None:
                if end.dest == relay:
                    return Resolution.NEEDS_TYPE_FLIP
                next_relay = end.dest

            if next_relay is None:
                if index > 0:
                    return sensor.merge_and_clear_epochs(index)
                return []
            starting = Position(relay, next_relay, 0.0, self.topology.distance(relay.id, next_relay.id))

        epoch.set_package_positions(relay.radius, starting)
        return Resolution.RESOLVED

    def _clear_sensor_epochs(self, sensor: Sensor, max_index: int | None = None) -> list[Package]:
        """Place the sensor's buffered epochs and return the packages of the placed prefix.

        Only epochs before `max_index` are considered. Cross-sensor contacts
        found on the way may split epochs or leave checkpoints on other sensors.
        Relays the topology cannot connect keep the epochs buffered.
        """
        try:
            return self._place_epochs(sensor, max_index)
        except NoPathError as err:
            log.warning("sensor %d: %s, keeping %d epochs buffered", sensor.id, err, len(sensor.mystery_epochs))
            return []

    def _place_epochs(self, sensor: Sensor, max_index: int | None) -> list[Package]:
        epochs = sensor.mystery_epochs
        self._merge_leading_approach(sensor)

        i = 0
        while i < len(epochs) and (max_index is None or i < max_index):
            epoch = epochs[i]
            halted = self._calculate_epoch_position(sensor, i)
            if halted is not None:
                return halted

            if self.config.checkpoints or self.config.path_rectification:
                for contact_id, strong in list(epoch.strongest_contact.items()):
                    # An earlier split may have moved this contact into the next epoch
                    if strong not in epoch.packages:
                        continue
                    if self.config.path_rectification and epoch.type is EpochType.VOYAGE:
                        if self._rectify_path(sensor, i, contact_id, strong) and max_index is not None:
                            max_index += 1
                    if self.config.checkpoints:
                        self._register_checkpoint(sensor, contact_id, strong)
            i += 1

        count = len(epochs) if max_index is None else min(max_index, len(epochs))
        return sensor.merge_and_clear_epochs(count)

    def _merge_leading_approach(self, sensor: Sensor) -> None:
        """Fix up a first relay epoch that consists of a single approach package."""
        epochs = sensor.mystery_epochs
        for i in range(len(epochs) - 1):
            epoch = epochs[i]
            if epoch.type is EpochType.VOYAGE:
                continue
            if len(epoch.packages) == 1 and epoch.type is EpochType.RELAY_APPROACH:
                follower = epochs[i + 1]
                relay_id = epoch.packages[0].strongest_relay().node_id
                if follower.type is EpochType.VOYAGE:
                    # A single glancing contact while already moving away
                    epoch.type = EpochType.RELAY_WITHDRAWAL
                elif follower.has_contact_to(relay_id):
                    follower.packages.insert(0, epoch.packages[0])
                    follower.renew_strongest_contact_info()
                    del epochs[i]
            break

    def _rectify_path(self, sensor: Sensor, index: int, contact_id: int, strong: Package) -> bool:
        """Split a voyage whose contact with another sensor happened too early to be possible.

        Returns whether a new epoch was inserted after `index`.
        """
        position = strong.position
        if position is None or not position.anchored:
            return False

        last_relay_id = self.sensors[contact_id].last_relay_contact_id(
            strong.timestamp + self.config.time_tolerance
        )
        if last_relay_id is None:
            return False

        confluence = self.topology.earliest_shared_node(
            position.start, self.topology.relay(last_relay_id), position.dest
        )
        min_distance = self.topology.distance(position.start.id, confluence.id)
        if position.offset >= min_distance:
            return False

        epochs = sensor.mystery_epochs
        corrected = self.topology.graph_edge_position(
            Position(position.start, position.dest, min_distance, position.total)
        )
        split_off = epochs[index].split(strong, corrected)
        if split_off is not None:
            epochs.insert(index + 1, split_off)
        log.debug(
            "sensor %d: met sensor %d at t=%d before reaching %s, moved to %s",
            sensor.id, contact_id, strong.timestamp, confluence, corrected,
        )

        self._calculate_epoch_position(sensor, index)
        return split_off is not None

    def _register_checkpoint(self, sensor: Sensor, contact_id: int, strong: Package) -> None:
        position = strong.position
        if position is None or not position.anchored:
            return

        edge_position = self.topology.graph_edge_position(position)
        last_id = self.sensors[contact_id].last_relay_contact_id()
        if last_id is None:
            return

        route = Position(self.topology.relay(last_id), edge_position.dest, 0.0, math.inf)
        if self.topology.contains(edge_position.start, edge_position.dest, route):
            self._deliver_rendezvous(contact_id, RendezVous(edge_position, sensor.id, strong.timestamp))

    def _deliver_rendezvous(self, sensor_id: int, rendezvous: RendezVous) -> None:
        if self.sensors[sensor_id].add_rendezvous(rendezvous):
            log.debug(
                "sensor %d: checkpoint from sensor %d at t=%d, %s",
                sensor_id, rendezvous.interceptor_id, rendezvous.timestamp, rendezvous.position,
            )
