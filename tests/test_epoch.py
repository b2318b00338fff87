from __future__ import annotations

import math

import pytest

from relaynav.engine.epoch import (
    Epoch,
    EpochType,
    get_last_non_voyage_epoch,
    get_neighbour_relay,
    type_from_direction,
)
from relaynav.errors import DistanceNotSetError
from relaynav.model.contact import Direction, WirelessContact
from relaynav.model.node import Relay
from relaynav.model.package import Package
from relaynav.model.position import Position


def _package(timestamp: int, contacts: dict[int, float] | None = None) -> Package:
    return Package(1, timestamp, [WirelessContact(k, v) for k, v in (contacts or {}).items()])


def _epoch(epoch_type: EpochType, *packages: Package) -> Epoch:
    epoch = Epoch(epoch_type, packages[0])
    for p in packages[1:]:
        epoch.add_package(p)
    return epoch


def test_type_from_direction() -> None:
    assert type_from_direction(Direction.APPROACH) is EpochType.RELAY_APPROACH
    assert type_from_direction(Direction.WITHDRAWAL) is EpochType.RELAY_WITHDRAWAL
    assert type_from_direction(Direction.UNKNOWN) is EpochType.VOYAGE


def test_strongest_contact_prefers_latest_on_ties() -> None:
    p1, p2, p3 = _package(1, {2: 0.3}), _package(2, {2: 0.8, 3: 0.1}), _package(3, {2: 0.8})
    epoch = _epoch(EpochType.VOYAGE, p1, p2, p3)
    assert epoch.strongest_contact[2] is p3
    assert epoch.strongest_contact[3] is p2


def test_relay_contact_falls_back_to_inherited() -> None:
    epoch = _epoch(EpochType.RELAY_WITHDRAWAL, _package(1, {1001: 0.5}), _package(2))
    assert epoch.relay_contact is None

    epoch.relay_contact = WirelessContact(1001, 0.5)
    assert epoch.relay_contact.node_id == 1001

    epoch.add_package(_package(3, {1002: 0.2}))
    assert epoch.relay_contact.node_id == 1002


def test_start_time_can_be_pinned_earlier() -> None:
    epoch = Epoch(EpochType.VOYAGE, _package(5), start_time=2)
    epoch.add_package(_package(8))
    assert epoch.start_time == 2
    assert epoch.end_time == 8
    assert epoch.duration == 6


def test_split_at_last_package_is_noop() -> None:
    packages = [_package(t) for t in (1, 2, 3)]
    epoch = _epoch(EpochType.VOYAGE, *packages)
    end = Position(Relay(1001), Relay(1002), 10.0, 100.0)
    assert epoch.split(packages[-1], end) is None
    assert epoch.packages == packages
    assert epoch.end_position is None


def test_split_moves_tail_into_new_epoch() -> None:
    packages = [_package(1), _package(2, {2: 0.9}), _package(3), _package(4, {2: 0.4})]
    epoch = _epoch(EpochType.VOYAGE, *packages)
    end = Position(Relay(1001), Relay(1002), 10.0, 100.0)

    tail = epoch.split(packages[1], end)

    assert tail is not None
    assert tail.type is EpochType.VOYAGE
    assert epoch.packages + tail.packages == packages
    assert tail.start_time == 2
    assert epoch.end_position == end
    assert epoch.strongest_contact[2] is packages[1]
    assert tail.strongest_contact[2] is packages[3]


def test_set_package_positions_interpolates() -> None:
    epoch = _epoch(EpochType.VOYAGE, _package(0), _package(5), _package(10))
    start = Position(Relay(1001), Relay(1002), 20.0, 100.0)

    epoch.set_package_positions(10.0, start)

    assert [p.position.offset for p in epoch.packages] == pytest.approx([20.0, 25.0, 30.0])
    assert all(p.position.total == 100.0 for p in epoch.packages)
    assert epoch.end_position == epoch.packages[-1].position


def test_set_package_positions_zero_duration_keeps_offset() -> None:
    epoch = _epoch(EpochType.RELAY_APPROACH, _package(4, {1001: 0.5}))
    epoch.set_package_positions(3.0, Position(Relay(1001), Relay(1002), 7.0, 100.0))
    assert epoch.packages[0].position.offset == 7.0


def test_set_package_positions_keeps_known_end() -> None:
    epoch = _epoch(EpochType.VOYAGE, _package(0), _package(10))
    end = Position(Relay(1001), Relay(1002), 50.0, 100.0)
    epoch.end_position = end
    epoch.set_package_positions(50.0, Position(Relay(1001), Relay(1002), 0.0, 100.0))
    assert epoch.end_position is end


def test_set_package_positions_requires_distance() -> None:
    epoch = _epoch(EpochType.VOYAGE, _package(0))
    with pytest.raises(DistanceNotSetError):
        epoch.set_package_positions(math.nan, Position(Relay(1001), Relay(1002), 0.0, 100.0))


def test_set_package_positions_on_empty_epoch_has_no_distance() -> None:
    epoch = _epoch(EpochType.VOYAGE, _package(0))
    epoch.packages.clear()
    with pytest.raises(DistanceNotSetError):
        epoch.set_package_positions(10.0, Position(Relay(1001), Relay(1002), 0.0, 100.0))


def test_last_non_voyage_epoch_at_borders() -> None:
    epochs = [_epoch(EpochType.RELAY_WITHDRAWAL, _package(1, {1001: 0.5})), _epoch(EpochType.VOYAGE, _package(2))]
    assert get_last_non_voyage_epoch(epochs, 0, True) is None
    assert get_last_non_voyage_epoch(epochs, 1, False) is None
    assert get_last_non_voyage_epoch(epochs, 2, True) is epochs[0]


def test_last_non_voyage_epoch_skips_voyages() -> None:
    epochs = [
        _epoch(EpochType.RELAY_WITHDRAWAL, _package(1, {1001: 0.5})),
        _epoch(EpochType.VOYAGE, _package(2)),
        _epoch(EpochType.VOYAGE, _package(3)),
        _epoch(EpochType.RELAY_APPROACH, _package(4, {1002: 0.5})),
    ]
    assert get_last_non_voyage_epoch(epochs, 0, False) is epochs[3]
    assert get_last_non_voyage_epoch(epochs, 3, True) is epochs[0]
    assert get_neighbour_relay(epochs, 1, False).node_id == 1002
    assert get_neighbour_relay(epochs, 1, True).node_id == 1001


def test_last_non_voyage_epoch_skips_split_run_of_same_relay() -> None:
    epochs = [
        _epoch(EpochType.RELAY_WITHDRAWAL, _package(1, {1002: 0.5})),
        _epoch(EpochType.RELAY_APPROACH, _package(2, {1001: 0.5})),
        _epoch(EpochType.RELAY_APPROACH, _package(3, {1001: 0.7})),
    ]
    assert get_last_non_voyage_epoch(epochs, 2, True) is epochs[0]

    epochs[1] = _epoch(EpochType.RELAY_APPROACH, _package(2, {1003: 0.5}))
    assert get_last_non_voyage_epoch(epochs, 2, True) is epochs[1]
