"""Timestamped observations made by one sensor."""

from __future__ import annotations

from collections.abc import Iterable

from relaynav.model.contact import WirelessContact, strongest_signal
from relaynav.model.position import AnyPosition


class Package:
    """One observation: who measured, when, and which neighbours were heard.

    Contacts are keyed by neighbour id, so a neighbour appears at most once and
    a later insertion replaces an earlier one. The position is left empty on
    creation and filled in once the locator resolves the package.
    """

    def __init__(
        self,
        sensor_id: int,
        timestamp: int,
        contacts: Iterable[WirelessContact] = (),
    ) -> None:
        self.sensor_id = sensor_id
        self.timestamp = timestamp
        self.contacts: dict[int, WirelessContact] = {}
        self.position: AnyPosition | None = None
        for contact in contacts:
            self.add_contact(contact)

    def add_contact(self, contact: WirelessContact) -> None:
        self.contacts[contact.node_id] = contact

    def contact_to(self, node_id: int) -> WirelessContact | None:
        return self.contacts.get(node_id)

    def relay_contacts(self) -> list[WirelessContact]:
        return [c for c in self.contacts.values() if c.is_relay]

    def sensor_contacts(self) -> list[WirelessContact]:
        return [c for c in self.contacts.values() if not c.is_relay]

    def strongest_relay(self) -> WirelessContact | None:
        return strongest_signal(self.relay_contacts())

    def to_dict(self) -> dict:
        return {
            "deviceId": self.sensor_id,
            "timestamp": self.timestamp,
            "contacts": [c.to_dict() for c in self.contacts.values()],
            "position": self.position.to_dict() if self.position is not None else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Package:
        return cls(
            sensor_id=int(d["deviceId"]),
            timestamp=int(d["timestamp"]),
            contacts=[WirelessContact.from_dict(c) for c in d.get("contacts", [])],
        )

    def __repr__(self) -> str:
        return f"Package(sensor_id={self.sensor_id}, timestamp={self.timestamp}, contacts={len(self.contacts)})"
