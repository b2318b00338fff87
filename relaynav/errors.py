"""Exception hierarchy for relaynav."""

from __future__ import annotations


class LocatorError(Exception):
    """Base exception for all relaynav errors."""


class EpochError(LocatorError):
    """An epoch operation was invoked in a state that does not allow it."""


class EmptyEpochError(EpochError):
    """The operation needs at least one buffered package."""


class DistanceNotSetError(EpochError):
    """Positions were requested before a travelled distance was known."""


class TopologyError(LocatorError):
    """A graph query could not be answered."""


class RelayNotFoundError(TopologyError, KeyError):
    """The id is not a relay of the topology."""

    def __init__(self, relay_id: int) -> None:
        self.relay_id = relay_id
        super().__init__(f"relay {relay_id} is not part of the topology")

    def __str__(self) -> str:
        return self.args[0]


class NoPathError(TopologyError):
    """The two relays are not connected."""

    def __init__(self, start_id: int, dest_id: int) -> None:
        self.start_id = start_id
        self.dest_id = dest_id
        super().__init__(f"no path between relay {start_id} and relay {dest_id}")


class NoSuchEdgeInRouteError(TopologyError):
    """An edge position cannot be expressed relative to the requested route."""


class InvariantViolation(TopologyError):
    """A position is inconsistent with the graph it refers to."""
