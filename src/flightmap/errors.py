"""
Exception hierarchy for the flightmap diagram engine.

Dangling references inside a plan are never raised; they are logged and the
affected step is skipped. These exceptions cover genuinely invalid input,
transport failures and undefined interaction transitions.
"""


class FlightmapError(Exception):
    """Base class for all flightmap errors."""

    pass


class PlanError(FlightmapError):
    """Raised when the hierarchical plan input is structurally invalid."""

    pass


class PositionStoreError(FlightmapError):
    """Raised when stored positions cannot be fetched, written or decoded."""

    pass


class DragStateError(FlightmapError):
    """Raised on an undefined drag transition (e.g. two concurrent drags)."""

    pass
