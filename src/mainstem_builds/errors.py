"""Exceptions raised while conflating flow networks and linking hydrologic units"""

from typing import Any


class CycleDetected(ValueError):
    """Raised when a downstream trace revisits a segment it has already visited

    Parameters
    ----------
    start_id : int
        The segment the trace started from
    repeated_id : int
        The segment id that reappeared in the trace
    """

    def __init__(self, start_id: int, repeated_id: int) -> None:
        self.start_id = start_id
        self.repeated_id = repeated_id
        super().__init__(f"Cycle detected tracing downstream from {start_id}: {repeated_id} was revisited")


class UnresolvedCorrespondence(ValueError):
    """Raised when a target segment still holds several level paths after all tie-breaks"""

    def __init__(self, member_id: Any, candidates: list[dict[str, Any]]) -> None:
        self.member_id = member_id
        self.candidates = candidates
        super().__init__(f"Member {member_id} could not be resolved to a single level path: {candidates}")


class NoMatchWithinRadius(LookupError):
    """Raised when no flowline lies within the search radius of a point"""

    def __init__(self, search_radius: float) -> None:
        self.search_radius = search_radius
        super().__init__(f"No flowline found within {search_radius} of point")
