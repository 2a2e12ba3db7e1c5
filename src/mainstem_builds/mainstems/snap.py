"""Point-on-line snapping against a set of reach-measured flowlines"""

from typing import NamedTuple

import geopandas as gpd
import numpy as np
import shapely
from shapely.geometry.base import BaseGeometry

from mainstem_builds.errors import NoMatchWithinRadius


class FlowlineIndexResult(NamedTuple):
    """Where a point lands on the network"""

    segment_id: int
    reachcode: str
    measure: float
    offset: float


class FlowlineIndex:
    """A read-only spatial index over flowlines that snaps points to reach measures.

    Flowlines are expected to be digitized upstream to downstream. Measures run
    from 0 at the downstream end of a reach to 100 at its upstream end.

    Parameters
    ----------
    flowlines : gpd.GeoDataFrame
        Flowlines with ``id``, ``reachcode``, ``frommeas``, ``tomeas`` and line geometry.
        When a ``hydroseq`` column is present, equidistant matches resolve to the
        smaller hydroseq (the more downstream segment).
    """

    def __init__(self, flowlines: gpd.GeoDataFrame) -> None:
        if "hydroseq" in flowlines.columns:
            flowlines = flowlines.sort_values(["hydroseq", "id"], kind="mergesort")
        self._ids = flowlines["id"].to_numpy()
        self._reachcodes = flowlines["reachcode"].astype(str).to_numpy()
        self._frommeas = flowlines["frommeas"].to_numpy(dtype=float)
        self._tomeas = flowlines["tomeas"].to_numpy(dtype=float)
        self._geoms = flowlines.geometry.to_numpy()
        self._tree = shapely.STRtree(self._geoms)

    def __len__(self) -> int:
        return len(self._ids)

    def snap(self, point: BaseGeometry, search_radius: float) -> FlowlineIndexResult:
        """Snap a point to the nearest flowline inside the search radius.

        Parameters
        ----------
        point : BaseGeometry
            The point to snap
        search_radius : float
            The largest allowed distance between the point and the flowline

        Returns
        -------
        FlowlineIndexResult
            Segment id, reach code, measure in [0, 100] and offset distance

        Raises
        ------
        NoMatchWithinRadius
            If no flowline is within ``search_radius`` of the point
        """
        if point is None or point.is_empty:
            raise NoMatchWithinRadius(search_radius)

        matches, distances = self._tree.query_nearest(
            point, max_distance=search_radius, return_distance=True, all_matches=True
        )
        if len(matches) == 0:
            raise NoMatchWithinRadius(search_radius)

        idx = int(np.min(matches))  # rows are sorted by hydroseq, so ties go downstream
        line = self._geoms[idx]

        fraction = line.project(point, normalized=True) if line.length > 0 else 0.0
        measure = self._frommeas[idx] + (self._tomeas[idx] - self._frommeas[idx]) * (1.0 - fraction)

        return FlowlineIndexResult(
            segment_id=int(self._ids[idx]),
            reachcode=str(self._reachcodes[idx]),
            measure=float(np.clip(measure, 0.0, 100.0)),
            offset=float(distances[matches == idx][0]),
        )
