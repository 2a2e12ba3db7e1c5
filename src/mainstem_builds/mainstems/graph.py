"""A file for the flow network graph and downstream tracing"""

import logging
from typing import Any, Self

import geopandas as gpd
import pandas as pd
import polars as pl
import rustworkx as rx
import shapely

from mainstem_builds.errors import CycleDetected

logger = logging.getLogger(__name__)


def _as_segment_frame(segments: pd.DataFrame | pl.DataFrame) -> pl.DataFrame:
    """Select the topology columns of a segment table as a polars DataFrame

    Geometry is dropped. Optional ``levelpath`` and ``hydroseq`` columns are kept when present.
    """
    cols = [c for c in ["id", "toid", "levelpath", "hydroseq"] if c in segments.columns]
    if isinstance(segments, pd.DataFrame):
        df = pl.from_pandas(pd.DataFrame(segments[cols]))
    else:
        df = segments.select(pl.col(cols))
    return df.with_columns(
        pl.col("id").cast(pl.Int64),
        pl.col("toid").cast(pl.Float64).fill_nan(None).cast(pl.Int64),
    )


class FlowGraph:
    """A directed flow network where every segment has at most one downstream neighbor.

    Parameters
    ----------
    downstream : dict[int, int | None]
        Mapping of segment id to its downstream segment id. None marks a terminal segment.
    attributes : pl.DataFrame | None, optional
        Per-segment ``id``, ``levelpath`` and ``hydroseq`` attributes, by default None

    Notes
    -----
    A downstream id of 0, null, or an id absent from the network is treated as terminal.
    The rustworkx graph stores edges upstream -> downstream.
    """

    def __init__(self, downstream: dict[int, int | None], attributes: pl.DataFrame | None = None) -> None:
        self._downstream = {
            seg: (dn if dn is not None and dn != 0 and dn in downstream else None)
            for seg, dn in downstream.items()
        }
        self.attributes = attributes
        self.graph = rx.PyDiGraph(check_cycle=False)
        self.node_indices: dict[int, int] = {seg: self.graph.add_node(seg) for seg in self._downstream}
        for seg, dn in self._downstream.items():
            if dn is not None:
                self.graph.add_edge(self.node_indices[seg], self.node_indices[dn], None)

    @classmethod
    def from_segments(cls, segments: pd.DataFrame | pl.DataFrame) -> Self:
        """Build a flow graph from a segment table

        Parameters
        ----------
        segments : pd.DataFrame | pl.DataFrame
            A table with ``id`` and ``toid`` columns, optionally ``levelpath`` and ``hydroseq``

        Returns
        -------
        FlowGraph
            The flow graph

        Raises
        ------
        ValueError
            If a segment id appears more than once (a fan-out)
        """
        df = _as_segment_frame(segments)
        duplicated = df.filter(pl.col("id").is_duplicated())["id"].unique().to_list()
        if duplicated:
            raise ValueError(f"Segments have more than one downstream link, not dendritic: {duplicated[:10]}")

        downstream: dict[int, int | None] = dict(zip(df["id"].to_list(), df["toid"].to_list(), strict=True))
        attributes = df.drop("toid") if {"levelpath", "hydroseq"}.issubset(df.columns) else None
        return cls(downstream, attributes)

    def __len__(self) -> int:
        return len(self._downstream)

    def __contains__(self, segment_id: Any) -> bool:
        return segment_id in self._downstream

    def downstream_of(self, segment_id: int) -> int | None:
        """The downstream neighbor of a segment, or None for a terminal"""
        return self._downstream[segment_id]

    def trace_downstream(self, start_id: int) -> list[int]:
        """Trace from a segment to its terminal following the single downstream link.

        Parameters
        ----------
        start_id : int
            The segment to start from

        Returns
        -------
        list[int]
            Segment ids from ``start_id`` to the terminal, both inclusive

        Raises
        ------
        KeyError
            If ``start_id`` is not part of the network
        CycleDetected
            If a segment is visited twice in the same trace
        """
        if start_id not in self._downstream:
            raise KeyError(f"Segment {start_id} is not part of the network")

        path: list[int] = []
        visited: set[int] = set()
        current: int | None = start_id
        while current is not None:
            if current in visited:
                raise CycleDetected(start_id, current)
            visited.add(current)
            path.append(current)
            current = self._downstream[current]
        return path

    def headwaters(self) -> list[int]:
        """Segments with no upstream inflow

        Returns
        -------
        list[int]
            Headwater segment ids
        """
        return [seg for seg, idx in self.node_indices.items() if self.graph.in_degree(idx) == 0]

    def terminals(self) -> list[int]:
        """Segments with no downstream neighbor"""
        return [seg for seg, dn in self._downstream.items() if dn is None]

    def upstream_of(self, segment_id: int) -> set[int]:
        """All segments upstream of a segment, excluding itself"""
        return {self.graph[idx] for idx in rx.ancestors(self.graph, self.node_indices[segment_id])}

    def level_paths(self) -> pl.DataFrame:
        """The level path view over the segment attributes.

        Returns
        -------
        pl.DataFrame
            One row per level path with ``levelpath``, ``outlet_id`` (min hydroseq),
            ``headwater_id`` (max hydroseq), ``min_hydroseq``, ``max_hydroseq`` and ``size``

        Raises
        ------
        ValueError
            If the graph was built without level path and hydroseq attributes
        """
        if self.attributes is None:
            raise ValueError("Level paths need levelpath and hydroseq attributes")

        return (
            self.attributes.group_by("levelpath")
            .agg(
                pl.col("id").sort_by("hydroseq").first().alias("outlet_id"),
                pl.col("id").sort_by("hydroseq").last().alias("headwater_id"),
                pl.col("hydroseq").min().alias("min_hydroseq"),
                pl.col("hydroseq").max().alias("max_hydroseq"),
                pl.len().alias("size"),
            )
            .sort("levelpath")
        )

    def validate(self) -> None:
        """Validate the network is a forest rooted at terminals.

        Raises
        ------
        CycleDetected
            If any downstream chain loops back on itself
        ValueError
            If hydroseq does not increase strictly upstream
        """
        if not rx.is_directed_acyclic_graph(self.graph):
            cycle = rx.digraph_find_cycle(self.graph)
            first = self.graph[cycle[0][0]] if cycle else -1
            raise CycleDetected(first, first)
        if self.attributes is not None:
            _check_hydroseq_order(self._downstream, self.attributes)


def _check_hydroseq_order(downstream: dict[int, int | None], attributes: pl.DataFrame) -> None:
    """Validate hydroseq increases strictly in the upstream direction.

    Parameters
    ----------
    downstream : dict[int, int | None]
        Mapping of segment id to its downstream segment id
    attributes : pl.DataFrame
        Per-segment ``id`` and ``hydroseq``

    Raises
    ------
    ValueError
        If any segment has a hydroseq not greater than its downstream neighbor's
    """
    links = pl.DataFrame(
        {"id": list(downstream.keys()), "toid": list(downstream.values())},
        schema={"id": pl.Int64, "toid": pl.Int64},
    ).drop_nulls("toid")
    hydroseq = attributes.select("id", "hydroseq")

    out_of_order = (
        links.join(hydroseq, on="id")
        .join(hydroseq.rename({"id": "toid", "hydroseq": "downstream_hydroseq"}), on="toid")
        .filter(pl.col("hydroseq") <= pl.col("downstream_hydroseq"))
        .sort("id")
    )
    if out_of_order.height > 0:
        raise ValueError(
            f"hydroseq must increase upstream, {out_of_order.height} segments are not above their "
            f"downstream neighbor: {out_of_order['id'].to_list()[:10]}"
        )


def get_headwater_points(flowlines: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Get one representative point for each headwater flowline.

    The point is the middle vertex of the line, away from the drainage divide
    where the two networks disagree the most.

    Parameters
    ----------
    flowlines : gpd.GeoDataFrame
        Flowlines with ``id``, ``toid`` and line geometry

    Returns
    -------
    gpd.GeoDataFrame
        Headwater ``id`` and a point geometry
    """
    headwaters = flowlines[~flowlines["id"].isin(flowlines["toid"].dropna())]

    points = []
    for geom in headwaters.geometry:
        coords = shapely.get_coordinates(geom)
        points.append(shapely.Point(coords[max(round(len(coords) / 2) - 1, 0)]))

    return gpd.GeoDataFrame(
        {"id": headwaters["id"].to_numpy()},
        geometry=gpd.GeoSeries(points, crs=flowlines.crs),
        crs=flowlines.crs,
    )
