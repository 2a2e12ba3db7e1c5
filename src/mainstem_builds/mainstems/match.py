"""Level path correspondence between a coarse source network and a finer target network"""

import logging
from collections.abc import Callable

import geopandas as gpd
import pandas as pd
import polars as pl
from tqdm import tqdm

from mainstem_builds.errors import UnresolvedCorrespondence
from mainstem_builds.mainstems.graph import FlowGraph, get_headwater_points
from mainstem_builds.schemas.mainstems import Correspondence, TieBreakPolicy

logger = logging.getLogger(__name__)

TieBreak = Callable[[pl.DataFrame], pl.DataFrame]


def _keep_furthest_upstream_headwater(candidates: pl.DataFrame) -> pl.DataFrame:
    """Keep the candidates whose headwater sits furthest upstream for each member.

    This assumes the largest mainstem extends furthest upstream of competing
    paths. The assumption is dataset dependent and is not proven.
    """
    return candidates.filter(
        pl.col("headwater_hydroseq") == pl.col("headwater_hydroseq").max().over("member_id")
    )


def _keep_all(candidates: pl.DataFrame) -> pl.DataFrame:
    return candidates


TIE_BREAK_POLICIES: dict[TieBreakPolicy, TieBreak] = {
    TieBreakPolicy.FURTHEST_UPSTREAM: _keep_furthest_upstream_headwater,
    TieBreakPolicy.SMALLEST_LEVELPATH: _keep_all,
}


def _trace_pairs(graph: FlowGraph, pairs: list[tuple[int, int]], desc: str) -> pl.DataFrame:
    """Trace downstream from each start segment, tagging every visited member with its headwater.

    Parameters
    ----------
    graph : FlowGraph
        The network to trace
    pairs : list[tuple[int, int]]
        (headwater_id, start_id) tuples
    desc : str
        Progress bar description

    Returns
    -------
    pl.DataFrame
        ``headwater_id`` and ``member_id`` rows
    """
    headwater_ids: list[int] = []
    member_ids: list[int] = []
    for headwater_id, start_id in tqdm(pairs, desc=desc):
        if start_id not in graph:
            logger.warning(f"match_flowpaths: {start_id} not found in network, skipping headwater {headwater_id}")
            continue
        members = graph.trace_downstream(start_id)
        headwater_ids.extend([headwater_id] * len(members))
        member_ids.extend(members)

    return pl.DataFrame(
        {"headwater_id": headwater_ids, "member_id": member_ids},
        schema={"headwater_id": pl.Int64, "member_id": pl.Int64},
    )


def resolve_headwater_levelpaths(source_graph: FlowGraph, headwater_ids: list[int]) -> pl.DataFrame:
    """Find the dominant source level path downstream of each headwater.

    Every headwater is traced down the source network. Then three passes run:
    1. Per level path, keep the members with the largest hydroseq. This is the
       most upstream point any trace enters that level path.
    2. Per level path, keep the headwater with the largest hydroseq.
    3. Per headwater, keep the smallest level path id.

    Parameters
    ----------
    source_graph : FlowGraph
        The source network. Must carry ``levelpath`` and ``hydroseq`` attributes
    headwater_ids : list[int]
        Source headwater segment ids

    Returns
    -------
    pl.DataFrame
        ``headwater_id``, ``levelpath`` and ``headwater_hydroseq``. Headwaters that lose
        every candidate are absent.
    """
    if source_graph.attributes is None:
        raise ValueError("Source network needs levelpath and hydroseq attributes")

    attrs = source_graph.attributes.with_columns(pl.col("levelpath").cast(pl.Int64))
    candidates = _trace_pairs(source_graph, [(hw, hw) for hw in headwater_ids], desc="Tracing source network")

    candidates = candidates.join(attrs.rename({"id": "member_id"}), on="member_id", how="left")
    candidates = candidates.filter(pl.col("hydroseq") == pl.col("hydroseq").max().over("levelpath"))

    candidates = candidates.join(
        attrs.select(pl.col("id").alias("headwater_id"), pl.col("hydroseq").alias("headwater_hydroseq")),
        on="headwater_id",
        how="left",
    )
    candidates = candidates.filter(
        pl.col("headwater_hydroseq") == pl.col("headwater_hydroseq").max().over("levelpath")
    )

    candidates = candidates.filter(pl.col("levelpath") == pl.col("levelpath").min().over("headwater_id"))

    return candidates.select(["headwater_id", "levelpath", "headwater_hydroseq"]).unique().sort("headwater_id")


def _check_resolved(candidates: pl.DataFrame) -> None:
    """Raise if any member still holds more than one level path"""
    ambiguous = (
        candidates.group_by("member_id")
        .agg(pl.col("levelpath").n_unique().alias("n_levelpaths"))
        .filter(pl.col("n_levelpaths") > 1)
    )
    if ambiguous.height > 0:
        member_id = ambiguous["member_id"].sort()[0]
        conflicting = candidates.filter(pl.col("member_id") == member_id).to_dicts()
        raise UnresolvedCorrespondence(member_id, conflicting)


def match_flowpaths(
    source_graph: FlowGraph,
    target_graph: FlowGraph,
    headwater_pairs: pd.DataFrame | pl.DataFrame,
    policy: TieBreakPolicy | TieBreak = TieBreakPolicy.FURTHEST_UPSTREAM,
) -> pl.DataFrame:
    """Match every target segment downstream of a paired headwater to one source level path.

    Tracing starts from the source headwaters rather than the outlets. This keeps the match
    away from the complexity near drainage divides.

    Parameters
    ----------
    source_graph : FlowGraph
        The coarse network with level paths
    target_graph : FlowGraph
        The finer network to match
    headwater_pairs : pd.DataFrame | pl.DataFrame
        ``headwater_id`` (source headwater) and ``target_id`` (target segment containing it)
    policy : TieBreakPolicy | TieBreak, optional
        Member-level tie-break used before the smallest level path rule,
        by default TieBreakPolicy.FURTHEST_UPSTREAM

    Returns
    -------
    pl.DataFrame
        One row per target member with ``member_id``, ``levelpath`` and ``headwater_id``

    Raises
    ------
    UnresolvedCorrespondence
        If a member still holds several level paths after all tie-breaks
    """
    if isinstance(headwater_pairs, pd.DataFrame):
        headwater_pairs = pl.from_pandas(pd.DataFrame(headwater_pairs[["headwater_id", "target_id"]]))
    pairs = (
        headwater_pairs.select(pl.col("headwater_id").cast(pl.Int64), pl.col("target_id").cast(pl.Int64))
        .drop_nulls()
        .filter(pl.col("headwater_id").is_in(list(source_graph.node_indices)))
        .unique(maintain_order=True)
    )
    logger.info(f"match_flowpaths: matching {pairs.height} headwater pairs")

    headwater_levelpaths = resolve_headwater_levelpaths(source_graph, pairs["headwater_id"].unique().to_list())

    members = _trace_pairs(
        target_graph, list(zip(pairs["headwater_id"], pairs["target_id"], strict=True)), desc="Tracing target network"
    )
    candidates = members.join(headwater_levelpaths, on="headwater_id", how="inner")

    candidates = candidates.filter(
        pl.col("headwater_hydroseq") == pl.col("headwater_hydroseq").max().over(["member_id", "levelpath"])
    )
    tie_break = TIE_BREAK_POLICIES[TieBreakPolicy(policy)] if isinstance(policy, str) else policy
    candidates = tie_break(candidates)
    candidates = candidates.filter(pl.col("levelpath") == pl.col("levelpath").min().over("member_id"))

    _check_resolved(candidates)

    return (
        candidates.sort(["member_id", "headwater_id"])
        .unique(subset="member_id", keep="first", maintain_order=True)
        .select(Correspondence.columns())
    )


def build_headwater_pairs(
    source_flowlines: gpd.GeoDataFrame, target_catchments: gpd.GeoDataFrame
) -> pd.DataFrame:
    """Pair each source headwater with the target catchment containing its midpoint.

    Parameters
    ----------
    source_flowlines : gpd.GeoDataFrame
        Source flowlines with ``id`` and ``toid``
    target_catchments : gpd.GeoDataFrame
        Target catchment polygons with ``id``

    Returns
    -------
    pd.DataFrame
        ``headwater_id`` and ``target_id`` pairs
    """
    hw_points = get_headwater_points(source_flowlines)
    if target_catchments.crs != hw_points.crs:
        target_catchments = target_catchments.to_crs(hw_points.crs)

    joined = gpd.sjoin(hw_points, target_catchments[["id", "geometry"]], predicate="within", how="inner")
    pairs = joined.rename(columns={"id_left": "headwater_id", "id_right": "target_id"})[
        ["headwater_id", "target_id"]
    ]
    return pd.DataFrame(pairs.dropna().drop_duplicates().reset_index(drop=True))


def join_members_to_units(target_flowlines: gpd.GeoDataFrame, units: gpd.GeoDataFrame) -> pd.DataFrame:
    """Find the hydrologic unit holding each target segment

    Parameters
    ----------
    target_flowlines : gpd.GeoDataFrame
        Target flowlines with ``id``
    units : gpd.GeoDataFrame
        Hydrologic units with ``unit_id``

    Returns
    -------
    pd.DataFrame
        ``member_id`` and ``unit_id`` rows
    """
    points = gpd.GeoDataFrame(
        {"member_id": target_flowlines["id"].to_numpy()},
        geometry=target_flowlines.geometry.representative_point().to_numpy(),
        crs=target_flowlines.crs,
    )
    joined = gpd.sjoin(points, units[["unit_id", "geometry"]], predicate="within", how="inner")
    return pd.DataFrame(joined[["member_id", "unit_id"]].drop_duplicates().reset_index(drop=True))


def assign_units_to_levelpaths(member_units: pd.DataFrame, correspondence: pl.DataFrame) -> pd.DataFrame:
    """Give every hydrologic unit exactly one level path: the smallest among its members

    Parameters
    ----------
    member_units : pd.DataFrame
        ``member_id`` and ``unit_id`` rows
    correspondence : pl.DataFrame
        The output of :func:`match_flowpaths`

    Returns
    -------
    pd.DataFrame
        ``unit_id`` and ``levelpath``
    """
    units = pl.from_pandas(pd.DataFrame(member_units[["member_id", "unit_id"]])).with_columns(
        pl.col("member_id").cast(pl.Int64), pl.col("unit_id").cast(pl.String)
    )
    return (
        units.join(correspondence.select(["member_id", "levelpath"]), on="member_id", how="inner")
        .group_by("unit_id")
        .agg(pl.col("levelpath").min())
        .sort("unit_id")
        .to_pandas()
    )
