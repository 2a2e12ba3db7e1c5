"""Linking hydrologic units to a single outlet point on their matched level path"""

import logging
from typing import NamedTuple

import geopandas as gpd
import pandas as pd
import shapely
from shapely.errors import GEOSException
from shapely.geometry.base import BaseGeometry
from tqdm import tqdm

from mainstem_builds.errors import NoMatchWithinRadius
from mainstem_builds.mainstems.snap import FlowlineIndex
from mainstem_builds.schemas.mainstems import (
    LinkedPoints,
    LinkMethod,
    LinkPartition,
    PartitionResult,
    PartitionStatus,
    ProblemUnit,
    UnmatchedUnit,
)

logger = logging.getLogger(__name__)


class UnitPoints(NamedTuple):
    """Boundary crossings split by how each unit will be linked"""

    lp: gpd.GeoDataFrame
    na: pd.DataFrame
    broken_border: pd.DataFrame


def build_exclusions(
    units: pd.DataFrame,
    exclude_types: list[str],
    boundary_sentinels: list[str],
) -> set[str]:
    """Find units where river flow does not apply.

    A unit is excluded when its type is non-contributing (frontal, closed, island).
    It is also excluded when it drains to an external boundary, unless another unit
    that is not excluded by type drains into it.

    Parameters
    ----------
    units : pd.DataFrame
        Units with ``unit_id``, ``tounit`` and optionally ``unit_type``
    exclude_types : list[str]
        Non-contributing unit type tags
    boundary_sentinels : list[str]
        ``tounit`` values denoting an external boundary

    Returns
    -------
    set[str]
        Excluded unit ids
    """
    unit_ids = units["unit_id"].astype(str)
    if "unit_type" in units.columns:
        by_type = set(unit_ids[units["unit_type"].isin(exclude_types)])
    else:
        by_type = set()

    contributing = units[~unit_ids.isin(by_type)]
    receivers = set(contributing.loc[contributing["tounit"].notna(), "tounit"].astype(str))

    drains_out = units["tounit"].isin(boundary_sentinels) & ~unit_ids.isin(receivers)
    excluded = by_type | set(unit_ids[drains_out])
    logger.info(
        f"exclusions: {len(by_type)} units excluded by type, {len(excluded) - len(by_type)} draining to a boundary"
    )
    return excluded


def _to_points(geom: BaseGeometry | None) -> list[shapely.Point]:
    """Cast any intersection result to its component points"""
    if geom is None or geom.is_empty:
        return []
    return [shapely.Point(xy) for xy in shapely.get_coordinates(geom)]


def _intersect_levelpath(
    levelpath: int, lp_lines: gpd.GeoSeries, units: gpd.GeoDataFrame
) -> list[dict]:
    """Intersect each unit boundary with a level path.

    Units that do not cross the level path get a single row with no geometry.
    A unit that fails to intersect is logged and left out.
    """
    lp_geom = shapely.union_all(lp_lines.to_numpy())
    rows: list[dict] = []
    for unit_id, geom in zip(units["unit_id"], units.geometry, strict=True):
        try:
            points = _to_points(lp_geom.intersection(geom.boundary))
        except (GEOSException, ValueError) as e:
            logger.error(f"unit_points: intersection failed for unit {unit_id} on level path {levelpath}: {e}")
            continue

        if points:
            rows.extend({"unit_id": unit_id, "levelpath": levelpath, "geometry": p} for p in points)
        else:
            rows.append({"unit_id": unit_id, "levelpath": levelpath, "geometry": None})
    return rows


def get_lp_points(
    unit_levelpaths: pd.DataFrame,
    flowlines: gpd.GeoDataFrame,
    units: gpd.GeoDataFrame,
    exclude: set[str],
    broken_border_fallback: bool = True,
) -> UnitPoints:
    """Find where each unit boundary crosses its level path.

    Parameters
    ----------
    unit_levelpaths : pd.DataFrame
        ``unit_id`` and ``levelpath``. Units listed more than once keep the smallest level path
    flowlines : gpd.GeoDataFrame
        Source flowlines with ``levelpath``
    units : gpd.GeoDataFrame
        Hydrologic unit polygons with ``unit_id``. A unit may span several rows
    exclude : set[str]
        Unit ids to skip entirely
    broken_border_fallback : bool, optional
        When True, units with both crossings and empty rows are moved to the broken border set.
        When False their crossings are kept. By default True

    Returns
    -------
    UnitPoints
        ``lp``: crossing points to snap. ``na``: units with no crossing. ``broken_border``:
        units that landed in both sets
    """
    unit_levelpaths = unit_levelpaths[~unit_levelpaths["unit_id"].isin(exclude)]
    unit_levelpaths = unit_levelpaths.groupby("unit_id", as_index=False)["levelpath"].min()
    units = units[units["unit_id"].isin(unit_levelpaths["unit_id"]) & ~units["unit_id"].isin(exclude)]

    if flowlines.crs != units.crs:
        flowlines = flowlines.to_crs(units.crs)

    rows: list[dict] = []
    for levelpath, group in tqdm(unit_levelpaths.groupby("levelpath"), desc="Intersecting level paths"):
        lp_lines = flowlines.loc[flowlines["levelpath"] == levelpath].geometry
        if lp_lines.empty:
            logger.warning(f"unit_points: level path {levelpath} has no flowlines, skipping {len(group)} units")
            continue
        rows.extend(_intersect_levelpath(int(levelpath), lp_lines, units[units["unit_id"].isin(group["unit_id"])]))

    points = gpd.GeoDataFrame(
        pd.DataFrame(rows, columns=["unit_id", "levelpath", "geometry"]), geometry="geometry", crs=units.crs
    )

    is_na = points.geometry.isna() | points.geometry.is_empty
    na_points = pd.DataFrame(points.loc[is_na, ["unit_id", "levelpath"]]).drop_duplicates()
    lp_points = points.loc[~is_na]

    both = set(na_points["unit_id"]) & set(lp_points["unit_id"])
    if broken_border_fallback:
        broken_border = na_points[na_points["unit_id"].isin(both)]
        lp_points = lp_points[~lp_points["unit_id"].isin(both)]
    else:
        broken_border = na_points.iloc[0:0]
    na_points = na_points[~na_points["unit_id"].isin(both)]

    logger.info(
        f"unit_points: {lp_points['unit_id'].nunique()} units crossing, {len(na_points)} without crossing, "
        f"{len(broken_border)} broken border"
    )
    return UnitPoints(
        lp=lp_points.reset_index(drop=True),
        na=na_points.reset_index(drop=True),
        broken_border=broken_border.reset_index(drop=True),
    )


def get_na_outlets(
    na_points: pd.DataFrame, broken_border: pd.DataFrame, flowlines: gpd.GeoDataFrame
) -> tuple[gpd.GeoDataFrame, list[ProblemUnit]]:
    """Link units without a usable crossing to the outlet of their level path.

    The outlet is the downstream end of the level path's smallest hydroseq segment, at
    measure 0. If that segment's reach starts at a non-zero measure, the outlet falls
    mid-reach and the unit is reported as a problem unit instead.

    Parameters
    ----------
    na_points : pd.DataFrame
        ``unit_id`` and ``levelpath`` of units with no crossing
    broken_border : pd.DataFrame
        ``unit_id`` and ``levelpath`` of broken border units
    flowlines : gpd.GeoDataFrame
        Source flowlines with ``id``, ``levelpath``, ``hydroseq``, ``reachcode`` and ``frommeas``

    Returns
    -------
    tuple[gpd.GeoDataFrame, list[ProblemUnit]]
        Fallback linked points and the problem units
    """
    fallback = pd.concat(
        [
            na_points[["unit_id", "levelpath"]].assign(method=LinkMethod.OUTLET.value),
            broken_border[["unit_id", "levelpath"]].assign(method=LinkMethod.BROKEN_BORDER.value),
        ],
        ignore_index=True,
    )
    if fallback.empty:
        return LinkedPoints.empty(flowlines.crs), []

    outlets = (
        flowlines.loc[flowlines["levelpath"].isin(fallback["levelpath"])]
        .sort_values(["levelpath", "hydroseq"], kind="mergesort")
        .drop_duplicates(subset="levelpath", keep="first")
    )
    merged = fallback.merge(
        pd.DataFrame(outlets[["id", "levelpath", "reachcode", "frommeas", "geometry"]]), on="levelpath", how="left"
    )

    missing = merged["id"].isna()
    if missing.any():
        logger.warning(f"na_outlets: {missing.sum()} units have no flowlines on their level path")
    merged = merged[~missing]

    problem_mask = merged["frommeas"] != 0
    problems = [
        ProblemUnit(
            unit_id=str(row.unit_id),
            levelpath=int(row.levelpath),
            segment_id=int(row.id),
            frommeas=float(row.frommeas),
        )
        for row in merged[problem_mask].itertuples()
    ]
    if problems:
        logger.warning(f"na_outlets: {len(problems)} units have an outlet reach not starting at measure 0")

    ok = merged[~problem_mask]
    outlet_points = [shapely.Point(shapely.get_coordinates(geom)[-1]) for geom in ok["geometry"]]
    records = gpd.GeoDataFrame(
        {
            "unit_id": ok["unit_id"].astype(str).to_numpy(),
            "segment_id": ok["id"].astype("int64").to_numpy(),
            "reachcode": ok["reachcode"].astype(str).to_numpy(),
            "measure": 0.0,
            "offset": 0.0,
            "levelpath": ok["levelpath"].astype("int64").to_numpy(),
            "method": ok["method"].to_numpy(),
        },
        geometry=gpd.GeoSeries(outlet_points, crs=flowlines.crs),
        crs=flowlines.crs,
    )
    return records[LinkedPoints.columns()], problems


def build_partitions(
    lp_points: gpd.GeoDataFrame,
    flowlines: gpd.GeoDataFrame,
    search_radius: float,
    limit: int | None = None,
) -> list[LinkPartition]:
    """Split the snapping work into one independent partition per level path

    Parameters
    ----------
    lp_points : gpd.GeoDataFrame
        Crossing points with ``unit_id`` and ``levelpath``
    flowlines : gpd.GeoDataFrame
        Source flowlines
    search_radius : float
        Snapping search radius
    limit : int | None, optional
        Only build the first ``limit`` partitions, by default None

    Returns
    -------
    list[LinkPartition]
        Partitions ordered by level path
    """
    levelpaths = sorted(lp_points["levelpath"].unique())
    if limit:
        levelpaths = levelpaths[:limit]

    columns = [c for c in ["id", "levelpath", "hydroseq", "reachcode", "frommeas", "tomeas", "geometry"] if c in flowlines]
    return [
        LinkPartition(
            levelpath=int(lp),
            flowlines=flowlines.loc[flowlines["levelpath"] == lp, columns].reset_index(drop=True),
            unit_points=lp_points.loc[lp_points["levelpath"] == lp].reset_index(drop=True),
            search_radius=search_radius,
        )
        for lp in levelpaths
    ]


def _resolve_duplicate_points(linked: pd.DataFrame) -> pd.DataFrame:
    """Keep one point per unit: the most downstream segment, then the smallest measure"""
    return linked.sort_values(["unit_id", "hydroseq", "measure"], kind="mergesort").drop_duplicates(
        subset="unit_id", keep="first"
    )


def link_partition(partition: LinkPartition) -> PartitionResult:
    """Snap every crossing point of one level path and keep one point per unit.

    Points with no flowline inside the search radius are logged and dropped.

    Parameters
    ----------
    partition : LinkPartition
        One level path's flowlines and crossing points

    Returns
    -------
    PartitionResult
        The linked points for this level path
    """
    index = FlowlineIndex(partition.flowlines)
    crs = partition.unit_points.crs

    rows: list[dict] = []
    for unit_id, point in zip(partition.unit_points["unit_id"], partition.unit_points.geometry, strict=True):
        try:
            snapped = index.snap(point, partition.search_radius)
        except NoMatchWithinRadius as e:
            logger.warning(f"link_points: unit {unit_id} on level path {partition.levelpath}: {e}")
            continue
        rows.append({"unit_id": str(unit_id), **snapped._asdict(), "geometry": point})

    unmatched = sorted(set(partition.unit_points["unit_id"].astype(str)) - {row["unit_id"] for row in rows})
    unmatched_units = [UnmatchedUnit(unit_id=u, levelpath=partition.levelpath) for u in unmatched]

    if not rows:
        return PartitionResult(
            levelpath=partition.levelpath,
            status=PartitionStatus.SUCCESS,
            linked=LinkedPoints.empty(crs),
            unmatched=unmatched_units,
        )

    hydroseq = dict(zip(partition.flowlines["id"], partition.flowlines["hydroseq"], strict=True))
    linked = pd.DataFrame(rows)
    linked["hydroseq"] = linked["segment_id"].map(hydroseq)
    linked = _resolve_duplicate_points(linked)
    linked["levelpath"] = partition.levelpath
    linked["method"] = LinkMethod.INTERSECTION.value

    return PartitionResult(
        levelpath=partition.levelpath,
        status=PartitionStatus.SUCCESS,
        linked=gpd.GeoDataFrame(linked[LinkedPoints.columns()], geometry="geometry", crs=crs).reset_index(drop=True),
        unmatched=unmatched_units,
    )
