"""Contains all code for linking hydrologic units to their level paths"""

import logging
from typing import Any, cast

import pandas as pd

from mainstem_builds.config import MSConfig
from mainstem_builds.helpers.io import FeatureStore
from mainstem_builds.mainstems.executor import TaskPoolExecutor
from mainstem_builds.mainstems.linked_points import build_partitions, get_lp_points, get_na_outlets
from mainstem_builds.pipeline.match_flowpaths import load_unit_levelpaths
from mainstem_builds.task_instance import TaskInstance

logger = logging.getLogger(__name__)


def map_unit_points(**context: dict[str, Any]) -> dict[str, Any]:
    """Execute MAP PHASE: Intersect unit boundaries with their level paths.

    Units without a crossing, and broken border units, are linked once, globally,
    to the outlet of their level path.

    Parameters
    ----------
    **context : dict[str, Any]
        Airflow context

    Returns
    -------
    dict[str, Any]
        Dictionary with keys:
        - "lp_points": gpd.GeoDataFrame of crossing points to snap
        - "fallback_points": gpd.GeoDataFrame of outlet and broken border records
        - "problem_units": list[ProblemUnit]

    Raises
    ------
    ValueError
        If the units, flowlines or exclusions are missing
    """
    ti = cast(TaskInstance, context["ti"])
    cfg = cast(MSConfig, context["config"])

    source_flowlines = ti.xcom_pull(task_id="download", key="source_flowlines")
    units = ti.xcom_pull(task_id="download", key="units")
    excluded: set[str] | None = ti.xcom_pull(task_id="build_exclusions", key="excluded_units")
    if source_flowlines is None or units is None or excluded is None:
        raise ValueError("Missing flowlines, units or exclusions. Aborting run")

    unit_levelpaths: pd.DataFrame | None = ti.xcom_pull(task_id="match_flowpaths", key="unit_levelpaths")
    if unit_levelpaths is None:
        unit_levelpaths = load_unit_levelpaths(ti, cfg)

    logger.info(f"map_unit_points task: Intersecting {len(unit_levelpaths)} units with their level paths")
    unit_points = get_lp_points(
        unit_levelpaths,
        source_flowlines,
        units,
        excluded,
        broken_border_fallback=cfg.link.broken_border_fallback,
    )
    fallback_points, problem_units = get_na_outlets(unit_points.na, unit_points.broken_border, source_flowlines)

    return {
        "lp_points": unit_points.lp,
        "fallback_points": fallback_points,
        "problem_units": problem_units,
    }


def map_link_points(**context: dict[str, Any]) -> dict[str, Any]:
    """Execute MAP PHASE: Snap crossing points to reaches, one partition per level path.

    The combined output is checkpointed in the output file. A rerun finding the
    checkpoint returns it without linking anything.

    Parameters
    ----------
    **context : dict[str, Any]
        Airflow context

    Returns
    -------
    dict[str, Any]
        Dictionary with keys:
        - "linked_points": gpd.GeoDataFrame with one row per linked unit
        - "failed_partitions": list[PartitionFailure]
        - "unmatched_units": list[UnmatchedUnit]

    Raises
    ------
    ValueError
        If the unit points were not built
    """
    ti = cast(TaskInstance, context["ti"])
    cfg = cast(MSConfig, context["config"])

    lp_points = ti.xcom_pull(task_id="map_unit_points", key="lp_points")
    fallback_points = ti.xcom_pull(task_id="map_unit_points", key="fallback_points")
    source_flowlines = ti.xcom_pull(task_id="download", key="source_flowlines")
    if lp_points is None or source_flowlines is None:
        raise ValueError("Missing unit points. Aborting run")

    partitions = build_partitions(
        lp_points,
        source_flowlines,
        search_radius=cfg.link.search_radius_m,
        limit=cfg.executor.debug_levelpath_count,
    )

    store = FeatureStore(cfg.output_file_path)
    with TaskPoolExecutor(
        store,
        worker_count=cfg.executor.worker_count,
        pool=cfg.executor.pool,
        partition_timeout_s=cfg.executor.partition_timeout_s,
    ) as executor:
        linked_points = executor.run(
            partitions,
            checkpoint_key=cfg.executor.checkpoint_key,
            fallback=fallback_points,
            crs=cfg.link.crs,
        )
        report = executor.report

    return {
        "linked_points": linked_points,
        "failed_partitions": report.failed_partitions,
        "unmatched_units": report.unmatched_units,
    }
