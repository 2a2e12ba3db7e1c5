"""Contains all code for matching target flowlines to source level paths"""

import logging
from pathlib import Path
from typing import Any, cast

import pandas as pd
import polars as pl
import pyarrow.parquet as pq

from mainstem_builds.config import MSConfig
from mainstem_builds.mainstems.linked_points import build_exclusions as _build_exclusions
from mainstem_builds.mainstems.match import (
    assign_units_to_levelpaths,
    build_headwater_pairs,
    join_members_to_units,
)
from mainstem_builds.mainstems.match import match_flowpaths as _match_flowpaths
from mainstem_builds.schemas.mainstems import Correspondence
from mainstem_builds.task_instance import TaskInstance

logger = logging.getLogger(__name__)


def build_exclusions(**context: dict[str, Any]) -> dict[str, set[str]]:
    """Builds the excluded unit set. Reuses the cached set if found in the link configs

    Parameters
    ----------
    **context : dict
        Airflow-compatible context containing:
        - ti : TaskInstance for XCom operations
        - config : MSConfig with pipeline configuration
        - task_id : str identifier for this task
        - run_id : str identifier for this pipeline run
        - ds : str execution date
        - execution_date : datetime object

    Returns
    -------
    dict[str, set[str]]
        The excluded unit ids
    """
    ti = cast(TaskInstance, context["ti"])
    cfg = cast(MSConfig, context["config"])
    exclusions_path = Path(cfg.link.exclusions_path)

    if exclusions_path.exists():
        excluded = set(pd.read_parquet(exclusions_path)["unit_id"].astype(str))
        logger.info(f"build_exclusions task: Loaded {len(excluded)} excluded units from {exclusions_path}")
        return {"excluded_units": excluded}

    units = ti.xcom_pull(task_id="download", key="units")
    if units is None:
        raise ValueError("Missing hydrologic units. Aborting run")

    excluded = _build_exclusions(units, cfg.link.exclude_types, cfg.link.boundary_sentinels)
    exclusions_path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame({"unit_id": sorted(excluded)}).to_parquet(exclusions_path, index=False)
    logger.info(f"build_exclusions task: Saved {len(excluded)} excluded units to {exclusions_path}")
    return {"excluded_units": excluded}


def match_flowpaths(**context: dict[str, Any]) -> dict[str, Any]:
    """Matches every target segment to a source level path and each unit to one level path

    Parameters
    ----------
    **context : dict
        Airflow-compatible context containing:
        - ti : TaskInstance for XCom operations
        - config : MSConfig with pipeline configuration
        - task_id : str identifier for this task
        - run_id : str identifier for this pipeline run
        - ds : str execution date
        - execution_date : datetime object

    Returns
    -------
    dict[str, Any]
        Dictionary with keys:
        - "headwater_pairs": pd.DataFrame of source headwater -> target segment pairs
        - "correspondence": pl.DataFrame of member -> level path
        - "unit_levelpaths": pd.DataFrame of unit -> level path

    Raises
    ------
    ValueError
        If the graphs are missing, or if no headwater pairs can be found or derived
    """
    ti = cast(TaskInstance, context["ti"])
    cfg = cast(MSConfig, context["config"])

    source_graph = ti.xcom_pull(task_id="build_graph", key="source_graph")
    target_graph = ti.xcom_pull(task_id="build_graph", key="target_graph")
    if source_graph is None or target_graph is None:
        raise ValueError("Missing flow graphs. Aborting run")

    headwater_pairs = ti.xcom_pull(task_id="download", key="headwater_pairs")
    if headwater_pairs is None:
        target_catchments = ti.xcom_pull(task_id="download", key="target_catchments")
        if target_catchments is None:
            raise ValueError("Either headwater pairs or target catchments are required to match flowpaths")
        logger.info("match_flowpaths task: Pairing source headwaters with target catchments")
        headwater_pairs = build_headwater_pairs(
            ti.xcom_pull(task_id="download", key="source_flowlines"), target_catchments
        )

    correspondence = _match_flowpaths(
        source_graph, target_graph, headwater_pairs, policy=cfg.match.tie_break_policy
    )
    logger.info(
        f"match_flowpaths task: Matched {correspondence.height} target segments to "
        f"{correspondence['levelpath'].n_unique()} level paths"
    )

    correspondence_path = Path(cfg.match.correspondence_path)
    correspondence_path.parent.mkdir(parents=True, exist_ok=True)
    pq.write_table(correspondence.to_arrow().cast(Correspondence.arrow_schema()), correspondence_path)
    logger.info(f"match_flowpaths task: Saved correspondence to {correspondence_path}")

    unit_levelpaths = _unit_levelpaths(ti, correspondence)
    return {
        "headwater_pairs": headwater_pairs,
        "correspondence": correspondence,
        "unit_levelpaths": unit_levelpaths,
    }


def _unit_levelpaths(ti: TaskInstance, correspondence: pl.DataFrame) -> pd.DataFrame:
    """Assign each hydrologic unit the smallest level path among its target segments"""
    target_flowlines = ti.xcom_pull(task_id="download", key="target_flowlines")
    units = ti.xcom_pull(task_id="download", key="units")
    if target_flowlines is None or units is None:
        raise ValueError("Missing target flowlines or units. Aborting run")

    member_units = join_members_to_units(target_flowlines, units)
    unit_levelpaths = assign_units_to_levelpaths(member_units, correspondence)
    logger.info(f"match_flowpaths task: Assigned {len(unit_levelpaths)} units to level paths")
    return unit_levelpaths


def load_unit_levelpaths(ti: TaskInstance, cfg: MSConfig) -> pd.DataFrame:
    """Rebuild unit level paths from a saved correspondence when matching was not run

    Parameters
    ----------
    ti : TaskInstance
        The run's task instance
    cfg : MSConfig
        The run config

    Returns
    -------
    pd.DataFrame
        ``unit_id`` and ``levelpath``

    Raises
    ------
    ValueError
        If no correspondence was saved
    """
    correspondence_path = Path(cfg.match.correspondence_path)
    if not correspondence_path.exists():
        raise ValueError(f"No correspondence found at {correspondence_path}. Run match_flowpaths first")
    correspondence = pl.read_parquet(correspondence_path)
    logger.info(f"match_flowpaths task: Loaded {correspondence.height} matches from {correspondence_path}")
    return _unit_levelpaths(ti, correspondence)
