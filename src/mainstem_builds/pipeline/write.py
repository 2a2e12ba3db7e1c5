"""Contains all code for writing the mainstem linking reports"""

import logging
from typing import Any, cast

import pandas as pd

from mainstem_builds.config import MSConfig
from mainstem_builds.helpers.io import FeatureStore
from mainstem_builds.schemas.mainstems import LinkReport, PartitionFailure, ProblemUnit, UnmatchedUnit
from mainstem_builds.task_instance import TaskInstance

logger = logging.getLogger(__name__)


def _records_frame(records: list[Any], model: type) -> pd.DataFrame:
    return pd.DataFrame([r.model_dump() for r in records], columns=list(model.model_fields))


def write_linked_points(**context: dict[str, Any]) -> dict:
    """Writes the reportable lists of the run next to the linked points

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
    dict
        The output file path and the combined LinkReport
    """
    cfg = cast(MSConfig, context["config"])
    ti = cast(TaskInstance, context["ti"])
    store = FeatureStore(cfg.output_file_path)

    report = LinkReport(
        excluded_units=ti.xcom_pull(task_id="build_exclusions", key="excluded_units") or set(),
        problem_units=ti.xcom_pull(task_id="map_unit_points", key="problem_units") or [],
        failed_partitions=ti.xcom_pull(task_id="map_link_points", key="failed_partitions") or [],
        unmatched_units=ti.xcom_pull(task_id="map_link_points", key="unmatched_units") or [],
    )

    store.write_table(pd.DataFrame({"unit_id": sorted(report.excluded_units)}), "excluded_units")
    store.write_table(_records_frame(report.problem_units, ProblemUnit), "problem_units")
    store.write_table(_records_frame(report.failed_partitions, PartitionFailure), "failed_partitions")
    store.write_table(_records_frame(report.unmatched_units, UnmatchedUnit), "unmatched_units")

    linked_points = ti.xcom_pull(task_id="map_link_points", key="linked_points")
    n_linked = 0 if linked_points is None else len(linked_points)
    logger.info(
        f"write_linked_points task: {n_linked} linked units, {len(report.excluded_units)} excluded, "
        f"{len(report.problem_units)} problem units, {len(report.failed_partitions)} failed level paths, "
        f"{len(report.unmatched_units)} unmatched units"
    )
    logger.info(f"write_linked_points task: wrote report tables to {store.path}")
    return {"output_file_path": store.path, "report": report}
