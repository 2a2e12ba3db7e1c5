"""Contains all code for building the source and target flow graphs"""

import logging
from typing import Any, cast

from mainstem_builds.mainstems.graph import FlowGraph
from mainstem_builds.task_instance import TaskInstance

logger = logging.getLogger(__name__)


def build_graph(**context: dict[str, Any]) -> dict[str, FlowGraph]:
    """
    Builds and validates the downstream graphs of both networks

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
    dict[str, FlowGraph]
        The source graph (with level path attributes) and the target graph

    Raises
    ------
    ValueError
        If the flowlines were not read
    """
    ti = cast(TaskInstance, context["ti"])
    source_flowlines = ti.xcom_pull(task_id="download", key="source_flowlines")
    target_flowlines = ti.xcom_pull(task_id="download", key="target_flowlines")

    if source_flowlines is None or target_flowlines is None:
        raise ValueError("Missing source or target flowlines. Aborting run")

    logger.info("build_graph task: Constructing source network graph")
    source_graph = FlowGraph.from_segments(source_flowlines)
    source_graph.validate()

    logger.info("build_graph task: Constructing target network graph")
    target_graph = FlowGraph.from_segments(target_flowlines)
    target_graph.validate()

    logger.info(
        f"build_graph task: {len(source_graph)} source segments, {len(target_graph)} target segments, "
        f"{len(source_graph.headwaters())} source headwaters"
    )
    return {"source_graph": source_graph, "target_graph": target_graph}
