"""Local runner for building mainstem correspondences and hydrologic unit outlets"""

import argparse
from collections.abc import Callable
from datetime import datetime
from typing import Any, Self

from pydantic import ValidationError

from mainstem_builds import MSConfig, TaskInstance
from mainstem_builds.logs import setup_logging
from mainstem_builds.pipeline.build_graph import build_graph
from mainstem_builds.pipeline.download import download_reference_data
from mainstem_builds.pipeline.match_flowpaths import build_exclusions, match_flowpaths
from mainstem_builds.pipeline.processing import map_link_points, map_unit_points
from mainstem_builds.pipeline.write import write_linked_points

logger = setup_logging()


class LocalRunner:
    """Run the mainstem tasks in this process, passing outputs between them as XComs.

    Parameters
    ----------
    config : MSConfig
        Input locations, matching and linking settings
    run_id : str or None, default=None
        Label for this run, by default the start timestamp as YYYYMMDD_HHMMSS

    Attributes
    ----------
    ti : TaskInstance
        Holds every key a task returned, under "{task_id}.{key}"
    results : dict[str, dict[str, Any]]
        Status and raw return value of each finished task
    """

    def __init__(
        self,
        config: MSConfig,
        run_id: str | None = None,
    ) -> None:
        self.config: MSConfig = config
        self.run_id: str = run_id or datetime.now().strftime("%Y%m%d_%H%M%S")
        self.ti: TaskInstance = TaskInstance()
        self.results: dict[str, dict[str, Any]] = {}

    def cleanup(self) -> None:
        """Log the end of the run. Worker pools are owned and closed by the linking task"""
        logger.info(f"runner: Finished run {self.run_id}")

    def __enter__(self: Self) -> Self:
        """Context manager entry."""
        return self

    def __exit__(self: Self, *args: str, **kwargs: str) -> None:
        """Context manager exit."""
        self.cleanup()

    def run_task(
        self,
        task_id: str,
        python_callable: Callable[..., Any],
        op_kwargs: dict[str, Any] | None = None,
    ) -> Any:
        """Run one pipeline task and push each returned key as an XCom.

        Parameters
        ----------
        task_id : str
            Name later tasks pull from, e.g. "match_flowpaths"
        python_callable : Callable[..., Any]
            A task taking **context and returning a dict of named outputs
        op_kwargs : dict[str, Any] or None, default=None
            Extra keyword arguments for the task

        Returns
        -------
        Any
            The dict the task returned
        """
        logger.info(f"runner: Running task {task_id}")

        context: dict[str, Any] = {
            "ti": self.ti,
            "task_id": task_id,
            "run_id": self.run_id,
            "ds": datetime.now().strftime("%Y-%m-%d"),
            "execution_date": datetime.now(),
            "config": self.config,
        }

        kwargs = {**(op_kwargs or {}), **context}

        result = python_callable(**kwargs)

        for k, v in result.items():
            self.ti.xcom_push(f"{task_id}.{k}", v)
        self.results[task_id] = {"status": "success", "result": result}

        logger.info(f"runner: Task {task_id} completed with outputs {sorted(result)}")
        return result

    def get_result(self, task_id: str) -> dict[str, Any]:
        """Status and outputs of a finished task

        Parameters
        ----------
        task_id : str
            The task name

        Returns
        -------
        dict[str, Any]
            "status" and "result" of the task

        Raises
        ------
        ValueError
            If the task has not been run
        """
        result = self.results.get(task_id)
        if result is None:
            raise ValueError(f"Task {task_id} has not run")
        return result


def main() -> int:
    """Main entry point for the mainstem-build pipeline CLI.

    Returns
    -------
    int
        Exit code: 0 for success, 1 for failure.
    """
    parser = argparse.ArgumentParser(description="A local runner for mainstem conflation")
    parser.add_argument("--config", required=False, help="Config file")
    args = parser.parse_args()

    try:
        config = MSConfig.from_yaml(args.config)
    except ValidationError as e:
        print("Configuration validation failed:")
        for error in e.errors():
            print(f"  {error['loc']}: {error['msg']}")
        return 1
    except FileNotFoundError:
        logger.error(f"Config file not found: {args.config}")
        return 1
    except TypeError as e:
        logger.error("Config file not specified.")
        raise TypeError("Config file not specified.") from e

    with LocalRunner(config) as runner:
        runner.run_task(task_id="download", python_callable=download_reference_data, op_kwargs={})

        if config.tasks.match_flowpaths:
            runner.run_task(task_id="build_graph", python_callable=build_graph, op_kwargs={})
            runner.run_task(task_id="match_flowpaths", python_callable=match_flowpaths, op_kwargs={})

        if config.tasks.link_units:
            runner.run_task(task_id="build_exclusions", python_callable=build_exclusions, op_kwargs={})
            runner.run_task(task_id="map_unit_points", python_callable=map_unit_points, op_kwargs={})
            runner.run_task(task_id="map_link_points", python_callable=map_link_points, op_kwargs={})
            runner.run_task(
                task_id="write_linked_points", python_callable=write_linked_points, op_kwargs={}
            )

        print("\n" + "=" * 60)
        print("Pipeline completed")
        print("=" * 60)
        for task_id, info in runner.results.items():
            status = "✓" if info["status"] == "success" else "✗"
            print(f"  {status} {task_id}: {info['status']}")
        print("=" * 60)

    return 0


if __name__ == "__main__":
    exit(main())
