"""A task pool that runs level path partitions with failure isolation and checkpoint resume"""

import concurrent.futures as cf
import logging
import time
import warnings
from collections.abc import Callable, Sequence
from concurrent.futures.process import BrokenProcessPool
from typing import Any, Self

import geopandas as gpd
import pandas as pd
from tqdm import tqdm

from mainstem_builds.helpers.io import FeatureStore
from mainstem_builds.mainstems.linked_points import link_partition
from mainstem_builds.schemas.mainstems import (
    LinkedPoints,
    LinkPartition,
    LinkReport,
    PartitionFailure,
    PartitionResult,
    PartitionStatus,
    PoolType,
)

logger = logging.getLogger(__name__)

PartitionWorker = Callable[[LinkPartition], PartitionResult]


def _failed(levelpath: int, error: str) -> PartitionResult:
    return PartitionResult(levelpath=levelpath, status=PartitionStatus.FAILED, error=error)


def _run_partition(
    worker: PartitionWorker, partition: LinkPartition, timeout_s: float | None = None
) -> PartitionResult:
    """Run one partition, turning any error or geometry warning into a failed result

    A partition whose own runtime exceeds ``timeout_s`` is failed even when it finishes.
    Module level so it can be pickled into worker processes.
    """
    start = time.monotonic()
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", RuntimeWarning)
            result = worker(partition)
    except Exception as e:
        return _failed(partition.levelpath, f"{type(e).__name__}: {e}")

    elapsed = time.monotonic() - start
    if timeout_s is not None and elapsed > timeout_s:
        return _failed(partition.levelpath, f"TimeoutError: ran {elapsed:.2f}s, limit {timeout_s}s")
    return result


class TaskPoolExecutor:
    """Run independent level path partitions on a fixed-size worker pool.

    The combined output is written to the feature store once, under a checkpoint key.
    A rerun with the same key loads that output instead of dispatching any work.

    Parameters
    ----------
    store : FeatureStore
        Where the combined linked points are checkpointed
    worker_count : int, optional
        Number of workers. 1 runs partitions sequentially in this process, by default 1
    pool : PoolType, optional
        Process or thread workers, by default PoolType.PROCESS
    partition_timeout_s : float | None, optional
        Time limit on the runtime of one partition. Exceeding it fails that partition, by default None

    Attributes
    ----------
    report : LinkReport
        Failed partitions and unmatched units collected by :meth:`run`
    """

    def __init__(
        self,
        store: FeatureStore,
        worker_count: int = 1,
        pool: PoolType = PoolType.PROCESS,
        partition_timeout_s: float | None = None,
    ) -> None:
        if worker_count < 1:
            raise ValueError(f"worker_count must be at least 1, got {worker_count}")
        self.store = store
        self.worker_count = worker_count
        self.pool = PoolType(pool)
        self.partition_timeout_s = partition_timeout_s
        self.report = LinkReport()
        self._executor: cf.Executor | None = None

    def __enter__(self: Self) -> Self:
        """Context manager entry."""
        return self

    def __exit__(self: Self, *args: Any, **kwargs: Any) -> None:
        """Context manager exit - ensures the pool is torn down."""
        self.cleanup()

    def cleanup(self) -> None:
        """Shut down the worker pool, abandoning partitions still queued"""
        if self._executor is not None:
            logger.info("executor: Closing worker pool")
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def _new_pool(self) -> cf.Executor:
        if self.pool == PoolType.THREAD:
            return cf.ThreadPoolExecutor(max_workers=self.worker_count)
        return cf.ProcessPoolExecutor(max_workers=self.worker_count)

    def _dispatch(self, partitions: Sequence[LinkPartition], worker: PartitionWorker) -> list[PartitionResult]:
        """Run all partitions, returning results in partition order"""
        if self.worker_count == 1:
            return [
                _run_partition(worker, partition, self.partition_timeout_s)
                for partition in tqdm(partitions, desc="Linking level paths")
            ]

        self._executor = self._new_pool()
        futures = [
            self._executor.submit(_run_partition, worker, partition, self.partition_timeout_s)
            for partition in partitions
        ]

        results: list[PartitionResult] = []
        for partition, future in tqdm(
            zip(partitions, futures, strict=True), total=len(partitions), desc="Linking level paths"
        ):
            # partitions start in submission order, so this one is running once earlier ones return
            try:
                results.append(future.result(timeout=self.partition_timeout_s))
            except cf.TimeoutError:
                future.cancel()
                results.append(
                    _failed(partition.levelpath, f"TimeoutError: exceeded {self.partition_timeout_s}s")
                )
            except BrokenProcessPool as e:
                results.append(_failed(partition.levelpath, f"BrokenProcessPool: {e}"))
        self.cleanup()
        return results

    def run(
        self,
        partitions: Sequence[LinkPartition],
        checkpoint_key: str = "linked_points",
        fallback: gpd.GeoDataFrame | None = None,
        worker: PartitionWorker = link_partition,
        crs: Any = None,
    ) -> gpd.GeoDataFrame:
        """Link every partition and combine the results.

        Parameters
        ----------
        partitions : Sequence[LinkPartition]
            One partition per level path
        checkpoint_key : str, optional
            Store layer holding the combined output, by default "linked_points"
        fallback : gpd.GeoDataFrame | None, optional
            Globally computed outlet and broken border records appended after combination, by default None
        worker : PartitionWorker, optional
            The per-partition work, by default :func:`link_partition`
        crs : Any, optional
            CRS of the output when nothing is linked, by default the CRS of the partitions or the fallback

        Returns
        -------
        gpd.GeoDataFrame
            The combined linked points, one row per unit, ordered by unit id
        """
        if self.store.exists(checkpoint_key):
            logger.info(f"executor: Found checkpoint {checkpoint_key} in {self.store.path}, skipping linking")
            return self.store.read_layer(checkpoint_key)

        logger.info(
            f"executor: Running {len(partitions)} partitions on {self.worker_count} {self.pool.value} workers"
        )
        results = self._dispatch(partitions, worker)

        frames: list[gpd.GeoDataFrame] = []
        for result in results:
            if result.status == PartitionStatus.FAILED:
                logger.error(f"executor: Level path {result.levelpath} failed: {result.error}")
                self.report.failed_partitions.append(
                    PartitionFailure(levelpath=result.levelpath, error=result.error or "")
                )
                continue
            self.report.unmatched_units.extend(result.unmatched)
            if result.linked is not None and not result.linked.empty:
                frames.append(result.linked)

        if fallback is not None and not fallback.empty:
            frames.append(fallback)

        if frames:
            combined = gpd.GeoDataFrame(pd.concat(frames, ignore_index=True), geometry="geometry", crs=frames[0].crs)
            combined = combined.sort_values("unit_id", kind="mergesort").reset_index(drop=True)
        else:
            if crs is None and partitions:
                crs = partitions[0].unit_points.crs
            if crs is None and fallback is not None:
                crs = fallback.crs
            combined = LinkedPoints.empty(crs)

        logger.info(
            f"executor: Linked {len(combined)} units, {len(self.report.failed_partitions)} partitions failed"
        )
        self.store.write_layer(combined[LinkedPoints.columns()], checkpoint_key)
        return combined
