"""A file to host all mainstem conflation schemas"""

import os
from enum import StrEnum
from pathlib import Path
from typing import Any

import geopandas as gpd
import pyarrow as pa
from pydantic import BaseModel, ConfigDict, Field, field_validator


class LinkMethod(StrEnum):
    """How a linked point was placed on its level path

    Attributes
    ----------
    INTERSECTION : str
        The unit boundary crosses the level path and the crossing was snapped to a reach
    OUTLET : str
        The unit boundary never crosses the level path, so the level path outlet is used
    BROKEN_BORDER : str
        The unit produced both crossings and empty rows, so only the level path outlet is used
    """

    INTERSECTION = "intersection"
    OUTLET = "outlet"
    BROKEN_BORDER = "broken_border"


class TieBreakPolicy(StrEnum):
    """The member-level tie-break applied when a target segment has several candidate level paths

    Attributes
    ----------
    FURTHEST_UPSTREAM : str
        Keep the candidate whose headwater has the largest hydroseq. Assumes the
        largest mainstem extends furthest upstream of competing paths.
    SMALLEST_LEVELPATH : str
        Skip the headwater comparison and go straight to the smallest level path id
    """

    FURTHEST_UPSTREAM = "furthest_upstream"
    SMALLEST_LEVELPATH = "smallest_levelpath"


class PoolType(StrEnum):
    """Worker pool flavors for the task pool executor"""

    PROCESS = "process"
    THREAD = "thread"


class PartitionStatus(StrEnum):
    """Outcome of a single level path partition"""

    SUCCESS = "success"
    FAILED = "failed"


class InputsConfig(BaseModel):
    """Locations and column mappings for the input datasets"""

    source_flowlines_path: Path = Field(
        default=Path("data/source_flowlines.parquet"),
        description="The coarse flow network with level paths, hydroseq, and reach measures",
    )
    source_flowlines_layer: str | None = Field(default=None, description="Layer name when reading a GPKG/GDB")
    target_flowlines_path: Path = Field(
        default=Path("data/target_flowlines.parquet"),
        description="The finer flow network to be matched to source level paths",
    )
    target_flowlines_layer: str | None = Field(default=None, description="Layer name when reading a GPKG/GDB")
    target_catchments_path: Path | None = Field(
        default=None,
        description="Target catchment polygons. Used to pair source headwaters with target segments",
    )
    target_catchments_layer: str | None = Field(default=None, description="Layer name when reading a GPKG/GDB")
    headwater_pairs_path: Path | None = Field(
        default=None,
        description="Optional CSV/parquet of precomputed headwater_id -> target_id pairs",
    )
    units_path: Path = Field(
        default=Path("data/hydrologic_units.parquet"),
        description="Hydrologic unit polygons (e.g. WBD HUC12)",
    )
    units_layer: str | None = Field(default=None, description="Layer name when reading a GPKG/GDB")
    source_column_map: dict[str, str] = Field(
        default_factory=lambda: {
            "COMID": "id",
            "toCOMID": "toid",
            "LevelPathI": "levelpath",
            "Hydroseq": "hydroseq",
            "REACHCODE": "reachcode",
            "FromMeas": "frommeas",
            "ToMeas": "tomeas",
        },
        description="Renames applied to source flowline columns",
    )
    target_column_map: dict[str, str] = Field(
        default_factory=lambda: {"ID": "id", "toID": "toid"},
        description="Renames applied to target flowline and catchment columns",
    )
    units_column_map: dict[str, str] = Field(
        default_factory=lambda: {"HUC12": "unit_id", "TOHUC": "tounit", "HU_12_TYPE": "unit_type"},
        description="Renames applied to hydrologic unit columns",
    )


class MatchConfig(BaseModel):
    """Configs for the level path correspondence stage"""

    tie_break_policy: TieBreakPolicy = Field(
        default=TieBreakPolicy.FURTHEST_UPSTREAM,
        description="Member-level tie-break used before falling back to the smallest level path id",
    )
    correspondence_path: Path = Field(
        default=Path("data/correspondence.parquet"),
        description="Where the member -> level path correspondence table is written",
    )


class LinkConfig(BaseModel):
    """Configs for the hydrologic unit linking stage"""

    search_radius_m: float = Field(
        default=1000.0, gt=0, description="Search radius used when snapping points to flowlines [m]"
    )
    exclude_types: list[str] = Field(
        default_factory=lambda: ["F", "C", "I"],
        description="Unit classification tags that never receive flow (frontal, closed, island)",
    )
    boundary_sentinels: list[str] = Field(
        default_factory=lambda: ["OCEAN", "CANADA", "GREATLAKES", "UNKNOWN"],
        description="Downstream unit values denoting an external boundary",
    )
    broken_border_fallback: bool = Field(
        default=True,
        description=(
            "Units that appear in both the intersection and no-intersection sets are dropped from both "
            "and linked to the level path outlet. When False the intersection rows are kept instead."
        ),
    )
    exclusions_path: Path = Field(
        default=Path("data/exclusions.parquet"),
        description="Where the excluded unit list is cached. Reused when present",
    )
    crs: str = Field(default="EPSG:5070", description="CRS of the linked points output, set from the run CRS")


class ExecutorConfig(BaseModel):
    """Configs for the task pool executor"""

    worker_count: int = Field(
        default=os.cpu_count() or 1, ge=1, description="Number of workers. 1 runs partitions sequentially"
    )
    pool: PoolType = Field(default=PoolType.PROCESS, description="Worker pool flavor")
    partition_timeout_s: float | None = Field(
        default=None, description="Per-partition time limit. A partition exceeding it is reported as failed"
    )
    checkpoint_key: str = Field(
        default="linked_points", description="Store layer name holding the combined linked points"
    )
    debug_levelpath_count: int | None = Field(
        default=None,
        description="Debug setting to limit the number of level path partitions processed. None processes all",
    )

    @field_validator("debug_levelpath_count")
    @classmethod
    def validate_debug_levelpath_count(cls, v: int | None) -> int | None:
        """Validate debug_levelpath_count is None or positive."""
        if v is not None and v <= 0:
            raise ValueError("debug_levelpath_count must be None (for all level paths) or a positive integer")
        return v


class Correspondence:
    """The schema for the member -> level path correspondence table"""

    @classmethod
    def columns(cls) -> list[str]:
        """Returns the columns associated with this schema

        Returns
        -------
        list[str]
            The schema columns
        """
        return ["member_id", "levelpath", "headwater_id"]

    @classmethod
    def arrow_schema(cls) -> pa.Schema:
        """Returns the PyArrow Schema object.

        Returns
        -------
        pa.Schema
            PyArrow schema for the correspondence table
        """
        return pa.schema(
            [
                pa.field("member_id", pa.int64(), nullable=False),
                pa.field("levelpath", pa.int64(), nullable=False),
                pa.field("headwater_id", pa.int64(), nullable=False),
            ]
        )


class LinkedPoints:
    """The schema for the linked points table"""

    @classmethod
    def columns(cls) -> list[str]:
        """Returns the columns associated with this schema

        Returns
        -------
        list[str]
            The schema columns
        """
        return ["unit_id", "segment_id", "reachcode", "measure", "offset", "levelpath", "method", "geometry"]

    @classmethod
    def empty(cls, crs: Any = None) -> gpd.GeoDataFrame:
        """An empty linked points table with the schema columns

        Parameters
        ----------
        crs : Any, optional
            The CRS for the empty frame, by default None

        Returns
        -------
        gpd.GeoDataFrame
            An empty GeoDataFrame
        """
        return gpd.GeoDataFrame(
            {col: [] for col in cls.columns() if col != "geometry"},
            geometry=gpd.GeoSeries([], crs=crs),
            crs=crs,
        )


class ProblemUnit(BaseModel):
    """A unit whose level path outlet falls mid-reach, so a zero measure would be wrong"""

    unit_id: str
    levelpath: int
    segment_id: int
    frommeas: float


class PartitionFailure(BaseModel):
    """A level path partition that failed during intersection or snapping"""

    levelpath: int
    error: str


class UnmatchedUnit(BaseModel):
    """A unit with crossing points but no flowline inside the search radius"""

    unit_id: str
    levelpath: int


class LinkPartition(BaseModel):
    """An independent unit of linking work: one level path's flowlines and its unit points"""

    model_config = ConfigDict(arbitrary_types_allowed=True)
    levelpath: int = Field(description="The level path this partition covers")
    flowlines: gpd.GeoDataFrame = Field(description="Source segments of this level path")
    unit_points: gpd.GeoDataFrame = Field(description="Boundary crossing points of the units on this level path")
    search_radius: float = Field(default=1000.0, description="Snapping search radius")


class PartitionResult(BaseModel):
    """The outcome of running one partition"""

    model_config = ConfigDict(arbitrary_types_allowed=True)
    levelpath: int
    status: PartitionStatus
    linked: gpd.GeoDataFrame | None = Field(default=None, description="Linked points, None on failure")
    unmatched: list[UnmatchedUnit] = Field(default_factory=list)
    error: str | None = None


class LinkReport(BaseModel):
    """The reportable lists of a linking run"""

    excluded_units: set[str] = Field(
        default_factory=set, description="Units skipped by type or by draining to an external boundary"
    )
    problem_units: list[ProblemUnit] = Field(
        default_factory=list, description="Fallback units whose outlet reach starts at a non-zero measure"
    )
    failed_partitions: list[PartitionFailure] = Field(
        default_factory=list, description="Level paths whose partition raised, warned, or timed out"
    )
    unmatched_units: list[UnmatchedUnit] = Field(
        default_factory=list, description="Units whose crossing points found no flowline within the search radius"
    )
