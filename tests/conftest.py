"""conftest with a small synthetic source and target network.

Source network (digitized upstream to downstream)::

    11 (hs 4) (0,3000)->(0,2000)
    12 (hs 2) (0,2000)->(0,1000)        level path 1
    13 (hs 1) (0,1000)->(0,0)
    21 (hs 3) (1000,1000)->(0,1000)     level path 3, joins 13

Target network::

    101 -> 102 -> 103 -> 104 -> 105
                  201 -> 202 -> 104
"""

from pathlib import Path

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import LineString, box

from mainstem_builds.config import MSConfig, TaskSelection
from mainstem_builds.mainstems.graph import FlowGraph
from mainstem_builds.schemas.mainstems import ExecutorConfig, InputsConfig, LinkConfig, MatchConfig, PoolType
from scripts.ms_runner import TaskInstance

CRS = "EPSG:5070"


@pytest.fixture
def task_instance() -> TaskInstance:
    """Fixture providing a TaskInstance."""
    return TaskInstance()


@pytest.fixture
def source_flowlines() -> gpd.GeoDataFrame:
    """Source flowlines with level paths and reach measures"""
    return gpd.GeoDataFrame(
        {
            "id": [11, 12, 13, 21],
            "toid": [12, 13, 0, 13],
            "levelpath": [1, 1, 1, 3],
            "hydroseq": [4, 2, 1, 3],
            "reachcode": ["R11", "R12", "R13", "R21"],
            "frommeas": [0.0, 0.0, 0.0, 0.0],
            "tomeas": [100.0, 100.0, 100.0, 100.0],
        },
        geometry=[
            LineString([(0, 3000), (0, 2000)]),
            LineString([(0, 2000), (0, 1000)]),
            LineString([(0, 1000), (0, 0)]),
            LineString([(1000, 1000), (500, 1000), (0, 1000)]),
        ],
        crs=CRS,
    )


@pytest.fixture
def target_flowlines() -> gpd.GeoDataFrame:
    """Target flowlines. Each line has a middle vertex so its representative point is the midpoint"""
    return gpd.GeoDataFrame(
        {
            "id": [101, 102, 103, 104, 105, 201, 202],
            "toid": [102, 103, 104, 105, 0, 202, 104],
        },
        geometry=[
            LineString([(0, 3000), (0, 2800), (0, 2600)]),
            LineString([(0, 2600), (0, 2300), (0, 2000)]),
            LineString([(0, 2000), (0, 1500), (0, 1000)]),
            LineString([(0, 1000), (0, 750), (0, 500)]),
            LineString([(0, 500), (0, 250), (0, 0)]),
            LineString([(1000, 1000), (750, 1000), (500, 1000)]),
            LineString([(500, 1000), (250, 1000), (0, 1000)]),
        ],
        crs=CRS,
    )


@pytest.fixture
def source_graph(source_flowlines: gpd.GeoDataFrame) -> FlowGraph:
    """Source flow graph"""
    return FlowGraph.from_segments(source_flowlines)


@pytest.fixture
def target_graph(target_flowlines: gpd.GeoDataFrame) -> FlowGraph:
    """Target flow graph"""
    return FlowGraph.from_segments(target_flowlines)


@pytest.fixture
def headwater_pairs() -> pd.DataFrame:
    """Source headwaters paired with the target segments holding them"""
    return pd.DataFrame({"headwater_id": [11, 21], "target_id": [101, 201]})


@pytest.fixture
def target_catchments() -> gpd.GeoDataFrame:
    """Target catchments around the source headwater midpoints"""
    return gpd.GeoDataFrame(
        {"id": [101, 201]},
        geometry=[box(-200, 2500, 200, 3100), box(300, 800, 700, 1200)],
        crs=CRS,
    )


@pytest.fixture
def units() -> gpd.GeoDataFrame:
    """Hydrologic units that hold whole target segments.

    U1 holds 101 and 102, U2 holds 103, 104, 105 and 202, U3 holds 201.
    U4 is a frontal unit draining to the ocean.
    """
    return gpd.GeoDataFrame(
        {
            "unit_id": ["U1", "U2", "U3", "U4"],
            "tounit": ["U2", "OCEAN", "U2", "OCEAN"],
            "unit_type": ["S", "S", "S", "F"],
        },
        geometry=[
            box(-500, 2000, 500, 3000),
            box(-500, 0, 500, 2000),
            box(500, 500, 1500, 1500),
            box(2000, 2000, 2500, 2500),
        ],
        crs=CRS,
    )


@pytest.fixture
def link_units() -> gpd.GeoDataFrame:
    """Units exercising every linking outcome.

    UA crosses level path 1 twice. UNA never touches level path 3. UC spans two rows,
    one crossing level path 1 and one far away. UX is excluded.
    """
    return gpd.GeoDataFrame(
        {
            "unit_id": ["UA", "UNA", "UC", "UC", "UX"],
            "tounit": ["UB", "UB", "UB", "UB", "OCEAN"],
            "unit_type": ["S", "S", "S", "S", "F"],
        },
        geometry=[
            box(-500, 1500, 500, 2500),
            box(-2000, -2000, -1000, -1000),
            box(-500, -500, 500, 500),
            box(3000, 3000, 4000, 4000),
            box(-500, 2600, 500, 2900),
        ],
        crs=CRS,
    )


@pytest.fixture
def link_unit_levelpaths() -> pd.DataFrame:
    """Level path assignments for the link units"""
    return pd.DataFrame({"unit_id": ["UA", "UNA", "UC", "UX"], "levelpath": [1, 3, 1, 1]})


@pytest.fixture
def sample_inputs(
    tmp_path: Path,
    source_flowlines: gpd.GeoDataFrame,
    target_flowlines: gpd.GeoDataFrame,
    units: gpd.GeoDataFrame,
    headwater_pairs: pd.DataFrame,
) -> InputsConfig:
    """Write the synthetic datasets with their raw column names"""
    source_path = tmp_path / "source_flowlines.parquet"
    source_flowlines.rename(
        columns={
            "id": "COMID",
            "toid": "toCOMID",
            "levelpath": "LevelPathI",
            "hydroseq": "Hydroseq",
            "reachcode": "REACHCODE",
            "frommeas": "FromMeas",
            "tomeas": "ToMeas",
        }
    ).to_parquet(source_path)

    target_path = tmp_path / "target_flowlines.parquet"
    target_flowlines.rename(columns={"id": "ID", "toid": "toID"}).to_parquet(target_path)

    units_path = tmp_path / "units.parquet"
    units.rename(columns={"unit_id": "HUC12", "tounit": "TOHUC", "unit_type": "HU_12_TYPE"}).to_parquet(units_path)

    pairs_path = tmp_path / "headwater_pairs.csv"
    headwater_pairs.to_csv(pairs_path, index=False)

    return InputsConfig(
        source_flowlines_path=source_path,
        target_flowlines_path=target_path,
        units_path=units_path,
        headwater_pairs_path=pairs_path,
    )


@pytest.fixture
def sample_config(sample_inputs: InputsConfig, tmp_path: Path) -> MSConfig:
    """Fixture providing a sample MSConfig writing into tmp_path."""
    return MSConfig(
        output_dir=tmp_path,
        tasks=TaskSelection(match_flowpaths=True, link_units=True),
        inputs=sample_inputs,
        match=MatchConfig(correspondence_path=tmp_path / "correspondence.parquet"),
        link=LinkConfig(exclusions_path=tmp_path / "exclusions.parquet"),
        executor=ExecutorConfig(worker_count=1, pool=PoolType.THREAD),
    )
