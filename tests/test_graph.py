"""Tests for the flow graph and downstream tracing"""

import geopandas as gpd
import pandas as pd
import polars as pl
import pytest

from mainstem_builds.errors import CycleDetected
from mainstem_builds.mainstems.graph import FlowGraph, get_headwater_points


class TestFlowGraph:
    """Tests for building a FlowGraph"""

    def test_from_segments_pandas(self, source_graph: FlowGraph) -> None:
        """Test every segment becomes a node"""
        assert len(source_graph) == 4
        assert 11 in source_graph
        assert 999 not in source_graph

    def test_from_segments_polars(self) -> None:
        """Test polars tables build the same graph"""
        df = pl.DataFrame({"id": [1, 2, 3], "toid": [2, 3, None]})
        graph = FlowGraph.from_segments(df)
        assert graph.trace_downstream(1) == [1, 2, 3]
        assert graph.attributes is None

    @pytest.mark.parametrize("terminal", [0, None, 999])
    def test_terminal_markers(self, terminal: int | None) -> None:
        """Test 0, null and unknown downstream ids all mark a terminal"""
        graph = FlowGraph({1: 2, 2: terminal})
        assert graph.downstream_of(2) is None
        assert graph.terminals() == [2]

    def test_duplicate_ids_rejected(self) -> None:
        """Test a segment with two downstream links is rejected"""
        df = pd.DataFrame({"id": [1, 1, 2, 3], "toid": [2, 3, 0, 0]})
        with pytest.raises(ValueError, match="not dendritic"):
            FlowGraph.from_segments(df)

    def test_headwaters(self, source_graph: FlowGraph) -> None:
        """Test headwaters have no upstream inflow"""
        assert sorted(source_graph.headwaters()) == [11, 21]

    def test_upstream_of(self, source_graph: FlowGraph) -> None:
        """Test upstream queries through the rustworkx graph"""
        assert source_graph.upstream_of(13) == {11, 12, 21}
        assert source_graph.upstream_of(11) == set()


class TestTraceDownstream:
    """Tests for downstream tracing"""

    def test_trace_from_headwater(self, source_graph: FlowGraph) -> None:
        """Test the trace runs to the terminal, both ends included"""
        assert source_graph.trace_downstream(11) == [11, 12, 13]
        assert source_graph.trace_downstream(21) == [21, 13]

    def test_trace_from_terminal(self, source_graph: FlowGraph) -> None:
        """Test a terminal traces to itself"""
        assert source_graph.trace_downstream(13) == [13]

    def test_trace_unknown_start(self, source_graph: FlowGraph) -> None:
        """Test an unknown start id raises KeyError"""
        with pytest.raises(KeyError):
            source_graph.trace_downstream(999)

    def test_trace_cycle(self) -> None:
        """Test a loop raises CycleDetected naming the revisited segment"""
        graph = FlowGraph({1: 2, 2: 3, 3: 1})
        with pytest.raises(CycleDetected) as exc_info:
            graph.trace_downstream(1)
        assert exc_info.value.start_id == 1
        assert exc_info.value.repeated_id == 1

    def test_long_mainstem(self) -> None:
        """Test long chains do not hit the recursion limit"""
        n = 50_000
        graph = FlowGraph({i: i + 1 for i in range(1, n)} | {n: None})
        path = graph.trace_downstream(1)
        assert len(path) == n
        assert path[-1] == n


class TestValidate:
    """Tests for graph validation"""

    def test_valid_network(self, source_graph: FlowGraph, target_graph: FlowGraph) -> None:
        """Test dendritic networks validate"""
        source_graph.validate()
        target_graph.validate()

    def test_cycle_rejected(self) -> None:
        """Test cyclic networks fail validation"""
        graph = FlowGraph({1: 2, 2: 3, 3: 1, 4: 1})
        with pytest.raises(CycleDetected):
            graph.validate()

    @pytest.mark.parametrize("upstream_hydroseq", [1, 2])
    def test_hydroseq_out_of_order(self, upstream_hydroseq: int) -> None:
        """Test a segment not above its downstream neighbor in hydroseq fails validation"""
        df = pd.DataFrame(
            {
                "id": [1, 2, 3],
                "toid": [2, 3, 0],
                "levelpath": [1, 1, 1],
                "hydroseq": [upstream_hydroseq, 2, 1],
            }
        )
        graph = FlowGraph.from_segments(df)
        with pytest.raises(ValueError, match=r"hydroseq must increase upstream.*\[1\]"):
            graph.validate()

    def test_hydroseq_skipped_without_attributes(self) -> None:
        """Test graphs without hydroseq only check topology"""
        graph = FlowGraph.from_segments(pd.DataFrame({"id": [1, 2], "toid": [2, 0]}))
        graph.validate()


class TestLevelPaths:
    """Tests for the level path view"""

    def test_level_paths(self, source_graph: FlowGraph) -> None:
        """Test outlets and headwaters follow hydroseq"""
        lps = source_graph.level_paths()
        mainstem = lps.filter(pl.col("levelpath") == 1).row(0, named=True)
        assert mainstem["outlet_id"] == 13
        assert mainstem["headwater_id"] == 11
        assert mainstem["min_hydroseq"] == 1
        assert mainstem["max_hydroseq"] == 4
        assert mainstem["size"] == 3
        assert lps["levelpath"].to_list() == [1, 3]

    def test_level_paths_need_attributes(self) -> None:
        """Test graphs without attributes cannot produce level paths"""
        graph = FlowGraph({1: None})
        with pytest.raises(ValueError):
            graph.level_paths()


class TestHeadwaterPoints:
    """Tests for headwater midpoints"""

    def test_headwater_points(self, source_flowlines: gpd.GeoDataFrame) -> None:
        """Test one point per headwater at the middle vertex"""
        points = get_headwater_points(source_flowlines).set_index("id")
        assert sorted(points.index) == [11, 21]
        assert (points.loc[11].geometry.x, points.loc[11].geometry.y) == (0.0, 3000.0)
        assert (points.loc[21].geometry.x, points.loc[21].geometry.y) == (500.0, 1000.0)
        assert points.crs == source_flowlines.crs
