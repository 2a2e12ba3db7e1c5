"""Tests for snapping points to reach measures"""

import geopandas as gpd
import pytest
from shapely.geometry import LineString, Point

from mainstem_builds.errors import NoMatchWithinRadius
from mainstem_builds.mainstems.snap import FlowlineIndex


class TestFlowlineIndex:
    """Tests for FlowlineIndex.snap"""

    def test_point_on_line(self, source_flowlines: gpd.GeoDataFrame) -> None:
        """Test a point halfway down a reach lands at measure 50"""
        result = FlowlineIndex(source_flowlines).snap(Point(0, 1500), search_radius=1000)
        assert result.segment_id == 12
        assert result.reachcode == "R12"
        assert result.measure == pytest.approx(50.0)
        assert result.offset == pytest.approx(0.0)

    def test_offset(self, source_flowlines: gpd.GeoDataFrame) -> None:
        """Test the offset is the lateral distance to the line"""
        result = FlowlineIndex(source_flowlines).snap(Point(30, 1250), search_radius=1000)
        assert result.segment_id == 12
        assert result.measure == pytest.approx(25.0)
        assert result.offset == pytest.approx(30.0)

    @pytest.mark.parametrize("y,expected", [(3000, 100.0), (2250, 25.0)])
    def test_measure_runs_downstream(self, source_flowlines: gpd.GeoDataFrame, y: float, expected: float) -> None:
        """Test measures run from 100 at the upstream end to 0 downstream"""
        result = FlowlineIndex(source_flowlines).snap(Point(0, y), search_radius=1000)
        assert result.segment_id == 11
        assert result.measure == pytest.approx(expected)

    def test_partial_reach(self) -> None:
        """Test measures are scaled to the reach's own from/to range"""
        flowlines = gpd.GeoDataFrame(
            {"id": [1], "reachcode": ["R1"], "frommeas": [20.0], "tomeas": [60.0]},
            geometry=[LineString([(0, 100), (0, 0)])],
            crs="EPSG:5070",
        )
        result = FlowlineIndex(flowlines).snap(Point(0, 50), search_radius=10)
        assert result.measure == pytest.approx(40.0)

    def test_tie_goes_downstream(self, source_flowlines: gpd.GeoDataFrame) -> None:
        """Test a point on a junction snaps to the lower hydroseq segment"""
        result = FlowlineIndex(source_flowlines).snap(Point(0, 2000), search_radius=1000)
        assert result.segment_id == 12
        assert result.measure == pytest.approx(100.0)

    def test_no_match(self, source_flowlines: gpd.GeoDataFrame) -> None:
        """Test nothing inside the radius raises NoMatchWithinRadius"""
        with pytest.raises(NoMatchWithinRadius) as exc_info:
            FlowlineIndex(source_flowlines).snap(Point(5000, 5000), search_radius=1000)
        assert exc_info.value.search_radius == 1000

    def test_empty_point(self, source_flowlines: gpd.GeoDataFrame) -> None:
        """Test an empty point never matches"""
        with pytest.raises(NoMatchWithinRadius):
            FlowlineIndex(source_flowlines).snap(Point(), search_radius=1000)
