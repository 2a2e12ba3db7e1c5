"""Contains all code for reading the reference datasets"""

import logging
from pathlib import Path
from typing import Any, cast

import geopandas as gpd

from mainstem_builds.config import MSConfig
from mainstem_builds.helpers.io import (
    _ensure_projected,
    _read_geofile,
    _read_table,
    _validate_and_fix_geometries,
)

logger = logging.getLogger(__name__)


def _load_layer(
    path: Path, layer: str | None, column_map: dict[str, str], crs: str, geom_type: str
) -> gpd.GeoDataFrame:
    gdf = _read_geofile(path, layer).rename(columns=column_map)
    gdf = _ensure_projected(gdf, crs)
    gdf = _validate_and_fix_geometries(gdf, geom_type=geom_type)
    logger.info(f"Download Task: Ingested {len(gdf)} {geom_type} from: {path}")
    return gdf


def download_reference_data(**context: dict[str, Any]) -> dict[str, Any]:
    """
    Reads the source network, target network and hydrologic units.

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
        The source flowlines, target flowlines, units, and the optional target catchments
        and headwater pairs in memory
    """
    cfg = cast(MSConfig, context["config"])
    inputs = cfg.inputs

    source_flowlines = _load_layer(
        inputs.source_flowlines_path,
        inputs.source_flowlines_layer,
        inputs.source_column_map,
        cfg.crs,
        "source flowlines",
    )
    source_flowlines["id"] = source_flowlines["id"].astype("int64")
    source_flowlines["levelpath"] = source_flowlines["levelpath"].astype("int64")

    target_flowlines = _load_layer(
        inputs.target_flowlines_path,
        inputs.target_flowlines_layer,
        inputs.target_column_map,
        cfg.crs,
        "target flowlines",
    )
    target_flowlines["id"] = target_flowlines["id"].astype("int64")

    units = _load_layer(inputs.units_path, inputs.units_layer, inputs.units_column_map, cfg.crs, "units")
    units["unit_id"] = units["unit_id"].astype(str)
    units["tounit"] = units["tounit"].astype("string")

    target_catchments = None
    if inputs.target_catchments_path is not None:
        target_catchments = _load_layer(
            inputs.target_catchments_path,
            inputs.target_catchments_layer,
            inputs.target_column_map,
            cfg.crs,
            "target catchments",
        )

    headwater_pairs = None
    if inputs.headwater_pairs_path is not None:
        headwater_pairs = _read_table(inputs.headwater_pairs_path)
        logger.info(f"Download Task: Ingested {len(headwater_pairs)} headwater pairs from: {inputs.headwater_pairs_path}")

    return {
        "source_flowlines": source_flowlines,
        "target_flowlines": target_flowlines,
        "units": units,
        "target_catchments": target_catchments,
        "headwater_pairs": headwater_pairs,
    }
