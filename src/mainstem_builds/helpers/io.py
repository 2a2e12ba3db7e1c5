import logging
import sqlite3
from pathlib import Path

import geopandas as gpd
import pandas as pd

logger = logging.getLogger(__name__)


def _ensure_projected(gdf: gpd.GeoDataFrame, work_crs: str = "EPSG:5070") -> gpd.GeoDataFrame:
    if gdf.crs is None:
        raise ValueError("GeoDataFrame must have a CRS")
    if str(gdf.crs).upper() == work_crs.upper():
        return gdf
    return gdf.to_crs(work_crs)


def _read_geofile(file_path: str | Path, layer_name: str | None = None) -> gpd.GeoDataFrame:
    file_path = str(file_path)
    if file_path.endswith(".parquet"):
        return gpd.read_parquet(file_path)
    elif file_path.endswith((".gpkg", ".gdb", ".shp")):
        return gpd.read_file(file_path, layer=layer_name)
    else:
        raise ValueError(f"Unsupported file type: {file_path}")


def _read_table(file_path: str | Path) -> pd.DataFrame:
    file_path = str(file_path)
    if file_path.endswith(".parquet"):
        return pd.read_parquet(file_path)
    elif file_path.endswith(".csv"):
        return pd.read_csv(file_path)
    else:
        raise ValueError(f"Unsupported file type: {file_path}")


def _validate_and_fix_geometries(gdf: gpd.GeoDataFrame, geom_type: str) -> gpd.GeoDataFrame:
    """Validate and fix invalid geometries in a GeoDataFrame.

    Parameters
    ----------
    gdf : gpd.GeoDataFrame
        GeoDataFrame to validate
    geom_type : str
        Description for logging (e.g., "flowlines", "units")

    Returns
    -------
    gpd.GeoDataFrame
        GeoDataFrame with fixed geometries

    Raises
    ------
    ValueError
        If invalid geometries remain after fixing
    """
    invalid_mask = ~gdf.geometry.is_valid
    if invalid_mask.sum() == 0:
        return gdf

    logger.info(f"Fixing {invalid_mask.sum()} invalid {geom_type} geometries")
    gdf.loc[invalid_mask, "geometry"] = gdf[invalid_mask].geometry.make_valid()

    still_invalid = (~gdf.geometry.is_valid).sum()
    if still_invalid > 0:
        raise ValueError(f"Could not fix {still_invalid} invalid geometries in {geom_type}")

    return gdf


class FeatureStore:
    """A GeoPackage backed store of named tables.

    Geometry tables are written as GPKG layers, attribute-only tables through
    sqlite. A checkpoint lookup is simply whether a named table exists.

    Parameters
    ----------
    path : Path
        The GeoPackage file backing the store
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def exists(self, name: str) -> bool:
        """Check whether a named table exists in the store

        Parameters
        ----------
        name : str
            The table or layer name

        Returns
        -------
        bool
            True if the store file exists and holds the table
        """
        if not self.path.exists():
            return False
        conn = sqlite3.connect(self.path)
        try:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
            ).fetchone()
        finally:
            conn.close()
        return row is not None

    def read_layer(self, name: str) -> gpd.GeoDataFrame:
        """Read a geometry layer from the store"""
        return gpd.read_file(self.path, layer=name)

    def write_layer(self, gdf: gpd.GeoDataFrame, name: str) -> None:
        """Write a geometry layer, replacing any layer with the same name"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        gdf.to_file(self.path, layer=name, driver="GPKG")
        logger.info(f"store: wrote {len(gdf)} rows to layer {name} in {self.path}")

    def read_table(self, name: str) -> pd.DataFrame:
        """Read an attribute-only table from the store"""
        conn = sqlite3.connect(self.path)
        try:
            return pd.read_sql(f'SELECT * FROM "{name}"', conn)
        finally:
            conn.close()

    def write_table(self, df: pd.DataFrame, name: str) -> None:
        """Write an attribute-only table, replacing any table with the same name"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path)
        try:
            df.to_sql(name, conn, index=False, if_exists="replace")
        finally:
            conn.close()
        logger.info(f"store: wrote {len(df)} rows to table {name} in {self.path}")
