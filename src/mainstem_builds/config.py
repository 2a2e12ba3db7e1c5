"""A pydantic basemodel for setting MSConfig defaults"""

from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import BaseModel, Field, model_validator
from pyprojroot import here

from mainstem_builds._version import __version__
from mainstem_builds.schemas.mainstems import (
    ExecutorConfig,
    InputsConfig,
    LinkConfig,
    MatchConfig,
)


class TaskSelection(BaseModel):
    """Config class for selecting tasks to run"""

    match_flowpaths: bool = Field(
        default=True, description="Decides if we want to run the level path correspondence tasks"
    )

    link_units: bool = Field(
        default=True, description="Decides if we want to run the hydrologic unit linking tasks"
    )


class MSConfig(BaseModel):
    """A config validation class for default mainstem build settings"""

    output_dir: Path = Field(
        default=here() / "data/",
        description="The directory for output files to be saved from mainstem builds",
    )

    output_name: Path = Field(default=f"mainstems_{__version__}.gpkg", description="The output file name")

    output_file_path: Path = Field(
        default_factory=lambda data: data["output_dir"] / data["output_name"],
        description="The full output file path. Also serves as the checkpoint store",
    )

    tasks: TaskSelection = Field(default_factory=TaskSelection, description="Which tasks to run")

    crs: str = Field(
        default="EPSG:5070",
        description="Coordinate Reference System for the mainstem builds. Defaults to Conus Albers",
    )

    inputs: InputsConfig = Field(default_factory=InputsConfig, description="Input dataset locations")

    match: MatchConfig = Field(default_factory=MatchConfig, description="Settings for level path matching")

    link: LinkConfig = Field(default_factory=LinkConfig, description="Settings for linking hydrologic units")

    executor: ExecutorConfig = Field(default_factory=ExecutorConfig, description="Settings for the task pool")

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """An internal method to read a config from a YAML file

        Parameters
        ----------
        path : str | Path
            The path to the provided YAML file

        Returns
        -------
        MSConfig
            A configuration object validated
        """
        with open(path) as f:
            data = yaml.safe_load(f)

        return cls(**(data or {}))

    @model_validator(mode="after")
    def inject_crs(self: Any) -> Self:  # type: ignore[misc,type-var]
        """Inject the run CRS into the link settings"""
        self.link.crs = self.crs
        return self
