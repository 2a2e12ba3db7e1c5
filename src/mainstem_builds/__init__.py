from ._version import __version__
from .config import MSConfig
from .pipeline.build_graph import build_graph
from .pipeline.download import download_reference_data
from .pipeline.match_flowpaths import build_exclusions, match_flowpaths
from .pipeline.processing import map_link_points, map_unit_points
from .pipeline.write import write_linked_points
from .task_instance import TaskInstance

__all__ = [
    "__version__",
    "MSConfig",
    "download_reference_data",
    "build_graph",
    "build_exclusions",
    "match_flowpaths",
    "map_unit_points",
    "map_link_points",
    "write_linked_points",
    "TaskInstance",
]
