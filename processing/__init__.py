"""
Processing package for the Lead Testing Tract Maps pipeline

Loading and normalization of the tract attribute table and tract boundaries.
"""

__version__ = "0.1.0"

from .data_utils import (
    RECORD_COLUMNS,
    TractColumns,
    clean_numeric,
    export_records,
    load_tract_table,
    normalize_records,
)
from .errors import ConfigError, MalformedInputError, PipelineError, UnsupportedFormatError
from .tract_geometry import VERTEX_COLUMNS, flatten_polygons, load_tract_geometry

__all__ = [
    "RECORD_COLUMNS",
    "VERTEX_COLUMNS",
    "TractColumns",
    "clean_numeric",
    "export_records",
    "load_tract_table",
    "normalize_records",
    "load_tract_geometry",
    "flatten_polygons",
    "PipelineError",
    "MalformedInputError",
    "UnsupportedFormatError",
    "ConfigError",
]
