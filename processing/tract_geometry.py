"""
tract_geometry.py

Census Tract boundary loading for the lead testing maps.

Reads any vector dataset pyogrio can open (Shapefile, GeoJSON, GeoPackage, ...)
and flattens every polygon into a vertex table:

    identifier, part_id, ring_id, is_hole, sequence_index, x, y

Each ring is closed (first vertex repeated last). Exterior rings are oriented
counter-clockwise and holes clockwise so compound paths fill with the nonzero
rule.
"""

from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import geopandas as gpd
import pandas as pd
import pyogrio
from loguru import logger
from pyogrio.errors import DataLayerError, DataSourceError
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.polygon import orient

from .errors import MalformedInputError, UnsupportedFormatError

VERTEX_COLUMNS = ["identifier", "part_id", "ring_id", "is_hole", "sequence_index", "x", "y"]


def load_tract_geometry(
    path: Union[str, Path],
    id_column: str,
    layer: Optional[str] = None,
    driver: Optional[str] = None,
    target_crs: Optional[str] = None,
) -> gpd.GeoDataFrame:
    """
    Load tract polygons keyed by ``id_column``.

    Args:
        path: Vector dataset path (file or directory for multi-file formats)
        id_column: Attribute holding the tract identifier
        layer: Layer name inside multi-layer datasets
        driver: OGR driver name; None lets pyogrio detect it
        target_crs: Reproject to this CRS when given

    Raises:
        FileNotFoundError: if the path does not exist
        OSError: if the file exists but cannot be opened
        UnsupportedFormatError: if the driver or format is not available
        MalformedInputError: if the layer or identifier attribute is missing,
            the identifier is not a text field, or a geometry is not a polygon
    """
    path = Path(path)
    logger.info(f"🗺️ Loading tract boundaries from {path}")

    if not path.exists():
        raise FileNotFoundError(f"Boundary dataset not found: {path}")
    if path.is_file():
        # Permission errors surface as OSError, not as a format problem
        with open(path, "rb"):
            pass

    if driver is not None and driver not in pyogrio.list_drivers(read=True):
        raise UnsupportedFormatError(f"{path}: OGR driver '{driver}' is not available for reading")

    read_kwargs: Dict[str, Any] = {"engine": "pyogrio"}
    if layer is not None:
        read_kwargs["layer"] = layer

    try:
        detected = pyogrio.read_info(path, layer=layer)["driver"]
        if driver is not None and detected != driver:
            raise UnsupportedFormatError(f"{path}: expected a {driver} dataset, found {detected}")
        gdf = gpd.read_file(path, **read_kwargs)
    except DataLayerError as e:
        raise MalformedInputError(f"{path}: layer '{layer}' could not be read: {e}") from e
    except DataSourceError as e:
        raise UnsupportedFormatError(f"{path}: not a supported vector format: {e}") from e

    label = f"{path}" if layer is None else f"{path} (layer {layer})"

    if id_column not in gdf.columns:
        raise MalformedInputError(
            f"{label}: missing identifier attribute '{id_column}'. "
            f"Available attributes: {sorted(c for c in gdf.columns if c != gdf.geometry.name)}"
        )
    if not pd.api.types.is_string_dtype(gdf[id_column]):
        raise MalformedInputError(
            f"{label}: identifier attribute '{id_column}' has type {gdf[id_column].dtype}; "
            "a text field is required so codes keep their leading zeros"
        )

    geom_types = set(gdf.geometry.dropna().geom_type.unique())
    unsupported = geom_types - {"Polygon", "MultiPolygon"}
    if unsupported:
        raise MalformedInputError(f"{label}: expected polygon features, found {sorted(unsupported)}")

    logger.success(f"  ✅ Loaded {len(gdf):,} features")
    logger.debug(f"     CRS: {gdf.crs}")
    logger.debug(f"     Geometry types: {gdf.geometry.geom_type.value_counts().to_dict()}")

    if target_crs is not None:
        if gdf.crs is None:
            logger.warning(f"  ⚠️ {label} has no CRS; cannot reproject to {target_crs}, keeping source coordinates")
        else:
            logger.info(f"  🔄 Reprojecting from {gdf.crs} to {target_crs}")
            gdf = gdf.to_crs(target_crs)

    return gdf


def _polygon_parts(geometry: Union[Polygon, MultiPolygon]) -> List[Polygon]:
    if isinstance(geometry, MultiPolygon):
        return [part for part in geometry.geoms if not part.is_empty]
    return [geometry]


def _rings(polygon: Polygon) -> Iterator[Tuple[bool, List[Tuple[float, float]]]]:
    oriented = orient(polygon, sign=1.0)
    yield False, [(float(x), float(y)) for x, y, *_ in oriented.exterior.coords]
    for interior in oriented.interiors:
        yield True, [(float(x), float(y)) for x, y, *_ in interior.coords]


def flatten_polygons(gdf: gpd.GeoDataFrame, id_column: str) -> pd.DataFrame:
    """
    Flatten tract polygons into one row per ring vertex.

    Several features may share an identifier; their parts and rings are
    numbered on from the ones already emitted for that identifier, so
    (identifier, ring_id) stays unique. Null and empty geometries are skipped.
    """
    if id_column not in gdf.columns:
        raise MalformedInputError(f"boundary data: missing identifier attribute '{id_column}'")

    rows: List[Tuple[str, int, int, bool, int, float, float]] = []
    next_part: Dict[str, int] = {}
    next_ring: Dict[str, int] = {}
    skipped = 0

    for identifier, geometry in zip(gdf[id_column], gdf.geometry):
        if geometry is None or geometry.is_empty:
            skipped += 1
            continue
        identifier = str(identifier)
        for polygon in _polygon_parts(geometry):
            part_id = next_part.get(identifier, 0)
            next_part[identifier] = part_id + 1
            for is_hole, coords in _rings(polygon):
                ring_id = next_ring.get(identifier, 0)
                next_ring[identifier] = ring_id + 1
                for sequence_index, (x, y) in enumerate(coords):
                    rows.append((identifier, part_id, ring_id, is_hole, sequence_index, x, y))

    if skipped:
        logger.warning(f"  ⚠️ Skipped {skipped:,} features with null or empty geometry")

    vertices = pd.DataFrame.from_records(rows, columns=VERTEX_COLUMNS)
    vertices = vertices.astype(
        {
            "identifier": object,
            "part_id": "int64",
            "ring_id": "int64",
            "is_hole": bool,
            "sequence_index": "int64",
            "x": "float64",
            "y": "float64",
        }
    )
    logger.info(
        f"📐 Flattened {len(next_part):,} tracts into {sum(next_ring.values()):,} rings "
        f"({len(vertices):,} vertices)"
    )
    return vertices
