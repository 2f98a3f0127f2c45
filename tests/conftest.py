from pathlib import Path
from typing import Dict, List, Optional

import matplotlib

matplotlib.use("Agg")

import geopandas as gpd  # noqa: E402
import pandas as pd  # noqa: E402
import pytest  # noqa: E402
from loguru import logger  # noqa: E402
from shapely.geometry import MultiPolygon, Polygon, box  # noqa: E402

from processing.data_utils import TractColumns  # noqa: E402

PROJECT_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture(autouse=True)
def quiet_logger():
    logger.remove()
    yield
    logger.remove()


@pytest.fixture
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture
def columns() -> TractColumns:
    return TractColumns()


@pytest.fixture
def write_csv(tmp_path: Path):
    def _write(rows: List[Dict[str, str]], name: str = "tracts.csv", header: Optional[List[str]] = None) -> Path:
        path = tmp_path / name
        fieldnames = header or list(rows[0].keys())
        lines = [",".join(fieldnames)]
        for row in rows:
            lines.append(",".join(str(row.get(field, "")) for field in fieldnames))
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def write_tracts(tmp_path: Path):
    def _write(features: Dict[str, object], name: str = "tracts.geojson", id_column: str = "GEOID") -> Path:
        path = tmp_path / name
        gdf = gpd.GeoDataFrame(
            {id_column: list(features.keys())},
            geometry=list(features.values()),
            crs="EPSG:4326",
        )
        gdf.to_file(path, driver="GeoJSON")
        return path

    return _write


@pytest.fixture
def square() -> Polygon:
    return box(0.0, 0.0, 1.0, 1.0)


@pytest.fixture
def two_part_tract() -> MultiPolygon:
    return MultiPolygon([box(0.0, 0.0, 1.0, 1.0), box(2.0, 0.0, 3.0, 1.0)])


@pytest.fixture
def records_frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "identifier": ["001", "002"],
            "display_name": ["Tract 1", "Tract 2"],
            "tested_count": pd.array([100, 50], dtype="Int64"),
            "elevated_percent": [10.0, 50.0],
            "elevated_count": pd.array([10, 25], dtype="Int64"),
        }
    )
