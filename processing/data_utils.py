#!/usr/bin/env python3
"""
data_utils.py - Tract Attribute Table Loading and Normalization

Reads the per-tract blood-lead testing CSV and projects it to the narrow
record schema used by the map:

    identifier, display_name, tested_count, elevated_percent, elevated_count

Every CSV column is read as text. Only the declared numeric columns are parsed,
so tract identifiers such as "42003010300" or "001" keep their leading zeros.

Rounding of elevated_count is round-half-to-even (numpy.round, the same rule as
Python's built-in round).
"""

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, List, Union

import numpy as np
import pandas as pd
from loguru import logger

from .errors import MalformedInputError

if TYPE_CHECKING:
    from ops import Config

RECORD_COLUMNS = [
    "identifier",
    "display_name",
    "tested_count",
    "elevated_percent",
    "elevated_count",
]


@dataclass(frozen=True)
class TractColumns:
    """Source column names in the tract attribute CSV."""

    identifier: str = "GEOID"
    name: str = "NAME"
    tested: str = "tested"
    elevated_percent: str = "perc_elevated"

    @classmethod
    def from_config(cls, config: "Config") -> "TractColumns":
        return cls(
            identifier=config.get_column_name("tract_id"),
            name=config.get_column_name("tract_name"),
            tested=config.get_column_name("tested"),
            elevated_percent=config.get_column_name("elevated_percent"),
        )

    def required(self) -> List[str]:
        return [self.identifier, self.name, self.tested, self.elevated_percent]


def require_columns(df: pd.DataFrame, required: List[str], label: str) -> None:
    cols = set(df.columns)
    missing = [c for c in required if c not in cols]
    if missing:
        raise MalformedInputError(
            f"{label}: missing required column(s): {missing}. "
            f"Available columns: {sorted(map(str, cols))}"
        )


def clean_numeric(series: pd.Series, column: str, label: str) -> pd.Series:
    """
    Parse a text column to floats, stripping commas and percent signs.

    Blank cells become NaN. Any other unparseable cell raises
    MalformedInputError instead of being coerced to NaN.
    """
    s = (
        series.astype(str)
        .str.replace(",", "", regex=False)
        .str.replace("%", "", regex=False)
        .str.strip()
    )
    s = s.mask(s == "")
    try:
        return pd.to_numeric(s, errors="raise").astype("float64")
    except (TypeError, ValueError) as e:
        raise MalformedInputError(f"{label}: column '{column}' holds non-numeric values: {e}") from e


def load_tract_table(path: Union[str, Path], columns: TractColumns) -> pd.DataFrame:
    """
    Load the tract attribute CSV with the declared schema.

    Args:
        path: Path to a delimited text file with a header row
        columns: Source column names

    Returns:
        DataFrame with the source columns; the tested column as nullable Int64,
        the percentage column as float64 and everything else as strings.

    Raises:
        FileNotFoundError: if the path cannot be opened
        MalformedInputError: if the file is not UTF-8 text, or a required column
            is absent or holds bad values
    """
    path = Path(path)
    label = str(path)
    logger.info(f"📊 Loading tract attribute table from {path}")

    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        raise MalformedInputError(f"{label}: could not parse delimited table: {e}") from e
    except UnicodeDecodeError as e:
        raise MalformedInputError(f"{label}: not UTF-8 text: {e}") from e
    logger.debug(f"  Columns: {list(df.columns)}")

    require_columns(df, columns.required(), label)

    blank_ids = df[columns.identifier].str.strip() == ""
    if blank_ids.any():
        rows = (df.index[blank_ids] + 2).tolist()  # header is line 1
        raise MalformedInputError(
            f"{label}: column '{columns.identifier}' is blank on line(s) {rows[:10]}"
        )

    tested = clean_numeric(df[columns.tested], columns.tested, label)
    present = tested.dropna()
    if (present < 0).any() or (present % 1 != 0).any():
        raise MalformedInputError(
            f"{label}: column '{columns.tested}' must hold non-negative whole numbers"
        )

    percent = clean_numeric(df[columns.elevated_percent], columns.elevated_percent, label)
    present = percent.dropna()
    if ((present < 0) | (present > 100)).any():
        raise MalformedInputError(
            f"{label}: column '{columns.elevated_percent}' must lie between 0 and 100"
        )

    loaded = df.copy()
    loaded[columns.tested] = tested.astype("Int64")
    loaded[columns.elevated_percent] = percent

    logger.success(f"  ✅ Loaded {len(loaded):,} tract records")
    missing_pct = int(percent.isna().sum())
    if missing_pct:
        logger.info(f"  📭 {missing_pct:,} tracts have no elevated percentage")

    return loaded


def normalize_records(df: pd.DataFrame, columns: TractColumns) -> pd.DataFrame:
    """
    Project a loaded tract table to the record schema.

    The identifier is copied verbatim as a string, the derived elevated count is
    round(elevated_percent * 0.01 * tested_count), and every other source column
    is dropped. Applying this to its own output raises MalformedInputError
    because the source columns are gone.
    """
    require_columns(df, columns.required(), "tract records")

    tested = df[columns.tested].astype("Int64")
    percent = df[columns.elevated_percent].astype("float64")
    raw_count = percent * 0.01 * tested.astype("float64")

    records = pd.DataFrame(
        {
            "identifier": df[columns.identifier].astype(str),
            "display_name": df[columns.name].astype(str),
            "tested_count": tested,
            "elevated_percent": percent,
            "elevated_count": np.round(raw_count).astype("Int64"),
        },
        columns=RECORD_COLUMNS,
    ).reset_index(drop=True)

    logger.info(f"🧹 Normalized {len(records):,} records to {RECORD_COLUMNS}")
    return records


def export_records(records: pd.DataFrame, path: Union[str, Path]) -> Path:
    """Write normalized records to CSV, creating the parent directory."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    records.to_csv(path, index=False)
    logger.info(f"💾 Wrote normalized records: {path}")
    return path
