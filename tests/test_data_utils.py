from pathlib import Path

import pandas as pd
import pytest

from processing.data_utils import (
    RECORD_COLUMNS,
    TractColumns,
    export_records,
    load_tract_table,
    normalize_records,
)
from processing.errors import MalformedInputError


def _row(geoid, tested, pct, name="Tract"):
    return {"GEOID": geoid, "NAME": name, "tested": tested, "perc_elevated": pct}


def test_load_keeps_identifiers_as_text(write_csv, columns):
    path = write_csv([_row("001", 100, 10.0), _row("42003010300", 5, "")])

    table = load_tract_table(path, columns)

    assert table["GEOID"].tolist() == ["001", "42003010300"]
    assert str(table["tested"].dtype) == "Int64"
    assert table["perc_elevated"].dtype == "float64"
    assert pd.isna(table.loc[1, "perc_elevated"])


def test_load_strips_thousands_separator_and_percent_sign(tmp_path, columns):
    path = tmp_path / "t.csv"
    path.write_text('GEOID,NAME,tested,perc_elevated\n001,A,"1,250",12.5%\n', encoding="utf-8")

    table = load_tract_table(path, columns)

    assert table.loc[0, "tested"] == 1250
    assert table.loc[0, "perc_elevated"] == 12.5


def test_load_missing_file_raises_oserror(tmp_path, columns):
    with pytest.raises(FileNotFoundError):
        load_tract_table(tmp_path / "nope.csv", columns)


def test_load_missing_column_names_file_and_column(write_csv, columns):
    path = write_csv([{"GEOID": "001", "NAME": "A", "tested": 3}])

    with pytest.raises(MalformedInputError) as excinfo:
        load_tract_table(path, columns)

    assert "perc_elevated" in str(excinfo.value)
    assert str(path) in str(excinfo.value)


@pytest.mark.parametrize(
    "tested,pct",
    [("abc", 1.0), (-4, 1.0), (2.5, 1.0), (10, "high"), (10, 101), (10, -1)],
)
def test_load_rejects_bad_numeric_values(write_csv, columns, tested, pct):
    path = write_csv([_row("001", tested, pct)])

    with pytest.raises(MalformedInputError):
        load_tract_table(path, columns)


def test_load_rejects_blank_identifier(write_csv, columns):
    path = write_csv([_row("001", 1, 1.0), _row("", 1, 1.0)])

    with pytest.raises(MalformedInputError, match="line"):
        load_tract_table(path, columns)


def test_load_empty_file_is_malformed(tmp_path, columns):
    path = tmp_path / "empty.csv"
    path.write_text("", encoding="utf-8")

    with pytest.raises(MalformedInputError):
        load_tract_table(path, columns)


def test_load_latin1_file_is_malformed(tmp_path, columns):
    path = tmp_path / "latin1.csv"
    path.write_bytes(b"GEOID,NAME,tested,perc_elevated\n001,Do\xf1a Ana,10,1.0\n")

    with pytest.raises(MalformedInputError, match="UTF-8"):
        load_tract_table(path, columns)


def test_normalize_projects_to_record_schema(write_csv, columns):
    path = write_csv([_row("001", 100, 10.0)], header=["GEOID", "NAME", "county", "tested", "perc_elevated"])

    records = normalize_records(load_tract_table(path, columns), columns)

    assert list(records.columns) == RECORD_COLUMNS
    row = records.iloc[0]
    assert row["identifier"] == "001"
    assert row["tested_count"] == 100
    assert row["elevated_percent"] == 10.0
    assert row["elevated_count"] == 10


def test_normalize_elevated_count_matches_rounding_rule(write_csv, columns):
    cases = [(100, 10.0), (37, 12.3), (8, 6.25), (200, 0.25), (3, 100.0), (1301, 8.0), (0, 55.0)]
    path = write_csv([_row(f"{i:03d}", tested, pct) for i, (tested, pct) in enumerate(cases)])

    records = normalize_records(load_tract_table(path, columns), columns)

    for (tested, pct), count in zip(cases, records["elevated_count"]):
        assert count == round(pct * 0.01 * tested)
        assert count <= tested


def test_normalize_rounds_half_to_even(write_csv, columns):
    # 12.5% of 4 = 0.5 and 12.5% of 12 = 1.5, both exact in binary
    path = write_csv([_row("001", 4, 12.5), _row("002", 12, 12.5)])

    records = normalize_records(load_tract_table(path, columns), columns)

    assert records["elevated_count"].tolist() == [0, 2]


def test_normalize_missing_percent_gives_null_count(write_csv, columns):
    path = write_csv([_row("001", 40, "")])

    records = normalize_records(load_tract_table(path, columns), columns)

    assert pd.isna(records.loc[0, "elevated_count"])
    assert records.loc[0, "tested_count"] == 40


def test_normalize_does_not_mutate_input(write_csv, columns):
    table = load_tract_table(write_csv([_row("001", 100, 10.0)]), columns)
    before = table.copy()

    normalize_records(table, columns)

    pd.testing.assert_frame_equal(table, before)


def test_normalize_twice_raises(write_csv, columns):
    records = normalize_records(load_tract_table(write_csv([_row("001", 100, 10.0)]), columns), columns)

    with pytest.raises(MalformedInputError):
        normalize_records(records, columns)


def test_exported_records_cannot_be_reloaded(write_csv, columns, tmp_path: Path):
    records = normalize_records(load_tract_table(write_csv([_row("001", 100, 10.0)]), columns), columns)
    exported = export_records(records, tmp_path / "out" / "normalized.csv")

    assert exported.exists()
    with pytest.raises(MalformedInputError):
        normalize_records(load_tract_table(exported, columns), columns)


def test_custom_column_names(write_csv):
    columns = TractColumns(identifier="tract", name="label", tested="n_tested", elevated_percent="pct")
    path = write_csv([{"tract": "0042", "label": "X", "n_tested": 20, "pct": 25.0}])

    records = normalize_records(load_tract_table(path, columns), columns)

    assert records.loc[0, "identifier"] == "0042"
    assert records.loc[0, "elevated_count"] == 5
