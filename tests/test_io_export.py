"""Tests for garimpo/io_export.py — catalog export and performance CSV."""

from __future__ import annotations

import io

import pandas as pd
import pytest

from garimpo.io_export import (
    EXPORT_COLUMNS,
    SHEET_NAME,
    InputSchemaError,
    catalog_csv_bytes,
    catalog_xlsx_bytes,
    read_performance_csv,
    records_to_dataframe,
    write_catalog_csv,
    write_catalog_xlsx,
)
from garimpo.performance import apply_performance_update
from garimpo.schema import AdsAssets

# ─────────────────────────────────────────────────────────────────────────────
# Export
# ─────────────────────────────────────────────────────────────────────────────


class TestRecordsToDataframe:
    def test_columns_and_order(self, make_record):
        df = records_to_dataframe([make_record("A"), make_record("B")])
        assert list(df.columns) == EXPORT_COLUMNS
        assert list(df["name"]) == ["A", "B"]

    def test_empty_catalog(self):
        df = records_to_dataframe([])
        assert df.empty
        assert list(df.columns) == EXPORT_COLUMNS

    def test_flattened_values(self, make_record):
        r = make_record(ads_assets=AdsAssets(["a", "b"], [], []))
        r = apply_performance_update(r, {"totalSpent": 10.0})
        row = records_to_dataframe([r]).iloc[0]
        assert row["commissionCash"] == 48.5
        assert row["viabilityStatus"] == "loss"
        assert row["keywords"] == "a, b"
        assert row["status"] == "live"
        assert row["createdAt"].startswith("2023-11-14")


class TestWriters:
    def test_csv_file(self, tmp_path, make_record):
        p = write_catalog_csv([make_record("A")], tmp_path / "out" / "meu_garimpo.csv")
        df = pd.read_csv(p)
        assert list(df["name"]) == ["A"]

    def test_xlsx_file_sheet_name(self, tmp_path, make_record):
        p = write_catalog_xlsx([make_record("A")], tmp_path / "meu_garimpo.xlsx")
        sheets = pd.read_excel(p, sheet_name=None)
        assert list(sheets) == [SHEET_NAME]
        assert list(sheets[SHEET_NAME]["name"]) == ["A"]

    def test_bytes_helpers(self, make_record):
        records = [make_record("A")]
        assert catalog_csv_bytes(records).startswith(b"id,name,")
        df = pd.read_excel(io.BytesIO(catalog_xlsx_bytes(records)), sheet_name=SHEET_NAME)
        assert len(df) == 1


# ─────────────────────────────────────────────────────────────────────────────
# Performance CSV
# ─────────────────────────────────────────────────────────────────────────────


class TestReadPerformanceCsv:
    def test_reads_ids_as_text(self, tmp_path):
        p = tmp_path / "perf.csv"
        p.write_text("id,totalSpent\n00123,10.5\n", encoding="utf-8")
        df = read_performance_csv(p)
        assert df.loc[0, "id"] == "00123"

    def test_missing_id_column(self, tmp_path):
        p = tmp_path / "perf.csv"
        p.write_text("name,totalSpent\nX,10\n", encoding="utf-8")
        with pytest.raises(InputSchemaError):
            read_performance_csv(p)

    def test_accepts_exported_catalog(self, tmp_path, make_record):
        p = write_catalog_csv([make_record(record_id="abc")], tmp_path / "cat.csv")
        assert list(read_performance_csv(p)["id"]) == ["abc"]
