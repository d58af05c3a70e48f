"""Tests for garimpo/mappers.py — record <-> persisted row."""

from __future__ import annotations

import json

import pytest

from garimpo.mappers import (
    BLOB_FIELDS,
    ROW_COLUMNS,
    MalformedPersistedDataError,
    decode_blob,
    record_to_row,
    row_to_record,
    rows_to_records,
)
from garimpo.schema import (
    ActualPerformance,
    AdsAssets,
    CompetitionLevel,
    MarketInsights,
    Niche,
    Platform,
    TrendStatus,
)


def _full_record(make_record):
    return make_record(
        record_id="r1",
        ai_verdict="Boa oferta",
        sales_page_score=8.0,
        min_bid_cpc=0.8,
        max_bid_cpc=2.1,
        market_insights=MarketInsights(TrendStatus.RISING, CompetitionLevel.LOW, "2.400/mês", 1.2),
        ads_assets=AdsAssets(["kw comprar"], ["Título"], ["Descrição"]),
        performance=ActualPerformance(total_spent=50.0, actual_clicks=40, conversions=1, last_update=9),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Encode
# ─────────────────────────────────────────────────────────────────────────────


class TestRecordToRow:
    def test_columns(self, make_record):
        row = record_to_row(make_record())
        assert list(row) == ROW_COLUMNS

    def test_blobs_are_json_text(self, make_record):
        row = record_to_row(_full_record(make_record))
        for name in BLOB_FIELDS:
            assert isinstance(row[name], str)
        assert json.loads(row["adsAssets"])["keywords"] == ["kw comprar"]

    def test_absent_sub_entities_are_null(self, make_record):
        row = record_to_row(make_record())
        assert row["marketInsights"] is None
        assert row["performance"] is None


# ─────────────────────────────────────────────────────────────────────────────
# Decode
# ─────────────────────────────────────────────────────────────────────────────


class TestDecodeBlob:
    def test_accepts_json_text(self):
        assert decode_blob("r", "f", '{"a": 1}') == {"a": 1}

    def test_accepts_structured(self):
        assert decode_blob("r", "f", {"a": 1}) == {"a": 1}

    def test_null_forms(self):
        assert decode_blob("r", "f", None) is None
        assert decode_blob("r", "f", "") is None
        assert decode_blob("r", "f", "null") is None

    def test_bad_json_raises(self):
        with pytest.raises(MalformedPersistedDataError) as exc_info:
            decode_blob("r9", "adsAssets", "{not json")
        assert exc_info.value.record_id == "r9"
        assert exc_info.value.field == "adsAssets"

    def test_non_object_raises(self):
        with pytest.raises(MalformedPersistedDataError):
            decode_blob("r", "f", "[1, 2]")


class TestRowToRecord:
    def test_round_trip_from_text_blobs(self, make_record):
        original = _full_record(make_record)
        assert row_to_record(record_to_row(original)) == original

    def test_round_trip_from_structured_blobs(self, make_record):
        original = _full_record(make_record)
        assert row_to_record(original.to_dict()) == original

    def test_malformed_field_dropped_only_locally(self, make_record):
        row = record_to_row(_full_record(make_record))
        row["adsAssets"] = "{broken"
        r = row_to_record(row)
        assert r.ads_assets is None
        assert r.market_insights is not None
        assert r.performance.total_spent == 50.0

    def test_missing_financials_recomputed(self, make_record):
        original = make_record(price=197, commission=60, cpc=1.0)
        row = record_to_row(original)
        row["financialAnalysis"] = None
        assert row_to_record(row).financial_analysis == original.financial_analysis

    def test_unknown_enums_fall_back(self, make_record):
        row = record_to_row(make_record())
        row["platform"] = "Shopee"
        row["niche"] = "Astrologia"
        r = row_to_record(row)
        assert r.platform is Platform.OUTRA
        assert r.niche is Niche.OUTRO

    def test_numbers_as_text(self, make_record):
        row = record_to_row(make_record())
        row["actualPrice"] = "97"
        row["createdAt"] = "1700000000000"
        r = row_to_record(row)
        assert r.actual_price == 97.0
        assert r.created_at == 1_700_000_000_000

    def test_missing_id_raises(self):
        with pytest.raises(ValueError):
            row_to_record({"name": "sem id"})


class TestRowsToRecords:
    def test_skips_unidentifiable_rows(self, make_record):
        good = record_to_row(make_record(record_id="ok"))
        out = rows_to_records([good, {"name": "sem id"}, "garbage"])
        assert [r.id for r in out] == ["ok"]
