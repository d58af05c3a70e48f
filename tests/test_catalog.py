"""Tests for garimpo/catalog.py — form validation, controller and views."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
import respx

from garimpo.catalog import (
    ALL_NICHES,
    CatalogController,
    ProductForm,
    ValidationError,
    aggregate,
    filter_records,
)
from garimpo.config import AppConfig
from garimpo.config_remote import RemoteCredentials
from garimpo.enrichment import Enrichment
from garimpo.schema import (
    AdsAssets,
    CompetitionLevel,
    MarketInsights,
    Niche,
    TrendStatus,
    ViabilityStatus,
)
from garimpo.store import StorageStrategy, build_record_store

URL = "https://api.example.com/products"

# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _cfg(tmp: Path) -> AppConfig:
    cfg = AppConfig()
    cfg.storage.local_path = str(tmp / "garimpo.db")
    cfg.remote.max_retries = 0
    return cfg


def _controller(tmp: Path) -> CatalogController:
    cfg = _cfg(tmp)
    return CatalogController(build_record_store(cfg, strategy=StorageStrategy.LOCAL), cfg)


def _form(**overrides) -> ProductForm:
    data = dict(name="Curso X", link="https://x.com/vendas")
    data.update(overrides)
    return ProductForm(**data)


def _enrichment() -> Enrichment:
    return Enrichment(
        sales_page_score=9.0,
        ai_verdict="Página forte.",
        ads_assets=AdsAssets(["curso x comprar"], ["Acesso Hoje"], ["Aulas práticas."]),
        market_insights=MarketInsights(TrendStatus.RISING, CompetitionLevel.LOW),
    )


# ─────────────────────────────────────────────────────────────────────────────
# ProductForm
# ─────────────────────────────────────────────────────────────────────────────


class TestProductForm:
    def test_defaults_valid_once_named(self):
        assert _form().validate() == []

    def test_default_figures(self):
        f = ProductForm()
        assert (f.actual_price, f.actual_comm_percent, f.avg_cpc) == (97.0, 50.0, 1.5)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"name": "  "},
            {"link": ""},
            {"actual_price": 0},
            {"actual_comm_percent": 101},
            {"avg_cpc": -0.5},
            {"max_bid_cpc": -1.0},
            {"actual_price": float("nan")},
            {"actual_price": float("inf")},
            {"actual_comm_percent": float("nan")},
            {"avg_cpc": float("nan")},
            {"min_bid_cpc": float("nan")},
        ],
    )
    def test_invalid(self, overrides):
        assert _form(**overrides).validate()


# ─────────────────────────────────────────────────────────────────────────────
# Create / update / delete
# ─────────────────────────────────────────────────────────────────────────────


class TestCreateRecord:
    @pytest.mark.asyncio
    async def test_manual_defaults(self, tmp_path):
        ctrl = _controller(tmp_path)
        r = await ctrl.create_record(_form())
        assert r.sales_page_score == 7.0
        assert r.ai_verdict == "Manually audited"
        assert r.ads_assets is None
        assert r.final_score == r.financial_analysis.roi_percent
        assert r.financial_analysis.viability_status is ViabilityStatus.LOSS
        assert ctrl.records == [r]

    @pytest.mark.asyncio
    async def test_with_enrichment(self, tmp_path):
        r = await _controller(tmp_path).create_record(_form(), _enrichment())
        assert r.sales_page_score == 9.0
        assert r.ai_verdict == "Página forte."
        assert r.market_insights.trend_status is TrendStatus.RISING

    @pytest.mark.asyncio
    async def test_invalid_form_persists_nothing(self, tmp_path):
        ctrl = _controller(tmp_path)
        with pytest.raises(ValidationError) as exc_info:
            await ctrl.create_record(_form(name="", actual_price=-1))
        assert len(exc_info.value.errors) == 2
        assert ctrl.records == []
        assert await ctrl.store.list() == []

    @pytest.mark.asyncio
    async def test_newest_first(self, tmp_path):
        ctrl = _controller(tmp_path)
        await ctrl.create_record(_form(name="A"))
        await ctrl.create_record(_form(name="B"))
        assert [r.name for r in ctrl.records] == ["B", "A"]
        assert [r.name for r in await ctrl.load()] == ["B", "A"]

    @pytest.mark.asyncio
    async def test_resubmission_keeps_identity_and_performance(self, tmp_path):
        ctrl = _controller(tmp_path)
        first = await ctrl.create_record(_form(), _enrichment())
        await ctrl.update_performance(first.id, {"totalSpent": 30.0})

        again = await ctrl.create_record(_form(avg_cpc=0.5), record_id=first.id)
        assert again.id == first.id
        assert again.created_at == first.created_at
        assert again.performance.total_spent == 30.0
        assert again.ai_verdict == "Página forte."
        assert again.financial_analysis.total_ads_cost == pytest.approx(15.0)
        assert len(ctrl.records) == 1

    @pytest.mark.asyncio
    async def test_persisted_across_sessions(self, tmp_path):
        r = await _controller(tmp_path).create_record(_form())
        ctrl = _controller(tmp_path)
        assert await ctrl.load() == [r]


class TestUpdatePerformance:
    @pytest.mark.asyncio
    async def test_merges_and_persists(self, tmp_path):
        ctrl = _controller(tmp_path)
        r = await ctrl.create_record(_form())
        await ctrl.update_performance(r.id, {"totalSpent": 40.0})
        updated = await ctrl.update_performance(r.id, {"conversions": 1})
        assert updated.is_live
        assert updated.performance.total_spent == 40.0
        assert (await ctrl.store.list())[0].performance.conversions == 1

    @pytest.mark.asyncio
    async def test_unknown_id(self, tmp_path):
        with pytest.raises(KeyError):
            await _controller(tmp_path).update_performance("nope", {"totalSpent": 1.0})

    @pytest.mark.asyncio
    async def test_missing_figure_is_value_error(self, tmp_path):
        ctrl = _controller(tmp_path)
        r = await ctrl.create_record(_form())
        with pytest.raises(ValueError):
            await ctrl.update_performance(r.id, {"totalSpent": None})
        assert ctrl.get(r.id).performance is None


class TestDeleteRecord:
    @pytest.mark.asyncio
    async def test_delete(self, tmp_path):
        ctrl = _controller(tmp_path)
        r = await ctrl.create_record(_form())
        await ctrl.delete_record(r.id)
        assert ctrl.records == []
        assert await ctrl.store.list() == []

    @pytest.mark.asyncio
    async def test_delete_unknown_is_noop(self, tmp_path):
        ctrl = _controller(tmp_path)
        await ctrl.create_record(_form())
        await ctrl.delete_record("nope")
        assert len(ctrl.records) == 1


class TestRemoteFailureNotices:
    @pytest.mark.asyncio
    async def test_save_survives_remote_outage(self, tmp_path):
        cfg = _cfg(tmp_path)
        async with respx.mock() as router:
            router.post(URL).mock(side_effect=httpx.ConnectError("down"))
            store = build_record_store(
                cfg, strategy=StorageStrategy.REMOTE, creds=RemoteCredentials(URL)
            )
            ctrl = CatalogController(store, cfg)
            r = await ctrl.create_record(_form())
            await store.close()
        assert ctrl.records == [r]
        assert store.local.get(r.id) == r
        notices = ctrl.pop_notices()
        assert len(notices) == 1
        assert "saved locally" in notices[0]
        assert ctrl.pop_notices() == []


# ─────────────────────────────────────────────────────────────────────────────
# Filter / aggregate
# ─────────────────────────────────────────────────────────────────────────────


class TestFilter:
    def _records(self, make_record):
        return [
            make_record("Curso de Investimentos", niche=Niche.FINANCAS),
            make_record("Dieta Express", niche=Niche.SAUDE),
            make_record("Investir em Saúde", niche=Niche.SAUDE),
        ]

    def test_wildcard(self, make_record):
        assert len(filter_records(self._records(make_record), "", ALL_NICHES)) == 3

    def test_search_case_insensitive(self, make_record):
        out = filter_records(self._records(make_record), "INVEST", ALL_NICHES)
        assert [r.name for r in out] == ["Curso de Investimentos", "Investir em Saúde"]

    def test_search_and_niche(self, make_record):
        out = filter_records(self._records(make_record), "invest", "Saúde")
        assert [r.name for r in out] == ["Investir em Saúde"]

    def test_unknown_niche_matches_nothing(self, make_record):
        assert filter_records(self._records(make_record), "", "Astrologia") == []

    def test_order_preserved(self, make_record):
        records = self._records(make_record)
        assert filter_records(records) == records


class TestAggregate:
    def test_empty(self):
        stats = aggregate([])
        assert (stats.count, stats.total_potential_commission_cash, stats.average_roi_percent) == (0, 0.0, 0.0)

    def test_totals(self, make_record):
        a = make_record(price=100, commission=50, cpc=1.0)  # 50 cash, ROI 66.67
        b = make_record(price=200, commission=30, cpc=2.0)  # 60 cash, ROI 0
        stats = aggregate([a, b])
        assert stats.count == 2
        assert stats.total_potential_commission_cash == pytest.approx(110.0)
        assert stats.average_roi_percent == pytest.approx((a.final_score + b.final_score) / 2)
