"""Catalog controller — builds, persists, filters and summarizes records.

The controller owns the in-memory collection for one session.  Remote
failures never abort an operation: the store falls back to local storage and
the warning is appended to :attr:`CatalogController.notices` for the UI.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from garimpo.config import AppConfig
from garimpo.enrichment import Enrichment
from garimpo.financials import compute_financials_from_config
from garimpo.performance import apply_performance_update, current_time_ms
from garimpo.schema import Niche, Platform, ProductRecord, coerce_enum
from garimpo.store import RecordStore, StoreResult

logger = logging.getLogger(__name__)

ALL_NICHES = "Todos"


class ValidationError(ValueError):
    """Form input refused; nothing was persisted."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


@dataclass
class ProductForm:
    """Registration form / calculator inputs."""

    name: str = ""
    link: str = ""
    platform: Platform = Platform.HOTMART
    niche: Niche = Niche.FINANCAS
    actual_price: float = 97.0
    actual_comm_percent: float = 50.0
    avg_cpc: float = 1.5
    min_bid_cpc: Optional[float] = None
    max_bid_cpc: Optional[float] = None

    def validate(self) -> List[str]:
        """Return a list of problems (empty = OK)."""
        errors: List[str] = []
        if not self.name or not self.name.strip():
            errors.append("Product name is required")
        if not self.link or not self.link.strip():
            errors.append("Sales page link is required")
        if not math.isfinite(self.actual_price) or self.actual_price <= 0:
            errors.append("Price must be greater than zero")
        if not math.isfinite(self.actual_comm_percent) or not 0 <= self.actual_comm_percent <= 100:
            errors.append("Commission must be between 0 and 100%")
        if not math.isfinite(self.avg_cpc) or self.avg_cpc < 0:
            errors.append("Average CPC must be a non-negative number")
        for label, bid in (("Minimum bid", self.min_bid_cpc), ("Maximum bid", self.max_bid_cpc)):
            if bid is not None and (not math.isfinite(bid) or bid < 0):
                errors.append(f"{label} must be a non-negative number")
        return errors


@dataclass
class CatalogStats:
    count: int
    total_potential_commission_cash: float
    average_roi_percent: float


def filter_records(
    records: Iterable[ProductRecord],
    search_text: str = "",
    niche_filter: str = ALL_NICHES,
) -> List[ProductRecord]:
    """Case-insensitive name search AND exact niche match (or ``ALL_NICHES``)."""
    needle = (search_text or "").strip().lower()
    wildcard = not niche_filter or niche_filter == ALL_NICHES
    niche = None
    if not wildcard:
        try:
            niche = coerce_enum(Niche, niche_filter)
        except ValueError:
            return []  # unknown niche matches nothing
    return [
        r
        for r in records
        if needle in (r.name or "").lower() and (wildcard or r.niche is niche)
    ]


def aggregate(records: Sequence[ProductRecord]) -> CatalogStats:
    """Totals over an (already filtered) collection; zeros when empty."""
    if not records:
        return CatalogStats(0, 0.0, 0.0)
    total = sum(r.financial_analysis.total_commission_cash for r in records)
    avg_roi = sum(r.financial_analysis.roi_percent for r in records) / len(records)
    return CatalogStats(len(records), total, avg_roi)


class CatalogController:
    def __init__(self, store: RecordStore, cfg: Optional[AppConfig] = None) -> None:
        self.store = store
        self.cfg = cfg or AppConfig()
        self.records: List[ProductRecord] = []
        self.notices: List[str] = []

    # ── Loading ───────────────────────────────────────────────────────────────

    async def load(self) -> List[ProductRecord]:
        """Fetch the full collection (session start)."""
        self.records = await self.store.list()
        if self.store.last_error is not None:
            self._notice(str(self.store.last_error))
        return self.records

    def get(self, record_id: str) -> Optional[ProductRecord]:
        for r in self.records:
            if r.id == record_id:
                return r
        return None

    # ── Create / update ───────────────────────────────────────────────────────

    def build_record(
        self,
        form: ProductForm,
        enrichment: Optional[Enrichment] = None,
        record_id: Optional[str] = None,
        created_at: Optional[int] = None,
    ) -> ProductRecord:
        """Assemble a record from validated input; nothing is persisted.

        Raises ``ValidationError``.
        """
        errors = form.validate()
        if errors:
            raise ValidationError(errors)

        financial = compute_financials_from_config(
            form.actual_price, form.actual_comm_percent, form.avg_cpc, self.cfg.financials
        )
        record = ProductRecord(
            id=record_id or str(uuid.uuid4()),
            name=form.name.strip(),
            platform=form.platform,
            niche=form.niche,
            link=form.link.strip(),
            actual_price=float(form.actual_price),
            actual_comm_percent=float(form.actual_comm_percent),
            avg_cpc=float(form.avg_cpc),
            min_bid_cpc=form.min_bid_cpc,
            max_bid_cpc=form.max_bid_cpc,
            financial_analysis=financial,
            created_at=created_at if created_at is not None else current_time_ms(),
            final_score=financial.roi_percent,
            sales_page_score=self.cfg.catalog.default_sales_page_score,
            ai_verdict=self.cfg.catalog.manual_verdict,
        )
        if enrichment is not None:
            record.sales_page_score = enrichment.sales_page_score
            record.ai_verdict = enrichment.ai_verdict
            record.ads_assets = enrichment.ads_assets
            record.market_insights = enrichment.market_insights
        return record

    async def create_record(
        self,
        form: ProductForm,
        enrichment: Optional[Enrichment] = None,
        record_id: Optional[str] = None,
    ) -> ProductRecord:
        """Validate, build and persist a record (upsert when *record_id* exists).

        A re-submission keeps the original id, creation time and recorded
        performance.
        """
        existing = self.get(record_id) if record_id else None
        record = self.build_record(
            form,
            enrichment,
            record_id=record_id,
            created_at=existing.created_at if existing else None,
        )
        if existing is not None:
            record.performance = existing.performance
            if enrichment is None:
                record.sales_page_score = existing.sales_page_score
                record.ai_verdict = existing.ai_verdict
                record.ads_assets = existing.ads_assets
                record.market_insights = existing.market_insights

        self._check(await self.store.upsert(record))
        self._put(record)
        logger.info("Saved %s (%s, ROI %.1f%%)", record.name, record.id, record.final_score)
        return record

    async def update_performance(self, record_id: str, partial: Mapping[str, Any]) -> ProductRecord:
        """Merge real campaign figures into a record and persist it.

        Raises ``KeyError`` for an unknown id and ``ValueError`` for bad fields.
        """
        record = self.get(record_id)
        if record is None:
            raise KeyError(record_id)
        updated = apply_performance_update(record, partial)
        self._check(await self.store.upsert(updated))
        self._put(updated)
        return updated

    async def save_records(self, records: Iterable[ProductRecord]) -> int:
        """Persist several already-built records (bulk performance ingest)."""
        n = 0
        for record in records:
            self._check(await self.store.upsert(record))
            self._put(record)
            n += 1
        return n

    # ── Delete ────────────────────────────────────────────────────────────────

    async def delete_record(self, record_id: str) -> None:
        """Delete unconditionally; confirmation is the caller's job."""
        self._check(await self.store.delete(record_id))
        self.records = [r for r in self.records if r.id != record_id]

    # ── Views ─────────────────────────────────────────────────────────────────

    def filtered(self, search_text: str = "", niche_filter: str = ALL_NICHES) -> List[ProductRecord]:
        return filter_records(self.records, search_text, niche_filter)

    def stats(self, search_text: str = "", niche_filter: str = ALL_NICHES) -> CatalogStats:
        return aggregate(self.filtered(search_text, niche_filter))

    def pop_notices(self) -> List[str]:
        out, self.notices = self.notices, []
        return out

    # ── Private helpers ───────────────────────────────────────────────────────

    def _put(self, record: ProductRecord) -> None:
        for i, r in enumerate(self.records):
            if r.id == record.id:
                self.records[i] = record
                return
        self.records.insert(0, record)

    def _check(self, result: StoreResult) -> None:
        if not result.ok:
            self._notice(f"{result.error} (saved locally)")

    def _notice(self, message: str) -> None:
        self.notices.append(message)
