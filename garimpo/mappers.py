"""Mapping between ProductRecord and the flat persisted row.

Flat row columns::

    id, name, platform, niche, actualPrice, actualCommPercent, avgCPC,
    minBidCPC, maxBidCPC, salesPageScore, link, createdAt,
    financialAnalysis(json), marketInsights(json), adsAssets(json),
    performance(json), aiVerdict, finalScore

Sub-entities travel as JSON text on write.  On read they may arrive either
as JSON text or already decoded; both are accepted.  A sub-entity that does
not decode is dropped for that record only, so one bad row never breaks the
listing.
"""
from __future__ import annotations

import json
import logging
import math
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

from garimpo.config import FinancialsConfig
from garimpo.financials import compute_financials_from_config
from garimpo.schema import (
    ActualPerformance,
    AdsAssets,
    FinancialAnalysis,
    MarketInsights,
    Niche,
    Platform,
    ProductRecord,
    coerce_enum,
)

logger = logging.getLogger(__name__)

BLOB_FIELDS = ("financialAnalysis", "marketInsights", "adsAssets", "performance")

ROW_COLUMNS = [
    "id", "name", "platform", "niche", "actualPrice", "actualCommPercent",
    "avgCPC", "minBidCPC", "maxBidCPC", "salesPageScore", "link", "createdAt",
    "financialAnalysis", "marketInsights", "adsAssets", "performance",
    "aiVerdict", "finalScore",
]

T = TypeVar("T")


class MalformedPersistedDataError(ValueError):
    """A stored sub-entity could not be decoded."""

    def __init__(self, record_id: str, field: str, detail: str):
        super().__init__(f"record {record_id!r}: malformed {field}: {detail}")
        self.record_id = record_id
        self.field = field


def _to_float(v: Any, default: Optional[float] = 0.0) -> Optional[float]:
    if v is None or v == "":
        return default
    try:
        f = float(v)
    except (TypeError, ValueError):
        return default
    return default if math.isnan(f) else f


def _to_int(v: Any, default: int = 0) -> int:
    f = _to_float(v, None)
    return default if f is None else int(f)


# ─────────────────────────────────────────────────────────────────────────────
# Encode
# ─────────────────────────────────────────────────────────────────────────────


def encode_blob(value: Optional[Mapping[str, Any]]) -> Optional[str]:
    return None if value is None else json.dumps(value, ensure_ascii=False)


def record_to_row(record: ProductRecord) -> Dict[str, Any]:
    """Flat row with every sub-entity serialized as JSON text."""
    data = record.to_dict()
    for name in BLOB_FIELDS:
        data[name] = encode_blob(data[name])
    return {col: data.get(col) for col in ROW_COLUMNS}


# ─────────────────────────────────────────────────────────────────────────────
# Decode
# ─────────────────────────────────────────────────────────────────────────────


def decode_blob(record_id: str, field: str, value: Any) -> Optional[Dict[str, Any]]:
    """Return the structured form of a sub-entity, or None when absent.

    Raises
    ------
    MalformedPersistedDataError
        When *value* is neither a mapping nor JSON text for an object.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise MalformedPersistedDataError(record_id, field, str(exc)) from exc
    if value is None:
        return None  # JSON "null" column
    if not isinstance(value, Mapping):
        raise MalformedPersistedDataError(
            record_id, field, f"expected an object, got {type(value).__name__}"
        )
    return dict(value)


def _decode_sub(
    record_id: str,
    field: str,
    value: Any,
    build: Callable[[Mapping[str, Any]], T],
) -> Optional[T]:
    try:
        data = decode_blob(record_id, field, value)
        if data is None:
            return None
        try:
            return build(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedPersistedDataError(record_id, field, str(exc)) from exc
    except MalformedPersistedDataError as exc:
        logger.warning("Dropping field: %s", exc)
        return None


def row_to_record(
    row: Mapping[str, Any],
    financials_cfg: Optional[FinancialsConfig] = None,
) -> ProductRecord:
    """Build a ProductRecord from a flat (or nested) row.

    A missing or malformed ``financialAnalysis`` is recomputed from the pricing
    inputs, which keeps it a pure function of them.

    Raises ``ValueError`` when the row has no id.
    """
    record_id = str(row.get("id") or "").strip()
    if not record_id:
        raise ValueError("row has no id")

    price = _to_float(row.get("actualPrice"))
    commission = _to_float(row.get("actualCommPercent"))
    cpc = _to_float(row.get("avgCPC"))

    financial = _decode_sub(
        record_id, "financialAnalysis", row.get("financialAnalysis"), FinancialAnalysis.from_dict
    )
    if financial is None:
        financial = compute_financials_from_config(
            price, commission, cpc, financials_cfg or FinancialsConfig()
        )

    try:
        platform = coerce_enum(Platform, row.get("platform"))
    except ValueError:
        platform = Platform.OUTRA
    try:
        niche = coerce_enum(Niche, row.get("niche"))
    except ValueError:
        niche = Niche.OUTRO

    verdict = row.get("aiVerdict")
    return ProductRecord(
        id=record_id,
        name=str(row.get("name") or ""),
        platform=platform,
        niche=niche,
        link=str(row.get("link") or ""),
        actual_price=price,
        actual_comm_percent=commission,
        avg_cpc=cpc,
        financial_analysis=financial,
        created_at=_to_int(row.get("createdAt")),
        final_score=_to_float(row.get("finalScore"), financial.roi_percent),
        sales_page_score=_to_float(row.get("salesPageScore"), 7.0),
        ai_verdict=None if verdict is None else str(verdict),
        min_bid_cpc=_to_float(row.get("minBidCPC"), None),
        max_bid_cpc=_to_float(row.get("maxBidCPC"), None),
        market_insights=_decode_sub(
            record_id, "marketInsights", row.get("marketInsights"), MarketInsights.from_dict
        ),
        ads_assets=_decode_sub(record_id, "adsAssets", row.get("adsAssets"), AdsAssets.from_dict),
        performance=_decode_sub(
            record_id, "performance", row.get("performance"), ActualPerformance.from_dict
        ),
    )


def rows_to_records(
    rows: Iterable[Mapping[str, Any]],
    financials_cfg: Optional[FinancialsConfig] = None,
) -> List[ProductRecord]:
    """Decode many rows, skipping (and logging) rows that cannot be identified."""
    out: List[ProductRecord] = []
    for row in rows:
        if not isinstance(row, Mapping):
            logger.warning("Skipping non-object row: %r", row)
            continue
        try:
            out.append(row_to_record(row, financials_cfg))
        except ValueError as exc:
            logger.warning("Skipping row: %s", exc)
    return out


def records_to_documents(records: Iterable[ProductRecord]) -> List[Dict[str, Any]]:
    """Nested (structured) form used by the local document store."""
    return [r.to_dict() for r in records]
