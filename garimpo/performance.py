"""Actual-performance reconciliation.

Real campaign figures arrive piecemeal (spend today, conversions tomorrow).
:func:`apply_performance_update` is the only way they reach a record: the
existing :class:`ActualPerformance` (or a zeroed default) is shallow-merged
with the partial update, field by field, and ``last_update`` always moves to
the update time.

The estimated figures in ``financial_analysis`` and ``final_score`` are never
touched here; realized ROI is computed on demand from the merged numbers.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from garimpo.financials import realized_roi_percent as _realized_roi
from garimpo.schema import ActualPerformance, AdStatus, PixelStatus, ProductRecord, coerce_enum

logger = logging.getLogger(__name__)

# wire name -> dataclass attribute
_FIELD_NAMES: Dict[str, str] = {
    "totalSpent": "total_spent",
    "actualClicks": "actual_clicks",
    "conversions": "conversions",
    "salesValue": "sales_value",
    "accountName": "account_name",
    "campaignName": "campaign_name",
    "launchDate": "launch_date",
    "adStatus": "ad_status",
    "pixelStatus": "pixel_status",
    "bidStrategy": "bid_strategy",
}
_FLOAT_FIELDS = {"total_spent", "sales_value"}
_INT_FIELDS = {"actual_clicks", "conversions"}


def current_time_ms() -> int:
    return int(time.time() * 1000)


def _normalize_partial(partial: Mapping[str, Any]) -> Dict[str, Any]:
    """Map camelCase/snake_case keys to attributes and coerce values.

    Raises ``ValueError`` on unknown keys and on figures that are missing,
    non-numeric, non-finite or negative.
    """
    attrs = set(_FIELD_NAMES.values())
    out: Dict[str, Any] = {}
    for key, val in partial.items():
        attr = _FIELD_NAMES.get(key, key)
        if attr not in attrs:
            raise ValueError(f"Unknown performance field: {key!r}")
        if attr in _FLOAT_FIELDS or attr in _INT_FIELDS:
            try:
                num = float(val)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{key} must be a number (got {val!r})") from exc
            if not math.isfinite(num) or num < 0:
                raise ValueError(f"{key} must be a finite number >= 0 (got {val})")
            out[attr] = int(num) if attr in _INT_FIELDS else num
        elif attr == "ad_status":
            out[attr] = coerce_enum(AdStatus, val) if val else None
        elif attr == "pixel_status":
            out[attr] = coerce_enum(PixelStatus, val) if val else None
        else:
            out[attr] = None if val is None else str(val)
    return out


def apply_performance_update(
    record: ProductRecord,
    partial: Mapping[str, Any],
    now_ms: Optional[int] = None,
) -> ProductRecord:
    """Return a copy of *record* with *partial* merged into its performance."""
    changes = _normalize_partial(partial)
    base = record.performance or ActualPerformance()
    stamp = now_ms if now_ms is not None else current_time_ms()
    merged = dataclasses.replace(base, **changes, last_update=stamp)
    return dataclasses.replace(record, performance=merged)


def realized_roi_percent(record: ProductRecord) -> float:
    """Realized ROI of *record*; 0 while it is still planned."""
    perf = record.performance
    if perf is None:
        return 0.0
    return _realized_roi(
        perf.conversions,
        perf.total_spent,
        record.financial_analysis.total_commission_cash,
    )


def latest_roi_percent(record: ProductRecord) -> float:
    """Realized ROI for live records, estimated ROI otherwise (display only)."""
    if record.is_live:
        return realized_roi_percent(record)
    return record.financial_analysis.roi_percent


# ─────────────────────────────────────────────────────────────────────────────
# Bulk ingest (CSV exported from the ad platform, one row per record id)
# ─────────────────────────────────────────────────────────────────────────────


def _row_partial(row: Mapping[str, Any]) -> Dict[str, Any]:
    partial: Dict[str, Any] = {}
    for wire, attr in _FIELD_NAMES.items():
        for col in (wire, attr):
            if col not in row:
                continue
            val = row[col]
            if val is None:
                continue
            s = str(val).strip()
            if s in ("", "nan", "NaN", "None"):
                continue
            partial[wire] = val
            break
    return partial


def ingest_performance_frame(
    records: Sequence[ProductRecord],
    df: pd.DataFrame,
    now_ms: Optional[int] = None,
) -> Tuple[List[ProductRecord], int, List[str]]:
    """Apply one partial update per row of *df*, matched by the ``id`` column.

    Blank cells are skipped so they never overwrite known values.

    Returns
    -------
    (records, updated, unmatched_ids)
        The full record list with updates applied, the number of records
        updated and the ids that matched nothing.
    """
    by_id = {r.id: i for i, r in enumerate(records)}
    out = list(records)
    updated = 0
    unmatched: List[str] = []

    for _, row in df.iterrows():
        rid = str(row.get("id", "")).strip()
        if rid not in by_id:
            unmatched.append(rid)
            continue
        partial = _row_partial(row.to_dict())
        if not partial:
            continue
        idx = by_id[rid]
        out[idx] = apply_performance_update(out[idx], partial, now_ms=now_ms)
        updated += 1

    if unmatched:
        logger.warning("Performance rows without a matching record: %s", ", ".join(unmatched))
    return out, updated, unmatched
