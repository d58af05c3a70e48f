"""CSV / Excel export of the catalog and performance CSV reading."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Dict, Iterable, List

import pandas as pd

from garimpo.performance import latest_roi_percent, realized_roi_percent
from garimpo.schema import ProductRecord

EXPORT_COLUMNS = [
    "id", "name", "platform", "niche", "link", "actualPrice", "actualCommPercent",
    "avgCPC", "minBidCPC", "maxBidCPC", "commissionCash", "adsCostPerSale",
    "profitPerSale", "estimatedRoiPercent", "breakEvenClicks", "maxCpcRecommended",
    "viabilityStatus", "salesPageScore", "trendStatus", "competitionLevel",
    "searchVolume", "estimatedCPC", "keywords", "status", "totalSpent",
    "actualClicks", "conversions", "salesValue", "realizedRoiPercent",
    "latestRoiPercent", "finalScore", "aiVerdict", "createdAt",
]

SHEET_NAME = "Produtos"


class InputSchemaError(ValueError):
    """Raised when the performance CSV is missing required columns."""


def _export_row(r: ProductRecord) -> Dict:
    fa = r.financial_analysis
    mi = r.market_insights
    perf = r.performance
    return {
        "id": r.id,
        "name": r.name,
        "platform": r.platform.value,
        "niche": r.niche.value,
        "link": r.link,
        "actualPrice": r.actual_price,
        "actualCommPercent": r.actual_comm_percent,
        "avgCPC": r.avg_cpc,
        "minBidCPC": r.min_bid_cpc,
        "maxBidCPC": r.max_bid_cpc,
        "commissionCash": round(fa.total_commission_cash, 2),
        "adsCostPerSale": round(fa.total_ads_cost, 2),
        "profitPerSale": round(fa.profit_per_sale, 2),
        "estimatedRoiPercent": round(fa.roi_percent, 2),
        "breakEvenClicks": fa.break_even_clicks,
        "maxCpcRecommended": round(fa.max_cpc_recommended, 2),
        "viabilityStatus": fa.viability_status.value,
        "salesPageScore": r.sales_page_score,
        "trendStatus": mi.trend_status.value if mi else "",
        "competitionLevel": mi.competition_level.value if mi else "",
        "searchVolume": (mi.search_volume or "") if mi else "",
        "estimatedCPC": mi.estimated_cpc if mi else None,
        "keywords": ", ".join(r.ads_assets.keywords) if r.ads_assets else "",
        "status": r.lifecycle_status,
        "totalSpent": perf.total_spent if perf else 0.0,
        "actualClicks": perf.actual_clicks if perf else 0,
        "conversions": perf.conversions if perf else 0,
        "salesValue": perf.sales_value if perf else 0.0,
        "realizedRoiPercent": round(realized_roi_percent(r), 2),
        "latestRoiPercent": round(latest_roi_percent(r), 2),
        "finalScore": round(r.final_score, 2),
        "aiVerdict": r.ai_verdict or "",
        "createdAt": pd.to_datetime(r.created_at, unit="ms", utc=True).isoformat(),
    }


def records_to_dataframe(records: Iterable[ProductRecord]) -> pd.DataFrame:
    rows: List[Dict] = [_export_row(r) for r in records]
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def write_catalog_csv(records: Iterable[ProductRecord], path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    records_to_dataframe(records).to_csv(p, index=False, encoding="utf-8")
    return p


def write_catalog_xlsx(records: Iterable[ProductRecord], path: str | Path) -> Path:
    """Write the spreadsheet export (one sheet, ``Produtos``)."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    records_to_dataframe(records).to_excel(p, sheet_name=SHEET_NAME, index=False)
    return p


def catalog_csv_bytes(records: Iterable[ProductRecord]) -> bytes:
    return records_to_dataframe(records).to_csv(index=False).encode("utf-8")


def catalog_xlsx_bytes(records: Iterable[ProductRecord]) -> bytes:
    buf = io.BytesIO()
    records_to_dataframe(records).to_excel(buf, sheet_name=SHEET_NAME, index=False)
    return buf.getvalue()


def read_performance_csv(path: str | Path) -> pd.DataFrame:
    """Read a performance CSV (one row per record ``id``) for bulk ingest."""
    df = pd.read_csv(path, dtype={"id": str})
    if "id" not in df.columns:
        raise InputSchemaError(
            "Performance CSV is missing the 'id' column. Export the catalog first "
            "and keep its id column next to totalSpent / actualClicks / conversions / salesValue."
        )
    return df
