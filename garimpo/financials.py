"""Financial viability model for affiliate offers.

All functions are pure: identical inputs always give identical outputs.

The estimate assumes a reference conversion rate of one sale per
``assumed_clicks_per_sale`` paid clicks (30 by default).  It is an explicit
approximation used until real campaign numbers exist; see
:mod:`garimpo.performance` for the realized figures.

Example::

    fa = compute_financials(97, 50, 1.5)
    fa.total_commission_cash   # 48.5
    fa.roi_percent             # 7.77...
    fa.viability_status        # ViabilityStatus.LOSS
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from garimpo.config import FinancialsConfig
from garimpo.schema import FinancialAnalysis, ViabilityStatus

DEFAULT_CLICKS_PER_SALE = 30
PROFITABLE_ROI_THRESHOLD = 50.0
CAUTION_ROI_THRESHOLD = 20.0


@dataclass(frozen=True)
class ViabilityThresholds:
    """ROI cut-offs (percent) for the three-way viability verdict."""

    profitable: float = PROFITABLE_ROI_THRESHOLD
    caution: float = CAUTION_ROI_THRESHOLD

    def __post_init__(self) -> None:
        if self.caution > self.profitable:
            raise ValueError(
                f"caution threshold {self.caution} exceeds profitable threshold {self.profitable}"
            )

    @classmethod
    def from_config(cls, cfg: FinancialsConfig) -> "ViabilityThresholds":
        return cls(
            profitable=cfg.profitable_roi_threshold,
            caution=cfg.caution_roi_threshold,
        )


def classify_viability(
    roi_percent: float,
    thresholds: Optional[ViabilityThresholds] = None,
) -> ViabilityStatus:
    t = thresholds or ViabilityThresholds()
    if roi_percent >= t.profitable:
        return ViabilityStatus.PROFITABLE
    if roi_percent >= t.caution:
        return ViabilityStatus.CAUTION
    return ViabilityStatus.LOSS


def compute_financials(
    list_price: float,
    commission_percent: float,
    cost_per_click: float,
    assumed_clicks_per_sale: int = DEFAULT_CLICKS_PER_SALE,
    thresholds: Optional[ViabilityThresholds] = None,
) -> FinancialAnalysis:
    """Return the estimated :class:`FinancialAnalysis` for one sale.

    Raises
    ------
    ValueError
        On NaN or infinite inputs, negative price/CPC, commission outside
        0..100 or a click rate < 1.
    """
    for label, value in (
        ("list_price", list_price),
        ("commission_percent", commission_percent),
        ("cost_per_click", cost_per_click),
    ):
        if not math.isfinite(value):
            raise ValueError(f"{label} must be a finite number (got {value})")
    if list_price < 0:
        raise ValueError(f"list_price must be >= 0 (got {list_price})")
    if not 0 <= commission_percent <= 100:
        raise ValueError(f"commission_percent must be within 0..100 (got {commission_percent})")
    if cost_per_click < 0:
        raise ValueError(f"cost_per_click must be >= 0 (got {cost_per_click})")
    if assumed_clicks_per_sale < 1:
        raise ValueError("assumed_clicks_per_sale must be >= 1")

    commission_cash = list_price * commission_percent / 100
    total_ads_cost = cost_per_click * assumed_clicks_per_sale
    profit = commission_cash - total_ads_cost
    roi = (profit / total_ads_cost) * 100 if total_ads_cost > 0 else 0.0

    # A zero CPC is priced as 1 so the break-even count stays finite.
    divisor = cost_per_click if cost_per_click > 0 else 1
    break_even = int(math.floor(commission_cash / divisor))

    return FinancialAnalysis(
        profit_per_sale=profit,
        roi_percent=roi,
        break_even_clicks=break_even,
        max_cpc_recommended=commission_cash / assumed_clicks_per_sale,
        viability_status=classify_viability(roi, thresholds),
        total_commission_cash=commission_cash,
        total_ads_cost=total_ads_cost,
    )


def compute_financials_from_config(
    list_price: float,
    commission_percent: float,
    cost_per_click: float,
    cfg: FinancialsConfig,
) -> FinancialAnalysis:
    """Same as :func:`compute_financials` with click rate and thresholds from config."""
    return compute_financials(
        list_price,
        commission_percent,
        cost_per_click,
        assumed_clicks_per_sale=cfg.assumed_clicks_per_sale,
        thresholds=ViabilityThresholds.from_config(cfg),
    )


def realized_roi_percent(conversions: float, total_spent: float, commission_cash: float) -> float:
    """ROI from recorded spend and conversions; 0 while nothing was spent."""
    if total_spent <= 0:
        return 0.0
    return ((conversions * commission_cash - total_spent) / total_spent) * 100
