"""Shared fixtures."""

from __future__ import annotations

import itertools

import pytest

from garimpo.financials import compute_financials
from garimpo.schema import Niche, Platform, ProductRecord

_ids = itertools.count(1)


def build_record(
    name: str = "Curso Exemplo",
    *,
    record_id: str | None = None,
    niche: Niche = Niche.FINANCAS,
    price: float = 97.0,
    commission: float = 50.0,
    cpc: float = 1.5,
    created_at: int = 1_700_000_000_000,
    **extra,
) -> ProductRecord:
    fa = compute_financials(price, commission, cpc)
    return ProductRecord(
        id=record_id or f"rec-{next(_ids)}",
        name=name,
        platform=Platform.HOTMART,
        niche=niche,
        link="https://example.com/oferta",
        actual_price=price,
        actual_comm_percent=commission,
        avg_cpc=cpc,
        financial_analysis=fa,
        created_at=created_at,
        final_score=fa.roi_percent,
        **extra,
    )


@pytest.fixture
def make_record():
    return build_record
