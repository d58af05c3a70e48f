"""AI enrichment gateway — market insights and ad copy for one product.

The model's answer is only *asserted* to follow the requested JSON shape, so
:func:`parse_enrichment` validates it strictly.  Anything off (bad JSON, a
score outside 0..10, an unknown trend label, a non-string keyword) drops the
whole payload: a partially valid enrichment is never returned.

:meth:`EnrichmentGateway.enrich` never raises.  Missing credentials, provider
failures and unparseable answers all come back as ``None`` and the caller
continues with manual defaults (:data:`DEFAULT_SALES_PAGE_SCORE`,
:data:`MANUAL_VERDICT`).
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from jinja2 import Template

from garimpo.config import AppConfig
from garimpo.kvstore import KeyValueStore, enrichment_fingerprint, make_cache_key
from garimpo.providers.base import BaseProvider
from garimpo.schema import AdsAssets, MarketInsights

logger = logging.getLogger(__name__)

_PROMPT_PATH = Path(__file__).parent / "prompts" / "enrichment_prompt.txt"

DEFAULT_SALES_PAGE_SCORE = 7.0
MANUAL_VERDICT = "Manually audited"

_SYSTEM = "You are an expert affiliate-marketing auditor. Return ONLY valid JSON."


class EnrichmentUnavailableError(RuntimeError):
    """The AI answer was missing or did not match the expected shape."""


@dataclass
class Enrichment:
    sales_page_score: float
    ai_verdict: str
    ads_assets: AdsAssets
    market_insights: Optional[MarketInsights] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "salesPageScore": self.sales_page_score,
            "aiVerdict": self.ai_verdict,
            "adsAssets": self.ads_assets.to_dict(),
            "marketInsights": self.market_insights.to_dict() if self.market_insights else None,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Template and JSON parsing
# ─────────────────────────────────────────────────────────────────────────────


def _load_template() -> Template:
    return Template(_PROMPT_PATH.read_text(encoding="utf-8"))


def _strip_fences(raw: str) -> str:
    text = raw.strip()
    text = re.sub(r"^```(?:json)?\s*", "", text, flags=re.MULTILINE)
    text = re.sub(r"\s*```\s*$", "", text, flags=re.MULTILINE)
    return text.strip()


def _string_list(assets: Mapping[str, Any], key: str) -> List[str]:
    if key not in assets:
        raise EnrichmentUnavailableError(f"adsAssets.{key} missing")
    items = assets[key]
    if not isinstance(items, list) or not all(isinstance(s, str) for s in items):
        raise EnrichmentUnavailableError(f"adsAssets.{key} must be a list of strings")
    return [s.strip() for s in items if s.strip()]


def _parse_insights(data: Mapping[str, Any]) -> Optional[MarketInsights]:
    raw = data.get("marketInsights")
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise EnrichmentUnavailableError("marketInsights must be an object")
    merged = dict(raw)
    if merged.get("estimatedCPC") is None and data.get("suggestedCPC") is not None:
        merged["estimatedCPC"] = data["suggestedCPC"]
    if merged.get("searchVolume") is None and data.get("suggestedVolume") is not None:
        merged["searchVolume"] = data["suggestedVolume"]
    try:
        return MarketInsights.from_dict(merged)
    except (TypeError, ValueError) as exc:
        raise EnrichmentUnavailableError(f"marketInsights invalid: {exc}") from exc


def parse_enrichment(raw: str) -> Enrichment:
    """Parse and validate a model answer.

    Raises
    ------
    EnrichmentUnavailableError
        On any deviation from the expected shape.
    """
    if not raw or not raw.strip():
        raise EnrichmentUnavailableError("empty response")
    try:
        data = json.loads(_strip_fences(raw))
    except json.JSONDecodeError as exc:
        raise EnrichmentUnavailableError(f"response is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise EnrichmentUnavailableError("response is not a JSON object")

    score = data.get("salesPageScore")
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 10:
        raise EnrichmentUnavailableError(f"salesPageScore must be a number in 0..10 (got {score!r})")

    verdict = data.get("aiVerdict")
    if not isinstance(verdict, str) or not verdict.strip():
        raise EnrichmentUnavailableError("aiVerdict must be a non-empty string")

    assets = data.get("adsAssets")
    if not isinstance(assets, Mapping):
        raise EnrichmentUnavailableError("adsAssets must be an object")

    return Enrichment(
        sales_page_score=float(score),
        ai_verdict=verdict.strip(),
        ads_assets=AdsAssets(
            keywords=_string_list(assets, "keywords"),
            titles=_string_list(assets, "titles"),
            descriptions=_string_list(assets, "descriptions"),
        ),
        market_insights=_parse_insights(data),
    )


def build_prompt(product_name: str, sales_url: str, niche: str, cfg: AppConfig) -> str:
    ecfg = cfg.enrichment
    return _load_template().render(
        product_name=product_name,
        sales_url=sales_url,
        niche=niche,
        num_keywords=ecfg.num_keywords,
        num_titles=ecfg.num_titles,
        num_descriptions=ecfg.num_descriptions,
        max_title_chars=ecfg.max_title_chars,
        max_description_chars=ecfg.max_description_chars,
        currency=ecfg.currency,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Gateway
# ─────────────────────────────────────────────────────────────────────────────


class EnrichmentGateway:
    """Optional AI audit; every failure degrades to ``None``."""

    def __init__(
        self,
        provider: Optional[BaseProvider],
        cfg: Optional[AppConfig] = None,
        cache: Optional[KeyValueStore] = None,
    ) -> None:
        self.provider = provider
        self.cfg = cfg or AppConfig()
        self.cache = cache

    @classmethod
    def from_config(cls, provider: Optional[BaseProvider], cfg: AppConfig) -> "EnrichmentGateway":
        cache = None
        if cfg.cache.enabled:
            try:
                cache = KeyValueStore(cfg.cache.path, table="enrichment_cache")
            except (sqlite3.Error, OSError) as exc:
                logger.warning("Enrichment cache disabled: %s", exc)
        return cls(provider, cfg, cache)

    @property
    def available(self) -> bool:
        return self.provider is not None

    async def enrich(self, product_name: str, sales_url: str, niche: str) -> Optional[Enrichment]:
        if self.provider is None:
            logger.info("Enrichment skipped for %r: no AI provider configured", product_name)
            return None

        key = None
        if self.cache is not None:
            fingerprint = enrichment_fingerprint(self.cfg, type(self.provider).__name__)
            key = make_cache_key(product_name, sales_url, niche, fingerprint)
            cached = self._cache_get(key)
            if cached:
                try:
                    return parse_enrichment(cached)
                except EnrichmentUnavailableError:
                    logger.warning("Ignoring unreadable cached enrichment for %r", product_name)

        try:
            prompt = build_prompt(product_name, sales_url, niche, self.cfg)
            raw = await asyncio.to_thread(self.provider.generate, prompt, _SYSTEM)
            result = parse_enrichment(raw)
        except EnrichmentUnavailableError as exc:
            logger.warning("Enrichment for %r discarded: %s", product_name, exc)
            return None
        except Exception as exc:  # template/provider/SDK/network errors end here
            logger.warning("Enrichment for %r failed: %s", product_name, exc)
            return None

        if key is not None:
            self._cache_set(key, json.dumps(result.to_dict(), ensure_ascii=False))
        return result

    def stats(self) -> Dict[str, Any]:
        """Provider and cache counters for the audit summary."""
        return {
            "provider_stats": self.provider.stats() if self.provider is not None else {},
            "cache_stats": self.cache.stats() if self.cache is not None else {},
        }

    # ── Cache access ──────────────────────────────────────────────────────────

    def _cache_get(self, key: str) -> Optional[str]:
        try:
            return self.cache.get(key)
        except sqlite3.Error as exc:
            logger.warning("Enrichment cache unreadable, treating as a miss: %s", exc)
            return None

    def _cache_set(self, key: str, value: str) -> None:
        try:
            self.cache.set(key, value)
        except sqlite3.Error as exc:
            logger.warning("Enrichment cache unwritable, answer not cached: %s", exc)
