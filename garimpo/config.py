"""Load and validate config.yaml."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class FinancialsConfig:
    assumed_clicks_per_sale: int = 30  # reference rate: 1 sale per N clicks
    profitable_roi_threshold: float = 50.0
    caution_roi_threshold: float = 20.0


@dataclass
class CatalogConfig:
    default_sales_page_score: float = 7.0
    manual_verdict: str = "Manually audited"


@dataclass
class EnrichmentConfig:
    """Shape of the AI audit requested for each product."""

    num_keywords: int = 5
    num_titles: int = 5
    num_descriptions: int = 2
    max_title_chars: int = 30
    max_description_chars: int = 90
    currency: str = "BRL"


@dataclass
class StorageConfig:
    """Local SQLite document store (always present, also the offline fallback)."""

    local_path: str = "data/garimpo.db"
    fallback_key: str = "garimpo_fallback"
    pending_key: str = "garimpo_pending"


@dataclass
class RemoteConfig:
    """Remote REST store. Credentials are read from the environment."""

    url_env: str = "GARIMPO_API_URL"
    key_env: str = "GARIMPO_API_KEY"
    timeout_seconds: float = 15.0
    max_retries: int = 2
    backoff_base_seconds: float = 0.5


@dataclass
class ProviderConfig:
    name: str = "anthropic"
    model: str = "claude-sonnet-4-5-20250929"
    temperature: float = 0.4
    max_tokens: int = 2048
    # Start the assistant turn with "{" so the audit answer is a bare JSON object
    json_prefill: bool = True


@dataclass
class BudgetConfig:
    """Hard caps to control live API spending."""

    max_calls_per_run: int = 50  # total generate() calls; 0 = unlimited


@dataclass
class RetryConfig:
    """Exponential-backoff settings for live API calls."""

    max_api_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 60.0


@dataclass
class CacheConfig:
    """Enrichment response cache, stored next to the local catalog."""

    enabled: bool = True
    path: str = "data/enrichment_cache.db"


@dataclass
class AppConfig:
    financials: FinancialsConfig = field(default_factory=FinancialsConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    retry_api: RetryConfig = field(default_factory=RetryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)


def _validate(cfg: AppConfig) -> None:
    fin = cfg.financials
    if fin.assumed_clicks_per_sale < 1:
        raise ValueError("financials.assumed_clicks_per_sale must be >= 1")
    if fin.caution_roi_threshold > fin.profitable_roi_threshold:
        raise ValueError(
            "financials.caution_roi_threshold must not exceed "
            "financials.profitable_roi_threshold"
        )
    if not 0 <= cfg.catalog.default_sales_page_score <= 10:
        raise ValueError("catalog.default_sales_page_score must be within 0..10")


def load_config(path: str | Path = "config.yaml") -> AppConfig:
    """Load config from YAML file, falling back to defaults."""
    p = Path(path)
    raw: dict = {}
    if p.exists():
        with open(p, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    cfg = AppConfig(
        financials=FinancialsConfig(**raw.get("financials", {})),
        catalog=CatalogConfig(**raw.get("catalog", {})),
        enrichment=EnrichmentConfig(**raw.get("enrichment", {})),
        storage=StorageConfig(**raw.get("storage", {})),
        remote=RemoteConfig(**raw.get("remote", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        budget=BudgetConfig(**raw.get("budget", {})),
        retry_api=RetryConfig(**raw.get("retry_api", {})),
        cache=CacheConfig(**raw.get("cache", {})),
    )
    _validate(cfg)
    return cfg
