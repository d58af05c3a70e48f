"""Internal schema for catalog records and their sub-entities.

``to_dict`` produces the camelCase wire shape shared by the local document,
the remote REST store and the exports.  ``from_dict`` is strict about types
and raises ``ValueError`` / ``TypeError`` on bad payloads; tolerant decoding of
persisted rows lives in :mod:`garimpo.mappers`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar


class Platform(str, Enum):
    HOTMART = "Hotmart"
    KIWIFY = "Kiwify"
    EDUZZ = "Eduzz"
    MONETIZZE = "Monetizze"
    CLICKBANK = "ClickBank"
    AMAZON = "Amazon"
    OUTRA = "Outra"


class Niche(str, Enum):
    FINANCAS = "Finanças"
    SAUDE = "Saúde"
    RELACIONAMENTO = "Relacionamento"
    HOBBIES = "Hobbies"
    NEGOCIOS = "Negócios Online"
    DESENVOLVIMENTO = "Desenvolvimento Pessoal"
    OUTRO = "Outro"


class ViabilityStatus(str, Enum):
    PROFITABLE = "profitable"
    CAUTION = "caution"
    LOSS = "loss"


class TrendStatus(str, Enum):
    RISING = "rising"
    STABLE = "stable"
    DECLINING = "declining"


class CompetitionLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AdStatus(str, Enum):
    ACTIVE = "Ativo"
    PAUSED = "Pausado"
    REJECTED = "Reprovado"


class PixelStatus(str, Enum):
    OK = "Ok"
    ERROR = "Erro"
    MISSING = "Sem Pixel"


# Labels used by older records and by the Portuguese prompt responses.
_ALIASES: Dict[str, str] = {
    "lucrativo": "profitable",
    "alerta": "caution",
    "prejuízo": "loss",
    "prejuizo": "loss",
    "crescente": "rising",
    "estável": "stable",
    "estavel": "stable",
    "queda": "declining",
    "baixa": "low",
    "média": "medium",
    "media": "medium",
    "alta": "high",
}

E = TypeVar("E", bound=Enum)


def coerce_enum(enum_cls: Type[E], value: Any) -> E:
    """Return the *enum_cls* member matching *value* (by value, name or alias).

    Raises ``ValueError`` when nothing matches.
    """
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        raise ValueError(f"{enum_cls.__name__}: expected a string, got {value!r}")
    s = value.strip()
    for member in enum_cls:
        if s == member.value or s.upper() == member.name:
            return member
    alias = _ALIASES.get(s.lower())
    if alias is not None:
        for member in enum_cls:
            if member.value == alias:
                return member
    for member in enum_cls:
        if s.lower() == str(member.value).lower():
            return member
    raise ValueError(f"{enum_cls.__name__}: unknown value {value!r}")


def _number(data: Mapping[str, Any], key: str, default: Optional[float] = None) -> float:
    val = data.get(key, default)
    if val is None or isinstance(val, bool) or not isinstance(val, (int, float)):
        raise TypeError(f"{key}: expected a number, got {val!r}")
    return float(val)


def _str_list(data: Mapping[str, Any], key: str) -> List[str]:
    items = data.get(key, [])
    if not isinstance(items, list) or not all(isinstance(s, str) for s in items):
        raise TypeError(f"{key}: expected a list of strings")
    return list(items)


@dataclass
class FinancialAnalysis:
    profit_per_sale: float
    roi_percent: float
    break_even_clicks: int
    max_cpc_recommended: float
    viability_status: ViabilityStatus
    total_commission_cash: float
    total_ads_cost: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profitPerSale": self.profit_per_sale,
            "roiPercent": self.roi_percent,
            "breakEvenClicks": self.break_even_clicks,
            "maxCpcRecommended": self.max_cpc_recommended,
            "viabilityStatus": self.viability_status.value,
            "totalCommissionCash": self.total_commission_cash,
            "totalAdsCost": self.total_ads_cost,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FinancialAnalysis":
        return cls(
            profit_per_sale=_number(data, "profitPerSale"),
            roi_percent=_number(data, "roiPercent"),
            break_even_clicks=int(_number(data, "breakEvenClicks")),
            max_cpc_recommended=_number(data, "maxCpcRecommended"),
            viability_status=coerce_enum(ViabilityStatus, data.get("viabilityStatus")),
            total_commission_cash=_number(data, "totalCommissionCash"),
            total_ads_cost=_number(data, "totalAdsCost"),
        )


@dataclass
class MarketInsights:
    trend_status: TrendStatus
    competition_level: CompetitionLevel
    search_volume: Optional[str] = None
    estimated_cpc: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "searchVolume": self.search_volume,
            "trendStatus": self.trend_status.value,
            "estimatedCPC": self.estimated_cpc,
            "competitionLevel": self.competition_level.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MarketInsights":
        volume = data.get("searchVolume")
        if volume is not None and not isinstance(volume, (str, int, float)):
            raise TypeError("searchVolume: expected a string")
        cpc = data.get("estimatedCPC")
        if cpc is not None:
            cpc = _number(data, "estimatedCPC")
            if cpc < 0:
                raise ValueError("estimatedCPC must be >= 0")
        return cls(
            trend_status=coerce_enum(TrendStatus, data.get("trendStatus")),
            competition_level=coerce_enum(CompetitionLevel, data.get("competitionLevel")),
            search_volume=None if volume is None else str(volume),
            estimated_cpc=cpc,
        )


@dataclass
class AdsAssets:
    keywords: List[str] = field(default_factory=list)
    titles: List[str] = field(default_factory=list)
    descriptions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keywords": list(self.keywords),
            "titles": list(self.titles),
            "descriptions": list(self.descriptions),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AdsAssets":
        return cls(
            keywords=_str_list(data, "keywords"),
            titles=_str_list(data, "titles"),
            descriptions=_str_list(data, "descriptions"),
        )


@dataclass
class ActualPerformance:
    total_spent: float = 0.0
    actual_clicks: int = 0
    conversions: int = 0
    sales_value: float = 0.0
    last_update: int = 0  # epoch milliseconds

    account_name: Optional[str] = None
    campaign_name: Optional[str] = None
    launch_date: Optional[str] = None
    ad_status: Optional[AdStatus] = None
    pixel_status: Optional[PixelStatus] = None
    bid_strategy: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "totalSpent": self.total_spent,
            "actualClicks": self.actual_clicks,
            "conversions": self.conversions,
            "salesValue": self.sales_value,
            "lastUpdate": self.last_update,
        }
        optional = {
            "accountName": self.account_name,
            "campaignName": self.campaign_name,
            "launchDate": self.launch_date,
            "adStatus": self.ad_status.value if self.ad_status else None,
            "pixelStatus": self.pixel_status.value if self.pixel_status else None,
            "bidStrategy": self.bid_strategy,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ActualPerformance":
        ad_status = data.get("adStatus")
        pixel_status = data.get("pixelStatus")
        return cls(
            total_spent=_number(data, "totalSpent", 0.0),
            actual_clicks=int(_number(data, "actualClicks", 0)),
            conversions=int(_number(data, "conversions", 0)),
            sales_value=_number(data, "salesValue", 0.0),
            last_update=int(_number(data, "lastUpdate", 0)),
            account_name=data.get("accountName"),
            campaign_name=data.get("campaignName"),
            launch_date=data.get("launchDate"),
            ad_status=coerce_enum(AdStatus, ad_status) if ad_status else None,
            pixel_status=coerce_enum(PixelStatus, pixel_status) if pixel_status else None,
            bid_strategy=data.get("bidStrategy"),
        )


@dataclass
class ProductRecord:
    id: str
    name: str
    platform: Platform
    niche: Niche
    link: str

    actual_price: float
    actual_comm_percent: float
    avg_cpc: float
    financial_analysis: FinancialAnalysis

    created_at: int  # epoch milliseconds
    final_score: float

    sales_page_score: float = 7.0
    ai_verdict: Optional[str] = None
    min_bid_cpc: Optional[float] = None
    max_bid_cpc: Optional[float] = None

    market_insights: Optional[MarketInsights] = None
    ads_assets: Optional[AdsAssets] = None
    performance: Optional[ActualPerformance] = None

    @property
    def is_live(self) -> bool:
        """True once real ad spend has been recorded."""
        return self.performance is not None and self.performance.total_spent > 0

    @property
    def lifecycle_status(self) -> str:
        return "live" if self.is_live else "planned"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "platform": self.platform.value,
            "niche": self.niche.value,
            "actualPrice": self.actual_price,
            "actualCommPercent": self.actual_comm_percent,
            "avgCPC": self.avg_cpc,
            "minBidCPC": self.min_bid_cpc,
            "maxBidCPC": self.max_bid_cpc,
            "salesPageScore": self.sales_page_score,
            "link": self.link,
            "createdAt": self.created_at,
            "financialAnalysis": self.financial_analysis.to_dict(),
            "marketInsights": self.market_insights.to_dict() if self.market_insights else None,
            "adsAssets": self.ads_assets.to_dict() if self.ads_assets else None,
            "performance": self.performance.to_dict() if self.performance else None,
            "aiVerdict": self.ai_verdict,
            "finalScore": self.final_score,
        }
