"""Mock provider for dry-run mode — no API calls, strict JSON responses."""

from __future__ import annotations

import json
import random
import re
from typing import List

from garimpo.providers.base import BaseProvider

_KEYWORD_TEMPLATES = [
    "{name} comprar",
    "{name} preço",
    "{name} site oficial",
    "{name} desconto",
    "{name} funciona",
    "{name} vale a pena",
    "{name} onde comprar",
]

_TITLE_POOL = [
    "Acesso Imediato Hoje",
    "Garanta Sua Vaga Agora",
    "Oferta Oficial Liberada",
    "Comece Ainda Hoje",
    "Método Completo Online",
    "Bônus Exclusivos Hoje",
    "Condição Especial Ativa",
]

_DESC_POOL = [
    "Conteúdo direto ao ponto com suporte e bônus exclusivos. Acesse o site oficial.",
    "Aprenda no seu ritmo com aulas práticas e garantia de 7 dias. Inscreva-se hoje.",
    "Método passo a passo com comunidade ativa e atualizações. Veja a oferta oficial.",
    "Resultados com um plano simples e acompanhamento. Condição especial por tempo limitado.",
]

_TRENDS = ["Crescente", "Estável", "Queda"]
_COMPETITION = ["Baixa", "Média", "Alta"]


def _extract_product_name(prompt: str) -> str:
    m = re.search(r'PRODUCT:\s*"?([^"\n]+)"?', prompt)
    return m.group(1).strip() if m else "produto"


class MockProvider(BaseProvider):
    """Deterministic mock that returns a valid enrichment JSON payload.

    The same prompt always gets the same answer, so dry runs are repeatable.
    """

    def __init__(self, seed: int = 42, **kwargs):
        """Extra keyword arguments are ignored so callers can pass the real
        provider's settings unchanged."""
        if not isinstance(seed, int):
            seed = 42
        self._seed = seed
        self._call_log: List[str] = []

    def generate(self, prompt: str, system: str = "", max_tokens: int = 2048) -> str:
        name = _extract_product_name(prompt)
        self._call_log.append(name)
        rng = random.Random(f"{self._seed}:{name}")

        keywords = [t.format(name=name.lower()) for t in rng.sample(_KEYWORD_TEMPLATES, 5)]
        return json.dumps(
            {
                "suggestedCPC": round(rng.uniform(0.4, 3.5), 2),
                "suggestedVolume": f"{rng.randint(1, 90) * 100}/mês",
                "marketInsights": {
                    "trendStatus": rng.choice(_TRENDS),
                    "competitionLevel": rng.choice(_COMPETITION),
                },
                "adsAssets": {
                    "keywords": keywords,
                    "titles": rng.sample(_TITLE_POOL, 5),
                    "descriptions": rng.sample(_DESC_POOL, 2),
                },
                "salesPageScore": rng.randint(5, 10),
                "aiVerdict": (
                    f"{name}: promessa clara e bônus bem posicionados; "
                    "validar CPC real antes de escalar."
                ),
            },
            ensure_ascii=False,
        )

    def stats(self) -> dict:
        return {
            "call_count": len(self._call_log),
            "call_log": list(self._call_log),
            "retry_count": 0,
            "total_tokens": 0,
            "total_input_tokens": 0,
            "total_output_tokens": 0,
            "last_error": None,
        }
