"""SQLite-backed key-value store.

One table of ``key -> text value`` rows.  It backs two things:

* the local catalog document (the whole collection under one key, the
  offline fallback of the remote store), see :mod:`garimpo.local_store`;
* the enrichment response cache, keyed by :func:`make_cache_key`.

Usage::

    from garimpo.kvstore import KeyValueStore, make_cache_key

    store = KeyValueStore("data/garimpo.db")
    store.set("garimpo_fallback", json.dumps(docs))
    docs = json.loads(store.get("garimpo_fallback") or "[]")
"""
from __future__ import annotations

import hashlib
import json
import sqlite3
from pathlib import Path
from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Store
# ─────────────────────────────────────────────────────────────────────────────

class KeyValueStore:
    """Persistent key-value table backed by SQLite."""

    def __init__(self, db_path: str | Path, table: str = "kv") -> None:
        if not table.isidentifier():
            raise ValueError(f"invalid table name: {table!r}")
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.table = table
        self._hits = 0
        self._misses = 0
        self._init_db()

    # ── DB setup ──────────────────────────────────────────────────────────────

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    key        TEXT PRIMARY KEY,
                    value      TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
            """)
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, check_same_thread=False)

    # ── Public API ────────────────────────────────────────────────────────────

    def get(self, key: str) -> Optional[str]:
        """Return stored value or None on miss."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT value FROM {self.table} WHERE key = ?", (key,)
            ).fetchone()
        if row:
            self._hits += 1
            return row[0]
        self._misses += 1
        return None

    def set(self, key: str, value: str) -> None:
        """Store (or overwrite) a value in one transaction."""
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {self.table} (key, value, updated_at) "
                "VALUES (?, ?, datetime('now'))",
                (key, value),
            )
            conn.commit()

    # ── Stats ─────────────────────────────────────────────────────────────────

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    def hit_rate(self) -> float:
        total = self._hits + self._misses
        return round(self._hits / total, 4) if total else 0.0

    def stats(self) -> dict:
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self.hit_rate(),
        }


# ─────────────────────────────────────────────────────────────────────────────
# Key helpers
# ─────────────────────────────────────────────────────────────────────────────

def make_cache_key(product_name: str, sales_url: str, niche: str, fingerprint: str) -> str:
    """Return a SHA-256 hex digest identifying one enrichment request."""
    raw = json.dumps(
        {
            "name": product_name.strip().lower(),
            "url": sales_url.strip(),
            "niche": niche,
            "cfg": fingerprint,
        },
        ensure_ascii=False,
        sort_keys=True,
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def enrichment_fingerprint(cfg, provider_name: str) -> str:
    """Stable JSON string of everything that shapes an enrichment answer.

    That is the provider producing it (a dry-run mock never answers for the
    live model), the provider settings and the ``enrichment`` settings
    rendered into the prompt.  Changing any of them causes a cache miss.
    """
    ecfg = cfg.enrichment
    prov = cfg.provider
    parts = {
        "provider":              provider_name,
        "model":                 prov.model,
        "temperature":           prov.temperature,
        "max_tokens":            prov.max_tokens,
        "num_keywords":          ecfg.num_keywords,
        "num_titles":            ecfg.num_titles,
        "num_descriptions":      ecfg.num_descriptions,
        "max_title_chars":       ecfg.max_title_chars,
        "max_description_chars": ecfg.max_description_chars,
        "currency":              ecfg.currency,
    }
    return json.dumps(parts, sort_keys=True)
