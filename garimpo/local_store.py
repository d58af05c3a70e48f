"""Local catalog document.

The whole ordered collection lives in one JSON document under a fixed key
(``garimpo_fallback`` by default) and is rewritten in full on every
mutation.  New records are prepended so the document stays "most recently
added first".

The same key-value table keeps the queue of writes that could not reach the
remote store (``garimpo_pending``)::

    {"upserts": ["<id>", ...], "deletes": ["<id>", ...]}
"""
from __future__ import annotations

import json
import logging
from typing import Dict, List, Optional

from garimpo.config import FinancialsConfig, StorageConfig
from garimpo.kvstore import KeyValueStore
from garimpo.mappers import records_to_documents, rows_to_records
from garimpo.schema import ProductRecord

logger = logging.getLogger(__name__)


class LocalRecordStore:
    """Synchronous list/upsert/delete over the local catalog document."""

    def __init__(
        self,
        kv: KeyValueStore,
        storage_cfg: Optional[StorageConfig] = None,
        financials_cfg: Optional[FinancialsConfig] = None,
    ) -> None:
        cfg = storage_cfg or StorageConfig()
        self.kv = kv
        self.document_key = cfg.fallback_key
        self.pending_key = cfg.pending_key
        self._financials_cfg = financials_cfg

    @classmethod
    def from_config(cls, storage_cfg: StorageConfig, financials_cfg: FinancialsConfig) -> "LocalRecordStore":
        return cls(KeyValueStore(storage_cfg.local_path), storage_cfg, financials_cfg)

    # ── Document ──────────────────────────────────────────────────────────────

    def load(self) -> List[ProductRecord]:
        raw = self.kv.get(self.document_key)
        if not raw:
            return []
        try:
            docs = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Local catalog document is not valid JSON (%s); starting empty", exc)
            return []
        if not isinstance(docs, list):
            logger.warning("Local catalog document is not a list; starting empty")
            return []
        return rows_to_records(docs, self._financials_cfg)

    def save_all(self, records: List[ProductRecord]) -> None:
        """Rewrite the whole document."""
        self.kv.set(
            self.document_key,
            json.dumps(records_to_documents(records), ensure_ascii=False),
        )

    def list(self) -> List[ProductRecord]:
        return self.load()

    def get(self, record_id: str) -> Optional[ProductRecord]:
        for r in self.load():
            if r.id == record_id:
                return r
        return None

    def upsert(self, record: ProductRecord) -> None:
        """Replace by id in place, or prepend when new."""
        records = self.load()
        for i, existing in enumerate(records):
            if existing.id == record.id:
                records[i] = record
                break
        else:
            records.insert(0, record)
        self.save_all(records)

    def delete(self, record_id: str) -> bool:
        """Remove *record_id*; returns False (not an error) when it was absent."""
        records = self.load()
        kept = [r for r in records if r.id != record_id]
        self.save_all(kept)
        return len(kept) != len(records)

    # ── Pending remote writes ─────────────────────────────────────────────────

    def pending(self) -> Dict[str, List[str]]:
        raw = self.kv.get(self.pending_key)
        queue: Dict[str, List[str]] = {"upserts": [], "deletes": []}
        if not raw:
            return queue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Pending sync queue is corrupt; discarding it")
            return queue
        for k in queue:
            items = data.get(k, []) if isinstance(data, dict) else []
            queue[k] = [str(x) for x in items if x]
        return queue

    def _save_pending(self, queue: Dict[str, List[str]]) -> None:
        self.kv.set(self.pending_key, json.dumps(queue))

    def has_pending(self) -> bool:
        q = self.pending()
        return bool(q["upserts"] or q["deletes"])

    def mark_pending_upsert(self, record_id: str) -> None:
        q = self.pending()
        q["deletes"] = [x for x in q["deletes"] if x != record_id]
        if record_id not in q["upserts"]:
            q["upserts"].append(record_id)
        self._save_pending(q)

    def mark_pending_delete(self, record_id: str) -> None:
        q = self.pending()
        q["upserts"] = [x for x in q["upserts"] if x != record_id]
        if record_id not in q["deletes"]:
            q["deletes"].append(record_id)
        self._save_pending(q)

    def clear_pending(self, record_id: str) -> None:
        q = self.pending()
        q["upserts"] = [x for x in q["upserts"] if x != record_id]
        q["deletes"] = [x for x in q["deletes"] if x != record_id]
        self._save_pending(q)
