"""Record store adapter: one list/upsert/delete contract over two media.

The backing medium is a :class:`StorageStrategy` resolved once at startup
(:func:`resolve_storage_strategy`) and injected into :class:`RecordStore`;
it never changes during the session.

* ``LOCAL``  — the SQLite catalog document only.
* ``REMOTE`` — the REST endpoint, with the local document kept as a mirror.
  When the remote fails, writes land in the local document, are queued for
  the next sync, and the returned :class:`StoreResult` carries a
  :class:`StoreUnavailableError` so the caller can warn the user.  The store
  stays degraded until a later remote call succeeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

import httpx

from garimpo.config import AppConfig, FinancialsConfig, RemoteConfig
from garimpo.config_remote import RemoteConfigError, RemoteCredentials, load_remote_credentials
from garimpo.connectors.remote_api import RemoteApiClient, RemoteStoreError
from garimpo.local_store import LocalRecordStore
from garimpo.mappers import record_to_row, rows_to_records
from garimpo.schema import ProductRecord

logger = logging.getLogger(__name__)


class StorageStrategy(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"


class StoreError(RuntimeError):
    """Base class for persistence failures."""


class StoreUnavailableError(StoreError):
    """The remote store could not be reached or reported a fault."""


@dataclass
class StoreResult:
    backend: StorageStrategy  # where the write actually landed
    error: Optional[StoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def fell_back(self) -> bool:
        return self.error is not None and self.backend is StorageStrategy.LOCAL


def resolve_storage_strategy(
    cfg: Optional[RemoteConfig] = None,
) -> Tuple[StorageStrategy, Optional[RemoteCredentials]]:
    """Pick the backing medium from the environment. Call once per process."""
    try:
        creds = load_remote_credentials(cfg)
    except RemoteConfigError as exc:
        logger.info("Remote store disabled (%s); using local storage only", exc)
        return StorageStrategy.LOCAL, None
    logger.info("Remote store enabled: %s", creds.url)
    return StorageStrategy.REMOTE, creds


class RecordStore:
    def __init__(
        self,
        strategy: StorageStrategy,
        local: LocalRecordStore,
        remote: Optional[RemoteApiClient] = None,
        financials_cfg: Optional[FinancialsConfig] = None,
    ) -> None:
        if strategy is StorageStrategy.REMOTE and remote is None:
            raise ValueError("REMOTE strategy requires a RemoteApiClient")
        self._strategy = strategy
        self.local = local
        self.remote = remote if strategy is StorageStrategy.REMOTE else None
        self._financials_cfg = financials_cfg
        self._degraded = False
        self.last_error: Optional[StoreError] = None

    @property
    def strategy(self) -> StorageStrategy:
        return self._strategy

    @property
    def degraded(self) -> bool:
        return self._degraded

    async def close(self) -> None:
        if self.remote is not None:
            await self.remote.close()

    # ── Public API ────────────────────────────────────────────────────────────

    async def list(self) -> List[ProductRecord]:
        """All records, newest first. Never raises; see ``last_error``."""
        if self.remote is None:
            return self.local.list()
        try:
            await self._flush_pending()
            rows = await self.remote.fetch_all()
        except RemoteStoreError as exc:
            self._fail("list", exc)
            return self.local.list()

        records = rows_to_records(rows, self._financials_cfg)
        records.sort(key=lambda r: r.created_at, reverse=True)
        self.local.save_all(records)
        self._recover()
        return records

    async def upsert(self, record: ProductRecord) -> StoreResult:
        """Insert or replace *record* by id."""
        self.local.upsert(record)
        if self.remote is None:
            return StoreResult(StorageStrategy.LOCAL)
        try:
            await self.remote.upsert_row(record_to_row(record))
        except RemoteStoreError as exc:
            self.local.mark_pending_upsert(record.id)
            return StoreResult(StorageStrategy.LOCAL, self._fail("upsert", exc))
        self.local.clear_pending(record.id)
        await self._recover_and_flush()
        return StoreResult(StorageStrategy.REMOTE)

    async def delete(self, record_id: str) -> StoreResult:
        """Delete *record_id*; deleting an unknown id is not an error."""
        self.local.delete(record_id)
        if self.remote is None:
            return StoreResult(StorageStrategy.LOCAL)
        try:
            await self.remote.delete_row(record_id)
        except RemoteStoreError as exc:
            self.local.mark_pending_delete(record_id)
            return StoreResult(StorageStrategy.LOCAL, self._fail("delete", exc))
        self.local.clear_pending(record_id)
        await self._recover_and_flush()
        return StoreResult(StorageStrategy.REMOTE)

    async def sync_pending(self) -> int:
        """Push queued offline writes to the remote store.

        Returns the number of writes pushed. Raises ``StoreUnavailableError``.
        """
        if self.remote is None:
            return 0
        try:
            pushed = await self._flush_pending()
        except RemoteStoreError as exc:
            raise self._fail("sync", exc)
        self._recover()
        return pushed

    # ── Private helpers ───────────────────────────────────────────────────────

    async def _flush_pending(self) -> int:
        queue = self.local.pending()
        pushed = 0
        for record_id in queue["deletes"]:
            await self.remote.delete_row(record_id)
            self.local.clear_pending(record_id)
            pushed += 1
        for record_id in queue["upserts"]:
            record = self.local.get(record_id)
            if record is not None:
                await self.remote.upsert_row(record_to_row(record))
                pushed += 1
            self.local.clear_pending(record_id)
        if pushed:
            logger.info("Synced %d pending write(s) to the remote store", pushed)
        return pushed

    async def _recover_and_flush(self) -> None:
        self._recover()
        if not self.local.has_pending():
            return
        try:
            await self._flush_pending()
        except RemoteStoreError as exc:
            self._fail("sync", exc)

    def _fail(self, op: str, exc: Exception) -> StoreUnavailableError:
        err = StoreUnavailableError(f"Remote store unavailable during {op}: {exc}")
        err.__cause__ = exc
        self.last_error = err
        self._degraded = True
        logger.warning("%s; using local storage", err)
        return err

    def _recover(self) -> None:
        if self._degraded:
            logger.info("Remote store reachable again")
        self._degraded = False
        self.last_error = None


def build_record_store(
    cfg: AppConfig,
    *,
    strategy: Optional[StorageStrategy] = None,
    creds: Optional[RemoteCredentials] = None,
    session: httpx.AsyncClient | None = None,
) -> RecordStore:
    """Wire a :class:`RecordStore` from config.

    The strategy is resolved from the environment unless given explicitly.
    """
    if strategy is None:
        strategy, creds = resolve_storage_strategy(cfg.remote)
    local = LocalRecordStore.from_config(cfg.storage, cfg.financials)
    remote = None
    if strategy is StorageStrategy.REMOTE:
        if creds is None:
            creds = load_remote_credentials(cfg.remote)
        remote = RemoteApiClient(creds, cfg.remote, session=session)
    return RecordStore(strategy, local, remote, cfg.financials)
