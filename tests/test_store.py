"""Tests for garimpo/store.py and garimpo/connectors/remote_api.py.

The remote REST endpoint is mocked with respx; the local document lives in
``tmp_path``.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
import respx

from garimpo.config import AppConfig, RemoteConfig
from garimpo.config_remote import RemoteCredentials
from garimpo.connectors.remote_api import RemoteApiClient, RemoteStoreError
from garimpo.mappers import record_to_row
from garimpo.store import (
    RecordStore,
    StorageStrategy,
    StoreUnavailableError,
    build_record_store,
    resolve_storage_strategy,
)

URL = "https://api.example.com/products"

# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _cfg(tmp: Path) -> AppConfig:
    cfg = AppConfig()
    cfg.storage.local_path = str(tmp / "garimpo.db")
    cfg.remote.max_retries = 0
    cfg.remote.backoff_base_seconds = 0.0
    return cfg


def _remote_store(tmp: Path) -> RecordStore:
    return build_record_store(
        _cfg(tmp),
        strategy=StorageStrategy.REMOTE,
        creds=RemoteCredentials(url=URL, api_key="secret"),
    )


def _local_store(tmp: Path) -> RecordStore:
    return build_record_store(_cfg(tmp), strategy=StorageStrategy.LOCAL)


def _delete_route(router):
    return router.route(method="DELETE", host="api.example.com", path="/products")


# ─────────────────────────────────────────────────────────────────────────────
# Strategy resolution
# ─────────────────────────────────────────────────────────────────────────────


class TestResolveStrategy:
    def test_local_without_url(self):
        with patch.dict(os.environ, {}, clear=True):
            strategy, creds = resolve_storage_strategy(RemoteConfig())
        assert strategy is StorageStrategy.LOCAL
        assert creds is None

    def test_remote_with_url(self):
        env = {"GARIMPO_API_URL": URL + "/", "GARIMPO_API_KEY": "k"}
        with patch.dict(os.environ, env, clear=True):
            strategy, creds = resolve_storage_strategy(RemoteConfig())
        assert strategy is StorageStrategy.REMOTE
        assert creds.url == URL
        assert creds.api_key == "k"

    def test_invalid_url_stays_local(self):
        with patch.dict(os.environ, {"GARIMPO_API_URL": "ftp://nowhere"}, clear=True):
            strategy, _ = resolve_storage_strategy(RemoteConfig())
        assert strategy is StorageStrategy.LOCAL

    def test_remote_requires_client(self, tmp_path):
        local = _local_store(tmp_path).local
        with pytest.raises(ValueError):
            RecordStore(StorageStrategy.REMOTE, local)


# ─────────────────────────────────────────────────────────────────────────────
# Local strategy
# ─────────────────────────────────────────────────────────────────────────────


class TestLocalStrategy:
    @pytest.mark.asyncio
    async def test_upsert_list_delete(self, tmp_path, make_record):
        store = _local_store(tmp_path)
        r = make_record(record_id="a")
        result = await store.upsert(r)
        assert result.ok
        assert result.backend is StorageStrategy.LOCAL
        assert await store.list() == [r]

        assert (await store.delete("a")).ok
        assert (await store.delete("a")).ok
        assert await store.list() == []

    @pytest.mark.asyncio
    async def test_sync_is_noop(self, tmp_path):
        assert await _local_store(tmp_path).sync_pending() == 0


# ─────────────────────────────────────────────────────────────────────────────
# Remote strategy — happy path
# ─────────────────────────────────────────────────────────────────────────────


class TestRemoteStrategy:
    @pytest.mark.asyncio
    async def test_list_sorted_and_mirrored(self, tmp_path, make_record):
        old = make_record("Old", record_id="old", created_at=1_000)
        new = make_record("New", record_id="new", created_at=2_000)
        async with respx.mock() as router:
            router.get(URL).mock(
                return_value=httpx.Response(200, json=[record_to_row(old), record_to_row(new)])
            )
            store = _remote_store(tmp_path)
            records = await store.list()
            await store.close()
        assert [r.id for r in records] == ["new", "old"]
        assert [r.id for r in store.local.list()] == ["new", "old"]
        assert not store.degraded

    @pytest.mark.asyncio
    async def test_list_accepts_data_envelope(self, tmp_path, make_record):
        async with respx.mock() as router:
            router.get(URL).mock(
                return_value=httpx.Response(200, json={"data": [record_to_row(make_record(record_id="a"))]})
            )
            store = _remote_store(tmp_path)
            records = await store.list()
            await store.close()
        assert [r.id for r in records] == ["a"]

    @pytest.mark.asyncio
    async def test_upsert_posts_flat_row(self, tmp_path, make_record):
        r = make_record(record_id="a")
        async with respx.mock() as router:
            route = router.post(URL).mock(return_value=httpx.Response(200, json={"status": "success"}))
            store = _remote_store(tmp_path)
            result = await store.upsert(r)
            await store.close()
        assert result.ok
        assert result.backend is StorageStrategy.REMOTE
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer secret"
        body = json.loads(request.content)
        assert body["id"] == "a"
        assert isinstance(body["financialAnalysis"], str)
        assert store.local.get("a") == r

    @pytest.mark.asyncio
    async def test_delete_sends_id(self, tmp_path, make_record):
        async with respx.mock() as router:
            router.post(URL).mock(return_value=httpx.Response(200, json={"status": "success"}))
            route = _delete_route(router).mock(
                return_value=httpx.Response(200, json={"status": "deleted"})
            )
            store = _remote_store(tmp_path)
            await store.upsert(make_record(record_id="a"))
            result = await store.delete("a")
            await store.close()
        assert result.ok
        assert route.calls.last.request.url.params["id"] == "a"
        assert store.local.list() == []


# ─────────────────────────────────────────────────────────────────────────────
# Remote strategy — failure and fallback
# ─────────────────────────────────────────────────────────────────────────────


class TestRemoteFallback:
    @pytest.mark.asyncio
    async def test_upsert_falls_back_and_queues(self, tmp_path, make_record):
        r = make_record(record_id="a")
        async with respx.mock() as router:
            router.post(URL).mock(side_effect=httpx.ConnectError("down"))
            store = _remote_store(tmp_path)
            result = await store.upsert(r)
            await store.close()
        assert not result.ok
        assert result.fell_back
        assert isinstance(result.error, StoreUnavailableError)
        assert store.degraded
        assert store.local.get("a") == r
        assert store.local.pending()["upserts"] == ["a"]

    @pytest.mark.asyncio
    async def test_error_body_is_a_fault(self, tmp_path, make_record):
        async with respx.mock() as router:
            router.post(URL).mock(return_value=httpx.Response(200, json={"error": "db locked"}))
            store = _remote_store(tmp_path)
            result = await store.upsert(make_record(record_id="a"))
            await store.close()
        assert result.fell_back
        assert "db locked" in str(result.error)

    @pytest.mark.asyncio
    async def test_list_falls_back_to_local(self, tmp_path, make_record):
        store = _local_store(tmp_path)
        await store.upsert(make_record(record_id="cached"))
        async with respx.mock() as router:
            router.get(URL).mock(return_value=httpx.Response(500))
            remote = _remote_store(tmp_path)
            records = await remote.list()
            await remote.close()
        assert [r.id for r in records] == ["cached"]
        assert isinstance(remote.last_error, StoreUnavailableError)

    @pytest.mark.asyncio
    async def test_delete_falls_back_and_queues(self, tmp_path, make_record):
        await _local_store(tmp_path).upsert(make_record(record_id="a"))
        async with respx.mock() as router:
            _delete_route(router).mock(side_effect=httpx.ConnectError("down"))
            store = _remote_store(tmp_path)
            result = await store.delete("a")
            await store.close()
        assert result.fell_back
        assert store.local.list() == []
        assert store.local.pending()["deletes"] == ["a"]

    @pytest.mark.asyncio
    async def test_pending_writes_flushed_on_recovery(self, tmp_path, make_record):
        r = make_record(record_id="a")
        async with respx.mock(assert_all_called=False) as router:
            post = router.post(URL)
            post.side_effect = [
                httpx.ConnectError("down"),
                httpx.Response(200, json={"status": "success"}),
            ]
            router.get(URL).mock(return_value=httpx.Response(200, json=[record_to_row(r)]))
            store = _remote_store(tmp_path)

            assert (await store.upsert(r)).fell_back
            records = await store.list()
            await store.close()

        assert post.call_count == 2
        assert [x.id for x in records] == ["a"]
        assert not store.local.has_pending()
        assert not store.degraded
        assert store.last_error is None

    @pytest.mark.asyncio
    async def test_sync_pending(self, tmp_path, make_record):
        async with respx.mock() as router:
            post = router.post(URL)
            post.side_effect = [
                httpx.ConnectError("down"),
                httpx.Response(200, json={"status": "success"}),
            ]
            store = _remote_store(tmp_path)
            await store.upsert(make_record(record_id="a"))
            pushed = await store.sync_pending()
            await store.close()
        assert pushed == 1
        assert not store.degraded

    @pytest.mark.asyncio
    async def test_sync_pending_raises_when_down(self, tmp_path, make_record):
        async with respx.mock() as router:
            router.post(URL).mock(side_effect=httpx.ConnectError("down"))
            store = _remote_store(tmp_path)
            await store.upsert(make_record(record_id="a"))
            with pytest.raises(StoreUnavailableError):
                await store.sync_pending()
            await store.close()
        assert store.local.has_pending()


# ─────────────────────────────────────────────────────────────────────────────
# RemoteApiClient
# ─────────────────────────────────────────────────────────────────────────────


class TestRemoteApiClient:
    @pytest.mark.asyncio
    async def test_retries_on_503(self):
        cfg = RemoteConfig(max_retries=1, backoff_base_seconds=0.0)
        async with respx.mock() as router:
            route = router.get(URL)
            route.side_effect = [httpx.Response(503), httpx.Response(200, json=[])]
            client = RemoteApiClient(RemoteCredentials(URL), cfg)
            assert await client.fetch_all() == []
            await client.close()
        assert route.call_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self):
        cfg = RemoteConfig(max_retries=1, backoff_base_seconds=0.0)
        async with respx.mock() as router:
            router.get(URL).mock(side_effect=httpx.ConnectError("down"))
            client = RemoteApiClient(RemoteCredentials(URL), cfg)
            with pytest.raises(RemoteStoreError):
                await client.fetch_all()
            await client.close()

    @pytest.mark.asyncio
    async def test_non_list_body_rejected(self):
        async with respx.mock() as router:
            router.get(URL).mock(return_value=httpx.Response(200, json={"status": "ok"}))
            client = RemoteApiClient(RemoteCredentials(URL), RemoteConfig(max_retries=0))
            with pytest.raises(RemoteStoreError):
                await client.fetch_all()
            await client.close()

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self):
        async with respx.mock() as router:
            route = router.get(URL).mock(return_value=httpx.Response(200, json=[]))
            client = RemoteApiClient(RemoteCredentials(URL), RemoteConfig(max_retries=0))
            await client.fetch_all()
            await client.close()
        assert "Authorization" not in route.calls.last.request.headers
