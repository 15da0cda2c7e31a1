"""
Unit tests for the remote storage provider.

Tests cover:
- Loading rows and dropping null columns
- Upsert then delete-missing on save
- Append-only collections never deleting
- Retry logic on 5xx errors
- No retry on 4xx errors
- Store degrading when a collection cannot be read
"""
import json

import httpx
import pytest
import respx
from tenacity import stop_after_attempt, wait_none
from unittest.mock import AsyncMock

from orchard360.domain.models import TreeEvent
from orchard360.infrastructure.api_constants import APIConstants, Collections
from orchard360.infrastructure.remote_storage import ExternalAPIError, RemoteStorageProvider
from orchard360.services.domain.entity_store import EntityStore

BASE_URL = "https://db.example.test"


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    """Retry immediately so 5xx tests stay fast."""
    monkeypatch.setattr(RemoteStorageProvider._make_request.retry, "wait", wait_none())
    monkeypatch.setattr(RemoteStorageProvider._make_request.retry, "stop", stop_after_attempt(3))


@pytest.fixture
async def remote():
    provider = RemoteStorageProvider(base_url=BASE_URL, api_key="anon-key", timeout=5)
    yield provider
    await provider.close()


# ============================================================
# Initialization Tests
# ============================================================

class TestInitialization:
    """Tests for provider configuration."""

    @pytest.mark.asyncio
    async def test_auth_headers(self, remote):
        """Both apikey and bearer headers carry the key."""
        assert remote.client.headers["apikey"] == "anon-key"
        assert remote.client.headers["Authorization"] == "Bearer anon-key"

    @pytest.mark.asyncio
    async def test_context_manager_exit_closes_client(self):
        """__aexit__ should close the HTTP client."""
        provider = RemoteStorageProvider(base_url=BASE_URL, api_key="k")
        provider.close = AsyncMock()

        async with provider as ctx:
            assert ctx is provider

        provider.close.assert_called_once()


# ============================================================
# Load / Save Tests
# ============================================================

class TestLoad:
    """Tests for reading collections."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_load_drops_null_columns(self, remote):
        route = respx.get(f"{BASE_URL}/rest/v1/tree_events").mock(
            return_value=httpx.Response(200, json=[
                {"id": "e-1", "block_id": "b-1", "quantity": 18, "notes": None},
            ])
        )

        rows = await remote.load(Collections.EVENTS)

        assert rows == [{"id": "e-1", "block_id": "b-1", "quantity": 18}]
        assert route.calls.last.request.url.params["select"] == "*"

    @pytest.mark.asyncio
    @respx.mock
    async def test_load_empty_table(self, remote):
        respx.get(f"{BASE_URL}/rest/v1/sectors").mock(
            return_value=httpx.Response(200, json=[])
        )

        assert await remote.load(Collections.SECTORS) == []


class TestSave:
    """Tests for writing collections."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_save_upserts_then_deletes_missing(self, remote):
        upsert = respx.post(f"{BASE_URL}/rest/v1/blocks").mock(
            return_value=httpx.Response(201)
        )
        delete = respx.delete(f"{BASE_URL}/rest/v1/blocks").mock(
            return_value=httpx.Response(204)
        )
        records = [{"id": "b-1", "name": "B3"}, {"id": "b-2", "name": "Q1"}]

        await remote.save(Collections.BLOCKS, records)

        sent = upsert.calls.last.request
        assert json.loads(sent.content) == records
        assert sent.headers["Prefer"] == APIConstants.PREFER_UPSERT
        assert delete.calls.last.request.url.params["id"] == 'not.in.("b-1","b-2")'

    @pytest.mark.asyncio
    @respx.mock
    async def test_save_empty_collection_deletes_everything(self, remote):
        upsert = respx.post(f"{BASE_URL}/rest/v1/orchards")
        delete = respx.delete(f"{BASE_URL}/rest/v1/orchards").mock(
            return_value=httpx.Response(204)
        )

        await remote.save(Collections.ORCHARDS, [])

        assert not upsert.called
        assert delete.calls.last.request.url.params["id"] == "not.is.null"

    @pytest.mark.asyncio
    @respx.mock
    async def test_audit_save_never_deletes(self, remote):
        respx.post(f"{BASE_URL}/rest/v1/audit_log").mock(
            return_value=httpx.Response(201)
        )
        delete = respx.delete(f"{BASE_URL}/rest/v1/audit_log")

        await remote.save(Collections.AUDIT, [{"id": "a-1", "message": "created"}])

        assert not delete.called


# ============================================================
# Error Handling Tests
# ============================================================

class TestErrorHandling:
    """Tests for error handling."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_4xx_error_no_retry(self, remote):
        """4xx errors should not trigger retry."""
        respx.get(f"{BASE_URL}/rest/v1/sectors").mock(
            return_value=httpx.Response(401, text="Invalid API key")
        )

        with pytest.raises(ExternalAPIError, match="401") as exc_info:
            await remote.load(Collections.SECTORS)

        assert exc_info.value.status_code == 401
        assert respx.calls.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_5xx_error_triggers_retry(self, remote):
        """5xx errors should trigger retry."""
        route = respx.get(f"{BASE_URL}/rest/v1/sectors")
        route.side_effect = [
            httpx.Response(503, text="Service Unavailable"),
            httpx.Response(200, json=[{"id": "s-1", "name": "North"}]),
        ]

        rows = await remote.load(Collections.SECTORS)

        assert rows == [{"id": "s-1", "name": "North"}]
        assert respx.calls.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_exhausted_retries_raise(self, remote):
        respx.get(f"{BASE_URL}/rest/v1/sectors").mock(
            return_value=httpx.Response(500, text="boom")
        )

        with pytest.raises(ExternalAPIError) as exc_info:
            await remote.load(Collections.SECTORS)

        assert exc_info.value.status_code == 502
        assert respx.calls.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error_maps_to_503(self, remote):
        respx.get(f"{BASE_URL}/rest/v1/sectors").mock(
            side_effect=httpx.ConnectError("connection refused")
        )

        with pytest.raises(ExternalAPIError) as exc_info:
            await remote.load(Collections.SECTORS)

        assert exc_info.value.status_code == 503


# ============================================================
# Store Integration Tests
# ============================================================

class TestStoreOverRemote:
    """The entity store keeps working when one table is unreachable."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_failed_collection_loads_empty(self, remote):
        respx.get(f"{BASE_URL}/rest/v1/sectors").mock(
            return_value=httpx.Response(200, json=[{"id": "s-1", "name": "North"}])
        )
        respx.get(f"{BASE_URL}/rest/v1/orchards").mock(
            return_value=httpx.Response(200, json=[])
        )
        respx.get(f"{BASE_URL}/rest/v1/blocks").mock(
            return_value=httpx.Response(200, json=[])
        )
        respx.get(f"{BASE_URL}/rest/v1/tree_events").mock(
            return_value=httpx.Response(500, text="boom")
        )
        respx.get(f"{BASE_URL}/rest/v1/audit_log").mock(
            return_value=httpx.Response(200, json=[])
        )
        store = EntityStore(remote)

        status = await store.load()

        assert status[Collections.EVENTS] is False
        assert status[Collections.SECTORS] is True
        assert [s.name for s in store.sectors()] == ["North"]
        assert store.events() == []


# ============================================================
# Upsert Payload Tests
# ============================================================

class TestUpsertPayload:
    """Bulk upsert bodies use one column set, with nulls for missing values."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_rows_share_columns(self, remote):
        upsert = respx.post(f"{BASE_URL}/rest/v1/tree_events").mock(
            return_value=httpx.Response(201)
        )
        respx.delete(f"{BASE_URL}/rest/v1/tree_events").mock(
            return_value=httpx.Response(204)
        )

        await remote.save(Collections.EVENTS, [
            {"id": "e-1", "quantity": 18, "notes": "Mite pressure"},
            {"id": "e-2", "quantity": 19},
        ])

        body = json.loads(upsert.calls.last.request.content)
        assert [sorted(row) for row in body] == [["id", "notes", "quantity"]] * 2
        assert body[1]["notes"] is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_store_sends_cleared_field_as_null(self, remote):
        upsert = respx.post(f"{BASE_URL}/rest/v1/tree_events").mock(
            return_value=httpx.Response(201)
        )
        respx.delete(f"{BASE_URL}/rest/v1/tree_events").mock(
            return_value=httpx.Response(204)
        )
        respx.post(f"{BASE_URL}/rest/v1/audit_log").mock(
            return_value=httpx.Response(201)
        )
        store = EntityStore(remote)
        first = await store.upsert_event(TreeEvent(
            sector_id="s-1", orchard_id="o-1", block_id="b-1", quantity=18, notes="Mite pressure",
        ))
        await store.upsert_event(TreeEvent(
            sector_id="s-1", orchard_id="o-1", block_id="b-1", quantity=19,
        ))

        await store.upsert_event(first.model_copy(update={"notes": None}))

        body = json.loads(upsert.calls.last.request.content)
        assert len({frozenset(row) for row in body}) == 1
        cleared = next(row for row in body if row["id"] == first.id)
        assert "notes" in cleared
        assert cleared["notes"] is None
