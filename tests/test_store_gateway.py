"""Tests for the table store gateway (PostgREST calls against httpx.MockTransport)."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import asyncio
import json

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from mitra.schemas import JobStatus
from mitra.services import store_gateway
from mitra.services.errors import StatusUpdateRejected, StoreUnavailable

JOB_ROW = {
    "id": 101,
    "status": "Pending",
    "quantity": 2,
    "total_amount": 450,
    "payment_mode": "COD",
    "created_at": "2026-10-18T09:30:00+00:00",
    "customers": {
        "full_name": "Arjun Mehta",
        "address": "Flat 402, Sunshine Towers, Andheri West, Mumbai",
        "latitude": 19.1364,
        "longitude": 72.8296,
    },
}


def _patched(handler):
    """Patch the gateway's HTTP client with one served by `handler`."""
    client = httpx.AsyncClient(
        base_url="https://store.test/rest/v1",
        transport=httpx.MockTransport(handler),
    )
    return patch("mitra.services.store_gateway._get_http", AsyncMock(return_value=client))


# ── lookup_agent ───────────────────────────────────────────

@pytest.mark.asyncio
async def test_lookup_agent_found():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = request.url
        seen["accept"] = request.headers.get("accept")
        return httpx.Response(200, json={"id": 7, "phone_number": "9876543210", "full_name": "Ravi"})

    with _patched(handler):
        agent = await store_gateway.lookup_agent("9876543210")

    assert agent.id == "7"
    assert agent.full_name == "Ravi"
    assert seen["url"].path == "/rest/v1/agents"
    assert seen["url"].params["phone_number"] == "eq.9876543210"
    assert seen["accept"] == store_gateway.SINGLE_OBJECT


@pytest.mark.asyncio
async def test_lookup_agent_unknown_phone_is_not_found():
    """PostgREST answers 406 when the single-object request matches no row."""
    def handler(request):
        return httpx.Response(406, json={"code": "PGRST116", "message": "0 rows"})

    with _patched(handler):
        assert await store_gateway.lookup_agent("0000000000") is None


@pytest.mark.asyncio
async def test_lookup_agent_query_error_is_not_found():
    def handler(request):
        return httpx.Response(500, json={"message": "relation does not exist"})

    with _patched(handler):
        assert await store_gateway.lookup_agent("9876543210") is None


@pytest.mark.asyncio
async def test_lookup_agent_timeout_raises_unavailable():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with _patched(handler):
        with pytest.raises(StoreUnavailable):
            await store_gateway.lookup_agent("9876543210")


# ── fetch_active_job ───────────────────────────────────────

@pytest.mark.asyncio
async def test_fetch_active_job_query_shape():
    seen = {}

    def handler(request: httpx.Request):
        seen["params"] = request.url.params
        return httpx.Response(200, json=[JOB_ROW])

    with _patched(handler):
        job = await store_gateway.fetch_active_job("7")

    params = seen["params"]
    assert params["agent_id"] == "eq.7"
    assert params["status"] == 'in.("Pending","Out for Delivery")'
    assert params["order"] == "created_at.desc"
    assert params["limit"] == "1"
    assert "customers(full_name,address,latitude,longitude)" in params["select"]

    assert job.id == "101"
    assert job.status == JobStatus.PENDING
    assert job.customer_name == "Arjun Mehta"
    assert job.latitude == 19.1364
    assert job.total_amount == 450
    assert job.payment_mode == "COD"


@pytest.mark.asyncio
async def test_fetch_active_job_none_when_no_rows():
    with _patched(lambda request: httpx.Response(200, json=[])):
        assert await store_gateway.fetch_active_job("7") is None


@pytest.mark.asyncio
async def test_fetch_active_job_none_on_error():
    with _patched(lambda request: httpx.Response(400, json={"message": "bad filter"})):
        assert await store_gateway.fetch_active_job("7") is None


@pytest.mark.asyncio
async def test_fetch_active_job_none_on_transport_failure():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with _patched(handler):
        assert await store_gateway.fetch_active_job("7") is None


@pytest.mark.asyncio
async def test_fetch_active_job_without_coordinates():
    row = dict(JOB_ROW, customers={"full_name": "Arjun Mehta", "address": "Andheri"})
    with _patched(lambda request: httpx.Response(200, json=[row])):
        job = await store_gateway.fetch_active_job("7")
    assert job.latitude is None
    assert job.has_coordinates is False


# ── set_job_status ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_set_job_status_patches_by_id():
    seen = {}

    def handler(request: httpx.Request):
        seen["method"] = request.method
        seen["params"] = request.url.params
        seen["body"] = json.loads(request.content)
        seen["prefer"] = request.headers.get("prefer")
        return httpx.Response(200, json=[dict(JOB_ROW, status="Out for Delivery")])

    with _patched(handler):
        job = await store_gateway.set_job_status("101", JobStatus.OUT_FOR_DELIVERY)

    assert seen["method"] == "PATCH"
    assert seen["params"]["id"] == "eq.101"
    assert seen["body"] == {"status": "Out for Delivery"}
    assert seen["prefer"] == "return=representation"
    assert job.status == JobStatus.OUT_FOR_DELIVERY


@pytest.mark.asyncio
async def test_set_job_status_twice_stays_delivered():
    """Re-applying Delivered leaves the row Delivered."""
    row = dict(JOB_ROW, status="Out for Delivery")

    def handler(request: httpx.Request):
        row["status"] = json.loads(request.content)["status"]
        return httpx.Response(200, json=[row])

    with _patched(handler):
        first = await store_gateway.set_job_status("101", JobStatus.DELIVERED)
        second = await store_gateway.set_job_status("101", JobStatus.DELIVERED)

    assert first.status == JobStatus.DELIVERED
    assert second.status == JobStatus.DELIVERED
    assert row["status"] == "Delivered"


@pytest.mark.asyncio
async def test_set_job_status_rejected_with_reason():
    def handler(request):
        return httpx.Response(403, json={"message": "permission denied for table jobs"})

    with _patched(handler):
        with pytest.raises(StatusUpdateRejected) as exc:
            await store_gateway.set_job_status("101", JobStatus.DELIVERED)
    assert exc.value.reason == "permission denied for table jobs"


@pytest.mark.asyncio
async def test_set_job_status_unknown_job_rejected():
    with _patched(lambda request: httpx.Response(200, json=[])):
        with pytest.raises(StatusUpdateRejected, match="Job not found"):
            await store_gateway.set_job_status("999", JobStatus.DELIVERED)


@pytest.mark.asyncio
async def test_set_job_status_timeout_raises_unavailable():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with _patched(handler):
        with pytest.raises(StoreUnavailable):
            await store_gateway.set_job_status("101", JobStatus.DELIVERED)


def test_mask_phone_keeps_last_four():
    assert store_gateway._mask_phone("9876543210") == "******3210"


# ── Unreadable replies ─────────────────────────────────────

HTML_PAGE = "<html><body>502 Bad Gateway</body></html>"


@pytest.mark.asyncio
async def test_lookup_agent_html_reply_is_not_found():
    with _patched(lambda request: httpx.Response(200, text=HTML_PAGE)):
        assert await store_gateway.lookup_agent("9876543210") is None


@pytest.mark.asyncio
async def test_lookup_agent_row_without_id_is_not_found():
    with _patched(lambda request: httpx.Response(200, json={"phone_number": "9876543210"})):
        assert await store_gateway.lookup_agent("9876543210") is None


@pytest.mark.asyncio
async def test_fetch_active_job_html_reply_is_none():
    with _patched(lambda request: httpx.Response(200, text=HTML_PAGE)):
        assert await store_gateway.fetch_active_job("7") is None


@pytest.mark.asyncio
async def test_fetch_active_job_object_instead_of_rows_is_none():
    with _patched(lambda request: httpx.Response(200, json={"id": 101})):
        assert await store_gateway.fetch_active_job("7") is None


@pytest.mark.asyncio
async def test_fetch_active_job_row_with_unknown_status_is_none():
    row = dict(JOB_ROW, status="Lost")
    with _patched(lambda request: httpx.Response(200, json=[row])):
        assert await store_gateway.fetch_active_job("7") is None


@pytest.mark.asyncio
async def test_set_job_status_html_reply_rejected():
    with _patched(lambda request: httpx.Response(200, text=HTML_PAGE)):
        with pytest.raises(StatusUpdateRejected, match="Malformed store response"):
            await store_gateway.set_job_status("101", JobStatus.DELIVERED)


@pytest.mark.asyncio
async def test_set_job_status_empty_body_rejected():
    with _patched(lambda request: httpx.Response(200, content=b"")):
        with pytest.raises(StatusUpdateRejected):
            await store_gateway.set_job_status("101", JobStatus.DELIVERED)


# ── Overall time bound ─────────────────────────────────────

async def _slow(request):
    await asyncio.sleep(1)
    return httpx.Response(200, json=[JOB_ROW])


@pytest.fixture
def short_timeout(monkeypatch):
    monkeypatch.setattr(store_gateway.settings, "STORE_TIMEOUT_SEC", 0.05)


@pytest.mark.asyncio
async def test_slow_lookup_raises_unavailable(short_timeout):
    with _patched(_slow):
        with pytest.raises(StoreUnavailable):
            await store_gateway.lookup_agent("9876543210")


@pytest.mark.asyncio
async def test_slow_fetch_returns_none(short_timeout):
    with _patched(_slow):
        assert await store_gateway.fetch_active_job("7") is None


@pytest.mark.asyncio
async def test_slow_status_update_raises_unavailable(short_timeout):
    with _patched(_slow):
        with pytest.raises(StoreUnavailable):
            await store_gateway.set_job_status("101", JobStatus.DELIVERED)
