"""
Store Gateway — the dashboard's only contact with persistent state.

Talks to the hosted table store over its PostgREST interface:
  1. lookup_agent      → agents row by exact phone number
  2. fetch_active_job  → newest Pending / Out for Delivery job for an agent
  3. set_job_status    → PATCH a job's status by id

Nothing is cached between calls; every dashboard refresh re-queries.
"""

import asyncio
import logging

import httpx
from pydantic import ValidationError

from mitra.config import settings
from mitra.schemas import ACTIVE_JOB_STATUSES, Agent, Job, JobStatus
from mitra.services.errors import StatusUpdateRejected, StoreUnavailable

logger = logging.getLogger(__name__)

_http: httpx.AsyncClient | None = None

# PostgREST answers 406 when a single-object request matches 0 or >1 rows
SINGLE_OBJECT = "application/vnd.pgrst.object+json"

JOB_COLUMNS = "id,status,quantity,total_amount,payment_mode,created_at"
CUSTOMER_COLUMNS = "full_name,address,latitude,longitude"

# A 200 whose body is not the JSON shape we asked for (proxy HTML page, empty body, ...)
MALFORMED = (ValueError, KeyError, IndexError, TypeError, AttributeError, ValidationError)


async def _get_http() -> httpx.AsyncClient:
    global _http
    if _http is None:
        _http = httpx.AsyncClient(
            base_url=f"{settings.SUPABASE_URL.rstrip('/')}/rest/v1",
            headers={
                "apikey": settings.SUPABASE_KEY,
                "Authorization": f"Bearer {settings.SUPABASE_KEY}",
            },
            timeout=settings.STORE_TIMEOUT_SEC,
        )
    return _http


async def close() -> None:
    """Dispose of the shared HTTP client (app shutdown)."""
    global _http
    if _http is not None:
        await _http.aclose()
        _http = None


async def _send(method: str, url: str, **kwargs) -> httpx.Response:
    """
    One request, bounded end to end by STORE_TIMEOUT_SEC.

    httpx applies its timeout per phase (connect, each read, pool), so a
    slow trickle can outlive it; the outer bound is what the session busy
    lock TTL is computed from. Raises TimeoutError when it fires.
    """
    client = await _get_http()
    async with asyncio.timeout(settings.STORE_TIMEOUT_SEC):
        return await client.request(method, url, **kwargs)


def _mask_phone(phone: str) -> str:
    return f"{'*' * max(len(phone) - 4, 0)}{phone[-4:]}"


def _error_reason(resp: httpx.Response) -> str:
    """Pull PostgREST's error message out of a failed response."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return body.get("message") or body.get("hint") or f"HTTP {resp.status_code}"
    return f"HTTP {resp.status_code}"


def _job_from_row(row: dict) -> Job:
    """Flatten a jobs row with its embedded customer into a Job."""
    customer = row.get(settings.CUSTOMERS_TABLE) or {}
    return Job(
        id=str(row["id"]),
        status=row["status"],
        customer_name=customer.get("full_name"),
        address=customer.get("address"),
        latitude=customer.get("latitude"),
        longitude=customer.get("longitude"),
        quantity=row.get("quantity"),
        total_amount=row.get("total_amount"),
        payment_mode=row.get("payment_mode"),
        created_at=row.get("created_at"),
    )


# ── Agents ─────────────────────────────────────────────────

async def lookup_agent(phone_number: str) -> Agent | None:
    """
    Find exactly one agent by phone number.

    Returns None when no agent (or more than one) matches, or when the
    store answers with an error or an unreadable body. Raises
    StoreUnavailable when the store cannot be reached in time.
    """
    try:
        resp = await _send(
            "GET",
            f"/{settings.AGENTS_TABLE}",
            params={"select": "*", "phone_number": f"eq.{phone_number}"},
            headers={"Accept": SINGLE_OBJECT},
        )
    except (httpx.HTTPError, TimeoutError) as e:
        logger.error("Agent lookup failed for %s: %r", _mask_phone(phone_number), e)
        raise StoreUnavailable(str(e) or "timed out") from e

    if resp.status_code != 200:
        logger.warning(
            "Agent lookup: no single match for %s (%s %s)",
            _mask_phone(phone_number), resp.status_code, _error_reason(resp),
        )
        return None

    try:
        data = resp.json()
        data["id"] = str(data["id"])
        agent = Agent.model_validate(data)
    except MALFORMED as e:
        logger.error("Agent lookup for %s: unreadable response: %r", _mask_phone(phone_number), e)
        return None
    logger.info("Agent %s authenticated", agent.id)
    return agent


# ── Jobs ───────────────────────────────────────────────────

async def fetch_active_job(agent_id: str) -> Job | None:
    """
    Newest non-terminal job for the agent, joined with its customer.

    Zero matches, a query error, an unreadable body, a transport failure
    and a timeout all return None.
    """
    statuses = ",".join(f'"{s.value}"' for s in ACTIVE_JOB_STATUSES)
    params = {
        "select": f"{JOB_COLUMNS},{settings.CUSTOMERS_TABLE}({CUSTOMER_COLUMNS})",
        "agent_id": f"eq.{agent_id}",
        "status": f"in.({statuses})",
        "order": "created_at.desc",
        "limit": "1",
    }
    try:
        resp = await _send("GET", f"/{settings.JOBS_TABLE}", params=params)
    except (httpx.HTTPError, TimeoutError) as e:
        logger.error("Active job fetch failed for agent %s: %r", agent_id, e)
        return None

    if resp.status_code != 200:
        logger.warning(
            "Active job fetch for agent %s → %s %s",
            agent_id, resp.status_code, _error_reason(resp),
        )
        return None

    try:
        rows = resp.json()
        if not rows:
            logger.info("No active job for agent %s", agent_id)
            return None
        return _job_from_row(rows[0])
    except MALFORMED as e:
        logger.error("Active job fetch for agent %s: unreadable response: %r", agent_id, e)
        return None


async def set_job_status(job_id: str, new_status: JobStatus) -> Job | None:
    """
    Set a job's status by id. Re-applying the same status is a no-op on the row.

    Returns the updated job when the store echoes it back.
    Raises StatusUpdateRejected if the store refuses the update, no job
    matches or the reply is unreadable; StoreUnavailable on transport
    failure or timeout.
    """
    try:
        resp = await _send(
            "PATCH",
            f"/{settings.JOBS_TABLE}",
            params={
                "id": f"eq.{job_id}",
                "select": f"{JOB_COLUMNS},{settings.CUSTOMERS_TABLE}({CUSTOMER_COLUMNS})",
            },
            json={"status": new_status.value},
            headers={"Prefer": "return=representation"},
        )
    except (httpx.HTTPError, TimeoutError) as e:
        logger.error("Status update for job %s failed: %r", job_id, e)
        raise StoreUnavailable(str(e) or "timed out") from e

    if resp.status_code not in (200, 204):
        reason = _error_reason(resp)
        logger.warning("Status update for job %s rejected: %s", job_id, reason)
        raise StatusUpdateRejected(reason)

    if resp.status_code == 204:
        return None

    try:
        rows = resp.json()
        job = _job_from_row(rows[0]) if rows else None
    except MALFORMED as e:
        logger.error("Status update for job %s: unreadable response: %r", job_id, e)
        raise StatusUpdateRejected("Malformed store response") from e
    if job is None:
        logger.warning("Status update for job %s matched no rows", job_id)
        raise StatusUpdateRejected("Job not found")

    logger.info("Job %s → %s", job_id, new_status.value)
    return job
