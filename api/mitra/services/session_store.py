"""
Session Store — per-browser dashboard state kept in Redis.

Keys:
  mitra:session:<sid>  → SessionState JSON, sliding TTL (SESSION_TTL_SEC)
  mitra:busy:<sid>     → in-flight action lock, SET NX PX

Only UI state lives here. Agent and job data are re-read from the table
store on every transition that needs them.
"""

import logging
import secrets

import redis.asyncio as aioredis
from pydantic import ValidationError

from mitra.config import settings
from mitra.schemas import SessionState

logger = logging.getLogger(__name__)

SESSION_PREFIX = "mitra:session:"
BUSY_PREFIX = "mitra:busy:"

# Delete the busy key only if we still own it
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

_redis: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    """Singleton Redis connection."""
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis


async def close() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


async def load_session(session_id: str) -> SessionState:
    """Stored state for the session, or a fresh LOGIN state."""
    r = await get_redis()
    raw = await r.get(f"{SESSION_PREFIX}{session_id}")
    if not raw:
        return SessionState()
    try:
        return SessionState.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("Discarding unreadable session %s…: %s", session_id[:6], e)
        return SessionState()


async def save_session(session_id: str, state: SessionState) -> None:
    r = await get_redis()
    await r.set(
        f"{SESSION_PREFIX}{session_id}",
        state.model_dump_json(),
        ex=settings.SESSION_TTL_SEC,
    )


async def delete_session(session_id: str) -> None:
    r = await get_redis()
    await r.delete(f"{SESSION_PREFIX}{session_id}")


async def acquire_busy(session_id: str, ttl_ms: int) -> str | None:
    """
    Claim the session for one action. Returns an ownership token,
    or None when another action already holds it. No waiting.
    """
    r = await get_redis()
    token = secrets.token_hex(8)
    acquired = await r.set(f"{BUSY_PREFIX}{session_id}", token, px=ttl_ms, nx=True)
    return token if acquired else None


async def release_busy(session_id: str, token: str) -> None:
    r = await get_redis()
    await r.eval(_RELEASE_SCRIPT, 1, f"{BUSY_PREFIX}{session_id}", token)
