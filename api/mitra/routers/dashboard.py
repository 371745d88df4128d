"""Agent dashboard — one page, four views, one POST per agent action."""

import logging
from pathlib import Path
from typing import Awaitable, Callable

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from mitra.config import settings
from mitra.schemas import Action, SessionState, View
from mitra.services import delivery_flow as flow
from mitra.services.delivery_controller import DeliveryController
from mitra.services.errors import SessionBusy
from mitra.services.maps import directions_url, embed_url, map_center
from mitra.services.session_store import new_session_id

router = APIRouter()
logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

VIEW_TEMPLATES = {
    View.LOGIN: "login.html",
    View.DASHBOARD: "dashboard.html",
    View.POD: "pod.html",
    View.SUCCESS: "success.html",
}


# ── Session cookie ─────────────────────────────────────────

def _session(request: Request) -> tuple[str, bool]:
    """(session_id, is_new) for this browser."""
    sid = request.cookies.get(settings.SESSION_COOKIE)
    if sid:
        return sid, False
    return new_session_id(), True


def _with_cookie(response, session_id: str, is_new: bool):
    if is_new:
        response.set_cookie(
            key=settings.SESSION_COOKIE,
            value=session_id,
            max_age=settings.SESSION_TTL_SEC,
            httponly=True,
            secure=settings.COOKIE_SECURE,
            samesite="lax",
        )
    return response


async def _act(
    request: Request,
    run: Callable[[DeliveryController], Awaitable[SessionState]],
) -> RedirectResponse:
    """Apply one action, then Post/Redirect/Get back to the dashboard."""
    sid, is_new = _session(request)
    url = "/"
    try:
        await run(DeliveryController(sid))
    except SessionBusy:
        logger.info("Duplicate submit ignored for session %s…", sid[:6])
        url = "/?busy=1"
    return _with_cookie(RedirectResponse(url=url, status_code=303), sid, is_new)


# ── Render ─────────────────────────────────────────────────

@router.get("/", response_class=HTMLResponse)
async def dashboard(request: Request):
    """Render whichever view the session is on."""
    sid, is_new = _session(request)
    state, alert = await DeliveryController(sid).take_alert()

    lat, lng, map_is_fallback = map_center(state.job)
    context = {
        "brand": settings.BRAND_NAME,
        "state": state,
        "job": state.job,
        "agent": state.agent,
        "alert": alert,
        "busy": request.query_params.get("busy") == "1",
        "busy_message": flow.MSG_BUSY,
        "actions": flow.available_actions(state),
        "Action": Action,
        "directions_url": directions_url(state.job) if state.job else None,
        "map_url": embed_url(state.job),
        "map_is_fallback": map_is_fallback,
        "map_center": (lat, lng),
    }
    response = templates.TemplateResponse(request, VIEW_TEMPLATES[state.view], context)
    response.headers["Cache-Control"] = "no-store"
    return _with_cookie(response, sid, is_new)


# ── LOGIN ──────────────────────────────────────────────────

@router.post("/login")
async def login(request: Request, phone_number: str = Form("")):
    return await _act(request, lambda c: c.login(phone_number))


@router.post("/logout")
async def logout(request: Request):
    return await _act(request, lambda c: c.logout())


# ── DASHBOARD ──────────────────────────────────────────────

@router.post("/route/start")
async def start_route(request: Request):
    return await _act(request, lambda c: c.start_route())


@router.post("/delivery/mark")
async def mark_delivered(request: Request):
    return await _act(request, lambda c: c.mark_delivered())


@router.post("/assignment/refresh")
async def refresh_assignment(request: Request):
    return await _act(request, lambda c: c.refresh())


@router.post("/availability")
async def toggle_availability(request: Request):
    return await _act(request, lambda c: c.toggle_availability())


# ── POD ────────────────────────────────────────────────────

@router.post("/delivery/confirm")
async def confirm_delivery(request: Request, recipient_name: str = Form("")):
    return await _act(request, lambda c: c.confirm_delivery(recipient_name))


@router.post("/delivery/cancel")
async def cancel_delivery(request: Request):
    return await _act(request, lambda c: c.cancel_pod())


# ── SUCCESS ────────────────────────────────────────────────

@router.post("/assignment/next")
async def find_next_assignment(request: Request):
    return await _act(request, lambda c: c.find_next())
