"""
Delivery Flow — the agent dashboard's view state machine.

Views: LOGIN → DASHBOARD ⇄ POD → SUCCESS → DASHBOARD

Every function here is pure: it takes a SessionState and returns a new one
(or raises a FlowError), never touching the store. Remote work happens in
DeliveryController between `begin()` and the matching result function.
"""

from datetime import datetime

from mitra.schemas import Action, Agent, Job, JobStatus, SessionState, View
from mitra.services.errors import InvalidTransition, SessionBusy

# ── User-facing messages ───────────────────────────────────

MSG_PHONE_REQUIRED = "Please enter your registered phone number."
MSG_AGENT_NOT_FOUND = "Agent not found. Check the number or contact your hub manager."
MSG_CONNECTION_FAILED = "Connection failed. Please check your network and try again."
MSG_RECIPIENT_REQUIRED = "Please enter the name of the person who received the order."
MSG_BUSY = "Please wait, your last action is still being processed."

# Actions that call the remote store and therefore hold the loading flag
REMOTE_ACTIONS = frozenset({
    Action.LOGIN,
    Action.START_ROUTE,
    Action.CONFIRM_DELIVERY,
    Action.FIND_NEXT,
    Action.REFRESH,
})


def _update(state: SessionState, **changes) -> SessionState:
    changes.setdefault("updated_at", datetime.utcnow())
    return state.model_copy(update=changes)


def _job_status(state: SessionState) -> JobStatus | None:
    return state.job.status if state.job else None


# ── Preconditions ──────────────────────────────────────────

def precondition_error(state: SessionState, action: Action) -> str | None:
    """Why `action` is not legal right now, or None if it is."""
    view, status = state.view, _job_status(state)

    if action == Action.LOGIN:
        if view != View.LOGIN:
            return "Already signed in."
    elif action == Action.START_ROUTE:
        if view != View.DASHBOARD or status is None:
            return "No assignment to start."
        if status != JobStatus.PENDING:
            return f"Route already started (order is {status.value})."
    elif action == Action.MARK_DELIVERED:
        if view != View.DASHBOARD or status is None:
            return "No assignment to deliver."
        if status != JobStatus.OUT_FOR_DELIVERY:
            return f"Order must be Out for Delivery (it is {status.value})."
    elif action == Action.CONFIRM_DELIVERY:
        if view != View.POD or status != JobStatus.OUT_FOR_DELIVERY:
            return "Nothing to confirm."
    elif action == Action.CANCEL_POD:
        if view != View.POD:
            return "Nothing to cancel."
    elif action == Action.FIND_NEXT:
        if view != View.SUCCESS or state.agent is None:
            return "Finish the current delivery first."
    elif action in (Action.REFRESH, Action.TOGGLE_AVAILABILITY):
        if view != View.DASHBOARD or state.agent is None:
            return "Sign in first."
    return None


def is_allowed(state: SessionState, action: Action) -> bool:
    return not state.loading and precondition_error(state, action) is None


def available_actions(state: SessionState) -> set[Action]:
    """Actions the current view may offer as buttons."""
    return {a for a in Action if is_allowed(state, a)}


def _check(state: SessionState, action: Action) -> None:
    if state.loading:
        raise SessionBusy(MSG_BUSY)
    reason = precondition_error(state, action)
    if reason:
        raise InvalidTransition(reason)


# ── Start / finish of remote actions ───────────────────────

def begin(state: SessionState, action: Action) -> SessionState:
    """Validate `action` and mark the session loading."""
    _check(state, action)
    changes = {"loading": action in REMOTE_ACTIONS, "alert": None}
    if action == Action.LOGIN:
        changes["error"] = None
    return _update(state, **changes)


def login_rejected(state: SessionState, message: str) -> SessionState:
    """Stay on LOGIN with an inline error; no agent is kept."""
    return _update(
        state, view=View.LOGIN, loading=False, error=message, agent=None, job=None,
    )


def login_succeeded(state: SessionState, agent: Agent, job: Job | None) -> SessionState:
    return _update(
        state, view=View.DASHBOARD, loading=False, error=None, agent=agent, job=job,
    )


def route_started(state: SessionState, job: Job | None = None) -> SessionState:
    """Reflect a confirmed Pending → Out for Delivery update."""
    if job is None:
        job = state.job.model_copy(update={"status": JobStatus.OUT_FOR_DELIVERY})
    return _update(state, loading=False, job=job)


def capture_recipient(state: SessionState, recipient_name: str) -> SessionState:
    """Keep the POD input so a failed confirm can be retried as typed."""
    return _update(state, recipient_name=recipient_name)


def delivery_confirmed(state: SessionState, job: Job | None = None) -> SessionState:
    """Reflect a confirmed Delivered update and show SUCCESS."""
    if job is None:
        job = state.job.model_copy(update={"status": JobStatus.DELIVERED})
    return _update(state, view=View.SUCCESS, loading=False, job=job)


def assignment_loaded(state: SessionState, job: Job | None) -> SessionState:
    """Show the freshly fetched assignment (or the empty state) on DASHBOARD."""
    return _update(
        state, view=View.DASHBOARD, loading=False, job=job, recipient_name="",
    )


def action_failed(state: SessionState, alert: str) -> SessionState:
    """Drop the loading flag and raise an alert; view and job stay as they were."""
    return _update(state, loading=False, alert=alert)


def settle(state: SessionState) -> SessionState:
    """Release the loading flag without any other change."""
    return _update(state, loading=False)


# ── Local-only transitions ─────────────────────────────────

def open_pod(state: SessionState) -> SessionState:
    _check(state, Action.MARK_DELIVERED)
    return _update(state, view=View.POD, alert=None, recipient_name="")


def cancel_pod(state: SessionState) -> SessionState:
    _check(state, Action.CANCEL_POD)
    return _update(state, view=View.DASHBOARD, alert=None)


def toggle_availability(state: SessionState) -> SessionState:
    _check(state, Action.TOGGLE_AVAILABILITY)
    return _update(state, online=not state.online)


def with_alert(state: SessionState, alert: str) -> SessionState:
    return _update(state, alert=alert)


def pop_alert(state: SessionState) -> tuple[SessionState, str | None]:
    """Take the pending alert for display and clear it from the state."""
    if state.alert is None:
        return state, None
    return _update(state, alert=None), state.alert


def fresh() -> SessionState:
    return SessionState()
