"""
Delivery Controller — runs one agent session's actions end to end.

Each action:
  1. claims the session's busy lock (a second action is refused, not queued)
  2. loads the state and validates the action (delivery_flow.begin)
  3. persists loading=True, calls the store gateway, applies the result
  4. persists the final state and releases the lock

Store state is only reflected locally after the store confirmed it.
"""

import logging
from typing import Awaitable, Callable

from mitra.config import settings
from mitra.schemas import Action, JobStatus, SessionState
from mitra.services import delivery_flow as flow
from mitra.services import session_store, store_gateway
from mitra.services.errors import InvalidTransition, SessionBusy, StoreError, StoreUnavailable

logger = logging.getLogger(__name__)

# Every store call is capped at STORE_TIMEOUT_SEC by store_gateway._send;
# login makes two of them back to back.
DEFAULT_LOCK_TTL_MS = int((settings.STORE_TIMEOUT_SEC * 2 + 5) * 1000)


class DeliveryController:
    """Owns the state of a single dashboard session."""

    def __init__(self, session_id: str, gateway=None, store=None,
                 lock_ttl_ms: int = DEFAULT_LOCK_TTL_MS):
        self.session_id = session_id
        self.gateway = gateway or store_gateway
        self.store = store or session_store
        self.lock_ttl_ms = lock_ttl_ms

    async def state(self) -> SessionState:
        return await self.store.load_session(self.session_id)

    async def take_alert(self) -> tuple[SessionState, str | None]:
        """Current state for rendering plus its one-shot alert, if any."""
        state = await self.state()
        state, alert = flow.pop_alert(state)
        if alert is not None:
            await self.store.save_session(self.session_id, state)
        return state, alert

    async def _run(
        self,
        action: Action,
        work: Callable[[SessionState], Awaitable[SessionState]],
    ) -> SessionState:
        token = await self.store.acquire_busy(self.session_id, self.lock_ttl_ms)
        if token is None:
            raise SessionBusy(flow.MSG_BUSY)

        try:
            state = await self.store.load_session(self.session_id)
            if state.loading:
                # Lock expired under a crashed action; its result never landed.
                logger.warning("Clearing stale loading flag on session %s…", self.session_id[:6])
                state = flow.settle(state)

            try:
                pending = flow.begin(state, action)
            except InvalidTransition as e:
                logger.info("Refused %s from %s: %s", action.value, state.view.value, e)
                state = flow.with_alert(state, str(e))
                await self.store.save_session(self.session_id, state)
                return state

            if pending.loading:
                await self.store.save_session(self.session_id, pending)
            try:
                final = await work(pending)
            except Exception:
                await self.store.save_session(self.session_id, flow.settle(pending))
                raise

            await self.store.save_session(self.session_id, final)
            return final
        finally:
            await self.store.release_busy(self.session_id, token)

    # ── LOGIN ──────────────────────────────────────────────

    async def login(self, phone_number: str) -> SessionState:
        phone = (phone_number or "").strip()

        async def work(pending: SessionState) -> SessionState:
            if not phone:
                return flow.login_rejected(pending, flow.MSG_PHONE_REQUIRED)
            try:
                agent = await self.gateway.lookup_agent(phone)
            except StoreUnavailable:
                return flow.login_rejected(pending, flow.MSG_CONNECTION_FAILED)
            if agent is None:
                return flow.login_rejected(pending, flow.MSG_AGENT_NOT_FOUND)

            job = await self.gateway.fetch_active_job(agent.id)
            logger.info(
                "Agent %s signed in, active job: %s", agent.id, job.id if job else "none",
            )
            return flow.login_succeeded(pending, agent, job)

        return await self._run(Action.LOGIN, work)

    # ── DASHBOARD ──────────────────────────────────────────

    async def start_route(self) -> SessionState:
        async def work(pending: SessionState) -> SessionState:
            try:
                job = await self.gateway.set_job_status(
                    pending.job.id, JobStatus.OUT_FOR_DELIVERY,
                )
            except StoreError as e:
                return flow.action_failed(pending, f"Could not start the route: {e}")
            return flow.route_started(pending, job)

        return await self._run(Action.START_ROUTE, work)

    async def mark_delivered(self) -> SessionState:
        async def work(pending: SessionState) -> SessionState:
            return flow.open_pod(pending)

        return await self._run(Action.MARK_DELIVERED, work)

    async def refresh(self) -> SessionState:
        async def work(pending: SessionState) -> SessionState:
            job = await self.gateway.fetch_active_job(pending.agent.id)
            return flow.assignment_loaded(pending, job)

        return await self._run(Action.REFRESH, work)

    async def toggle_availability(self) -> SessionState:
        async def work(pending: SessionState) -> SessionState:
            return flow.toggle_availability(pending)

        return await self._run(Action.TOGGLE_AVAILABILITY, work)

    # ── POD ────────────────────────────────────────────────

    async def confirm_delivery(self, recipient_name: str) -> SessionState:
        name = (recipient_name or "").strip()

        async def work(pending: SessionState) -> SessionState:
            if not name:
                return flow.action_failed(pending, flow.MSG_RECIPIENT_REQUIRED)

            pending = flow.capture_recipient(pending, name)
            try:
                job = await self.gateway.set_job_status(pending.job.id, JobStatus.DELIVERED)
            except StoreError as e:
                return flow.action_failed(pending, f"Could not confirm delivery: {e}")
            logger.info("Job %s delivered to %s", pending.job.id, name)
            return flow.delivery_confirmed(pending, job)

        return await self._run(Action.CONFIRM_DELIVERY, work)

    async def cancel_pod(self) -> SessionState:
        async def work(pending: SessionState) -> SessionState:
            return flow.cancel_pod(pending)

        return await self._run(Action.CANCEL_POD, work)

    # ── SUCCESS ────────────────────────────────────────────

    async def find_next(self) -> SessionState:
        async def work(pending: SessionState) -> SessionState:
            job = await self.gateway.fetch_active_job(pending.agent.id)
            return flow.assignment_loaded(pending, job)

        return await self._run(Action.FIND_NEXT, work)

    # ── Session end ────────────────────────────────────────

    async def logout(self) -> SessionState:
        """Forget the session. Refused while an action is still in flight."""
        token = await self.store.acquire_busy(self.session_id, self.lock_ttl_ms)
        if token is None:
            raise SessionBusy(flow.MSG_BUSY)
        try:
            await self.store.delete_session(self.session_id)
        finally:
            await self.store.release_busy(self.session_id, token)
        return flow.fresh()
