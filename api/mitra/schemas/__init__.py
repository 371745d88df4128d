"""Pydantic models for the agent session and the remote store records."""

from __future__ import annotations
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field


# ── Enums ──────────────────────────────────────────────────

class JobStatus(str, Enum):
    PENDING = "Pending"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"


ACTIVE_JOB_STATUSES = (JobStatus.PENDING, JobStatus.OUT_FOR_DELIVERY)


class View(str, Enum):
    LOGIN = "LOGIN"
    DASHBOARD = "DASHBOARD"
    POD = "POD"
    SUCCESS = "SUCCESS"


class Action(str, Enum):
    LOGIN = "login"
    START_ROUTE = "start_route"
    MARK_DELIVERED = "mark_delivered"
    CONFIRM_DELIVERY = "confirm_delivery"
    CANCEL_POD = "cancel_pod"
    FIND_NEXT = "find_next"
    REFRESH = "refresh"
    TOGGLE_AVAILABILITY = "toggle_availability"


# ── Store Records ──────────────────────────────────────────

class Agent(BaseModel):
    id: str
    phone_number: str
    full_name: str | None = None

    class Config:
        extra = "allow"


class Job(BaseModel):
    id: str
    status: JobStatus
    customer_name: str | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    # Pass-through order metadata
    quantity: int | None = None
    total_amount: float | None = None
    payment_mode: str | None = None
    created_at: datetime | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


# ── Session ────────────────────────────────────────────────

class SessionState(BaseModel):
    """Everything one agent's dashboard session knows. Starts at LOGIN."""
    view: View = View.LOGIN
    loading: bool = False
    error: str | None = None      # LOGIN only
    alert: str | None = None      # shown once, then cleared
    agent: Agent | None = None
    job: Job | None = None
    recipient_name: str = ""
    online: bool = True
    updated_at: datetime = Field(default_factory=datetime.utcnow)
