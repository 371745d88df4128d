"""Exceptions shared by the store gateway and the delivery flow."""


class StoreError(Exception):
    """Base class for remote table store failures."""


class StoreUnavailable(StoreError):
    """Transport failure or timeout talking to the remote store."""


class StatusUpdateRejected(StoreError):
    """The remote store refused a job status update."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class FlowError(Exception):
    """Base class for actions the delivery flow refuses to run."""


class SessionBusy(FlowError):
    """Another action for the same session is still in flight."""


class InvalidTransition(FlowError):
    """The action is not legal from the session's current view or job status."""
