"""
Exceptions raised by VaultProgress.

Telemetry writes never raise these outward; see services/reporting.py.
"""


class VaultProgressError(Exception):
    """Base class for all VaultProgress errors."""


class SubscriptionLimitError(VaultProgressError):
    """The change feed is already serving its maximum number of subscriptions."""

    def __init__(self, limit: int):
        super().__init__(f"Subscription limit reached ({limit} active)")
        self.limit = limit


class SessionNotFoundError(VaultProgressError):
    """No extraction session exists with the given id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class JobTriggerError(VaultProgressError):
    """The extraction job could not be (re)started."""
