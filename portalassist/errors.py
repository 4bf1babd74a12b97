"""
Typed failures shared by the transport, orchestrator and HTTP layer.

Only configuration and transport problems are raised. Terminal run states,
timeouts and tool failures are ordinary outcomes and never leave the
orchestrator as exceptions.
"""

from __future__ import annotations

# Statuses worth polling through: rate limits and server-side hiccups.
TRANSIENT_STATUS_CODES = (408, 429, 500, 502, 503, 504)


class PortalAssistError(Exception):
    """Base class for everything PortalAssist raises on purpose."""


class ConfigurationError(PortalAssistError):
    """Credentials or identifiers are missing."""


class RunInFlightError(PortalAssistError):
    """A send was attempted while a run is still active."""

    def __init__(self, thread_id: str | None = None):
        self.thread_id = thread_id
        super().__init__("A run is already in progress for this conversation")


class TransportError(PortalAssistError):
    """
    A remote call failed, either on the network or with a non-2xx status.

    stage is the human-readable label of the failed step, e.g.
    "Failed to create thread". status_code is None for network failures.
    """

    def __init__(self, stage: str, status_code: int | None = None, message: str = ""):
        self.stage = stage
        self.status_code = status_code
        self.message = message
        detail = f"HTTP {status_code}" if status_code is not None else "network error"
        super().__init__(f"{stage}: {detail}{': ' + message if message else ''}")

    @property
    def transient(self) -> bool:
        """True when the same call may succeed if tried again later."""
        if self.status_code is None:
            return True
        return self.status_code in TRANSIENT_STATUS_CODES

    @property
    def api_message(self) -> str:
        """Best user-facing description, mirroring the remote API's wording."""
        if self.message:
            return self.message
        if self.status_code == 401:
            return "Invalid API key."
        if self.status_code == 404:
            return "Assistant not found."
        return self.stage
