"""Error taxonomy shared by the session store, auth client and composer.

Every error carries the HTTP status code the web layer answers with, so
that callers can translate failures without inspecting exception types.
"""


class AdminError(Exception):
    """Base class for all expected admin failures."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class StoreError(AdminError):
    """Raised when a session record cannot be persisted or read."""

    status_code = 500


class SessionNotFound(StoreError):
    """Raised when no session record exists for the requested id."""


class TransportError(AdminError):
    """Raised when an outbound HTTP call fails before a response arrives.

    Wraps requests exceptions (connection refused, DNS failure, timeout,
    undecodable body) so callers never depend on the HTTP library.
    """

    status_code = 500
