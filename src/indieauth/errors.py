"""Failures of the IndieAuth login flow.

The callback is fail-closed: each of these aborts it before the session is
marked authenticated.
"""

from session.errors import AdminError


class DiscoveryError(AdminError):
    """Profile URL unreachable, not 200, or missing an authorization_endpoint."""

    status_code = 400


class CSRFMismatch(AdminError):
    """The stored session's state does not match the state on the callback."""

    status_code = 403


class ProviderRejected(AdminError):
    """The token endpoint is missing, answered non-200, or sent an unusable body."""

    status_code = 403


class DomainMismatch(AdminError):
    """The identity returned by the token endpoint is not the one that logged in."""

    status_code = 403
