"""Framework-neutral response returned by the auth client and the composer.

The web layer copies these onto a Flask response; tests assert on them
directly without an HTTP stack.
"""

from dataclasses import dataclass, field
from typing import Dict

from session.errors import AdminError


SEE_OTHER = 303


@dataclass
class Response:
    """Status, headers and body of one handled request."""
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def location(self) -> str:
        return self.headers.get("Location", "")


def redirect(location: str, **headers: str) -> Response:
    """303 See Other to ``location``."""
    all_headers = {"Location": location}
    all_headers.update(headers)
    return Response(status_code=SEE_OTHER, headers=all_headers)


def error_response(error: AdminError) -> Response:
    """Translate an expected failure into its response."""
    return Response(status_code=error.status_code, body=error.message)
