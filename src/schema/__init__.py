"""Schema Package - JSON Schema Loading and Validation.

This package provides centralized loading of the JSON schemas used to
validate data crossing a trust boundary: session records read back from a
session store, and token endpoint responses.

Available Schemas:
    USER_SESSION_SCHEMA: JSON Schema for serialized UserSession records.
    TOKEN_RESPONSE_SCHEMA: JSON Schema for IndieAuth token endpoint
        authorization-code responses.

Usage Patterns:
    from schema import USER_SESSION_SCHEMA
    validate(instance=record, schema=USER_SESSION_SCHEMA)
"""
from .schema import (
    USER_SESSION_SCHEMA,
    TOKEN_RESPONSE_SCHEMA,
    get_user_session_schema,
    get_token_response_schema,
)

__all__ = [
    "USER_SESSION_SCHEMA",
    "TOKEN_RESPONSE_SCHEMA",
    "get_user_session_schema",
    "get_token_response_schema",
]
