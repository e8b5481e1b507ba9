"""Shared helpers for API route modules."""

from starlette.requests import HTTPConnection

UNKNOWN_SOURCE = "unknown-ip"


def resolve_source_id(connection: HTTPConnection, header_name: str) -> str:
    """
    Identify the caller for per-source rate limiting.

    Prefers the configured client-IP header (set by the fronting proxy),
    then the socket peer address.
    """
    if header_name:
        value = connection.headers.get(header_name, "").strip()
        if value:
            return value
    if connection.client and connection.client.host:
        return connection.client.host
    return UNKNOWN_SOURCE
