"""Client-side access to the coordination core."""

from .api_client import GrappleClient, error_from_response, parse_sse_lines
from .decision_queue import DecisionBackend, DecisionQueue, refresh_filters
from .local import LocalBackend

__all__ = [
    "GrappleClient",
    "error_from_response",
    "parse_sse_lines",
    "DecisionBackend",
    "DecisionQueue",
    "refresh_filters",
    "LocalBackend",
]
