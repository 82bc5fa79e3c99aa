"""LLM provider backends and the retrying client."""

from .backends import BACKENDS, Backend, HttpCall
from .client import ProviderClient, classify_response, compute_backoff

__all__ = [
    "BACKENDS",
    "Backend",
    "HttpCall",
    "ProviderClient",
    "classify_response",
    "compute_backoff",
]
