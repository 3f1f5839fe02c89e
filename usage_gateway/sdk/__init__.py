"""
SDK for the upstream analytics API.

Provides the async usage query client and its error classification.
"""

from .usage_client import TransportError, UpstreamError, UsageClient, UsageClientError

__all__ = ["UsageClient", "UsageClientError", "UpstreamError", "TransportError"]
