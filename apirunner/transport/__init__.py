"""HTTP transports and target systems."""

from .base import HttpTransport, TransportResponse
from .httpx_transport import HttpxTransport
from .systems import SystemRegistry

__all__ = [
    "HttpTransport",
    "TransportResponse",
    "HttpxTransport",
    "SystemRegistry",
]
