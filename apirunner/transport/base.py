"""
Abstract base class for HTTP transports.

The executor never talks to the network directly; it hands resolved requests
to an ``HttpTransport`` and receives a ``TransportResponse``.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TransportResponse(BaseModel):
    """Raw outcome of one HTTP call."""

    status: int = Field(..., description="HTTP status code")
    body: Any = Field(default=None, description="Parsed JSON body, or text for non-JSON responses")
    headers: Dict[str, Any] = Field(default_factory=dict, description="Response headers, lower-case names")
    timing: Dict[str, Any] = Field(default_factory=dict, description="Timing breakdown in milliseconds")
    full_url: Optional[str] = Field(default=None, description="URL the request was sent to")
    content_type: Optional[str] = None


class HttpTransport(ABC):
    """
    Abstract base class for HTTP transports.

    Implementations select the target system, acquire credentials and send
    the request.
    """

    @abstractmethod
    async def send(
        self,
        system: Optional[str],
        url: str,
        method: str,
        payload: Any = None,
        auth: Optional[str] = None,
        language: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> TransportResponse:
        """
        Send one request.

        Args:
            system: Name of the target system, None for the default system
            url: Endpoint URL relative to the system base URL
            method: HTTP method
            payload: JSON payload, None for no body
            auth: Authorization header value overriding the system credentials
            language: Accept-Language header value
            headers: Extra request headers

        Returns:
            TransportResponse: The response

        Raises:
            NetworkError: If the request could not be completed
        """
        pass

    async def close(self) -> None:
        """Release resources held by the transport."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
