# x402_gateway/x402/facilitator.py
"""
HTTP client for the x402 facilitator.

The facilitator exposes two JSON endpoints:
- POST /v1/verify: checks a payment proof against a payment requirement
- POST /v1/settle: submits a verified payment on-chain

Every call is a single attempt with a bounded timeout. Failures are not
raised; they are classified into result variants so callers can tell
"facilitator unreachable" apart from "facilitator rejected the payment".
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

import requests
from requests.exceptions import RequestException

from x402_gateway.core.config import settings

logger = logging.getLogger(__name__)


class FacilitatorOperation(Enum):
    """Facilitator endpoints, by path."""
    VERIFY = "/v1/verify"
    SETTLE = "/v1/settle"


@dataclass(frozen=True)
class FacilitatorOk:
    """2xx response with a JSON object body."""
    body: Dict[str, Any]


@dataclass(frozen=True)
class TransportFailure:
    """No response: connection refused, DNS failure, timeout."""
    cause: str

    @property
    def error(self) -> str:
        return f"Failed to communicate with facilitator (no response): {self.cause}"


@dataclass(frozen=True)
class ProtocolFailure:
    """Response with a status outside 2xx."""
    status_code: int
    body: str

    @property
    def error(self) -> str:
        return f"Facilitator returned status {self.status_code}: {self.body}"


@dataclass(frozen=True)
class DecodeFailure:
    """2xx response whose body is not a JSON object."""
    cause: str

    @property
    def error(self) -> str:
        return f"Failed to parse facilitator response body: {self.cause}"


FacilitatorResult = Union[FacilitatorOk, TransportFailure, ProtocolFailure, DecodeFailure]


class FacilitatorClient:
    """
    Synchronous facilitator client.

    Args:
        base_url: Facilitator base URL, e.g. https://facilitator.emfi.dev
        timeout: Per-call timeout in seconds
        session: Optional requests session (defaults to module-level requests)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        self.base_url = str(base_url).rstrip("/")
        self.timeout = timeout
        self._http = session or requests

    @classmethod
    def from_settings(cls) -> "FacilitatorClient":
        """Build a client from the process-wide settings."""
        return cls(
            base_url=str(settings.X402_FACILITATOR_URL),
            timeout=settings.X402_FACILITATOR_TIMEOUT_SECONDS
        )

    def call(self, operation: FacilitatorOperation, payload: Dict[str, Any]) -> FacilitatorResult:
        """
        POST a JSON payload to a facilitator endpoint.

        Args:
            operation: Which endpoint to call
            payload: JSON-serializable request body

        Returns:
            FacilitatorOk on success, otherwise the classified failure
        """
        url = f"{self.base_url}{operation.value}"
        try:
            response = self._http.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout
            )
        except RequestException as e:
            logger.warning(f"x402: Facilitator unreachable ({url}): {e}")
            return TransportFailure(cause=str(e))

        if not 200 <= response.status_code < 300:
            logger.warning(f"x402: Facilitator {operation.name.lower()} returned status {response.status_code}")
            return ProtocolFailure(status_code=response.status_code, body=response.text)

        try:
            body = response.json()
        except ValueError as e:
            return DecodeFailure(cause=str(e))

        if not isinstance(body, dict):
            return DecodeFailure(cause=f"expected a JSON object, got {type(body).__name__}")

        return FacilitatorOk(body=body)

    def verify(self, payload: Dict[str, Any]) -> FacilitatorResult:
        """Call POST /v1/verify."""
        return self.call(FacilitatorOperation.VERIFY, payload)

    def settle(self, payload: Dict[str, Any]) -> FacilitatorResult:
        """Call POST /v1/settle."""
        return self.call(FacilitatorOperation.SETTLE, payload)
