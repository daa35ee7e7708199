# x402_gateway/x402/middleware.py
"""
Starlette middleware that runs the x402 payment gate.

This module is the host adapter for the two payment phases:
1. Resolves the payment requirement of the exact path/method
2. Verifies the X-Payment-x402 proof via the facilitator
3. Returns 402/500 when verification does not allow access
4. Attaches the carried X-Payment-* headers to the request and calls the app
5. Schedules settlement to run after the response has been sent
"""
import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.background import BackgroundTask, BackgroundTasks
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware

from x402_gateway.x402.audit import (
    log_payment_rejected,
    log_payment_required_sent,
    log_payment_verified,
    log_settlement_skipped,
    log_verification_fault,
)
from x402_gateway.x402.facilitator import FacilitatorClient
from x402_gateway.x402.headers import CARRIED_HEADERS, X_PAYMENT_PROOF_HEADER, CarriedMetadata
from x402_gateway.x402.models import InternalFault, Rejected
from x402_gateway.x402.responses import create_rejection_response
from x402_gateway.x402.routes import RouteConfig, resolve_payment_requirement
from x402_gateway.x402.settlement import settle
from x402_gateway.x402.verification import verify

logger = logging.getLogger(__name__)

_CARRIED_HEADER_KEYS = {name.lower().encode("latin-1") for name in CARRIED_HEADERS}

# request.state flag set by the app when a metered resource was not served
RESOURCE_UNAVAILABLE_STATE = "x402_resource_unavailable"


def strip_carried_headers(request: Request) -> None:
    """Remove client-supplied X-Payment-* carried headers from the request scope."""
    request.scope["headers"] = [
        (key, value) for key, value in request.scope["headers"]
        if key.lower() not in _CARRIED_HEADER_KEYS
    ]


def attach_carried_headers(request: Request, metadata: CarriedMetadata) -> None:
    """Add the carried metadata headers to the request scope seen by the app."""
    request.scope["headers"] = list(request.scope["headers"]) + metadata.raw_headers()


def mark_resource_unavailable(request: Request) -> None:
    """Record that the resource could not be served; the payment is then not settled."""
    setattr(request.state, RESOURCE_UNAVAILABLE_STATE, True)


def is_resource_unavailable(request: Request) -> bool:
    return getattr(request.state, RESOURCE_UNAVAILABLE_STATE, False)


def read_carried_headers(request: Request) -> CarriedMetadata:
    """Read the carried metadata back from the request scope."""
    return CarriedMetadata.from_headers(Headers(scope=request.scope))


def add_background_task(response: Response, task: BackgroundTask) -> None:
    """Run task after the response is sent, keeping any existing background work."""
    if response.background is None:
        response.background = task
        return
    tasks = BackgroundTasks()
    tasks.add_task(response.background)
    tasks.add_task(task)
    response.background = tasks


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment gate for FastAPI.

    Requests to routes without a payment requirement pass through unchanged.
    Metered routes are only served after the facilitator verified the proof,
    and the payment is settled once the response is on the wire.
    """

    def __init__(
        self,
        app,
        route_config: Optional[RouteConfig] = None,
        facilitator_client: Optional[FacilitatorClient] = None
    ):
        super().__init__(app)
        self.route_config = route_config or RouteConfig()
        self._facilitator_client = facilitator_client

    @property
    def facilitator_client(self) -> FacilitatorClient:
        """Lazy initialization of facilitator client."""
        if self._facilitator_client is None:
            self._facilitator_client = FacilitatorClient.from_settings()
        return self._facilitator_client

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        path = request.url.path
        method = request.method

        # Carried headers are only ever set by verification
        strip_carried_headers(request)

        requirement = resolve_payment_requirement(path, method, self.route_config)
        if requirement is None:
            return await call_next(request)

        logger.info(f"x402: Processing metered request: {method} {path}")

        raw_proof = request.headers.getlist(X_PAYMENT_PROOF_HEADER)
        outcome = await run_in_threadpool(verify, raw_proof, requirement, self.facilitator_client)

        if isinstance(outcome, InternalFault):
            log_verification_fault(path, outcome.reason)
            return create_rejection_response(outcome, requirement, path)

        if isinstance(outcome, Rejected):
            if outcome.payment_required:
                logger.info(f"x402: No payment header found for {path}")
                log_payment_required_sent(path, method, requirement.max_amount_required, requirement.network)
            else:
                log_payment_rejected(path, method, outcome.code.value, outcome.reason)
            return create_rejection_response(outcome, requirement, path)

        metadata = outcome.metadata
        if metadata is None:
            return await call_next(request)

        attach_carried_headers(request, metadata)
        logger.info(f"x402: Payment verified successfully for {path} (tx {metadata.transaction})")
        log_payment_verified(path, metadata.transaction, metadata.payer, metadata.amount, metadata.network)

        setattr(request.state, RESOURCE_UNAVAILABLE_STATE, False)
        response = await call_next(request)

        echoed = read_carried_headers(request)
        if echoed != metadata:
            logger.error(f"x402: Carried payment headers were not echoed unchanged for {path}, not settling")
            log_settlement_skipped(metadata.transaction, "carried headers altered by host")
            return response

        if is_resource_unavailable(request):
            logger.warning(f"x402: Resource for {path} was not served (status {response.status_code}), not settling")
            log_settlement_skipped(metadata.transaction, "resource unavailable")
            return response

        add_background_task(response, BackgroundTask(settle, echoed, self.facilitator_client))
        return response
