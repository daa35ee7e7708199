# x402_gateway/x402/responses.py
"""
Client-visible responses of the payment gate.

- 402 Payment Required: no proof was presented; tells the client how to pay
- 402 Payment Invalid: a proof was presented and rejected
- 500 Internal Server Error: verification crashed; the detail is never sent
"""
from typing import Any, Dict, Optional, Union

from starlette.responses import JSONResponse

from x402_gateway.core.config import settings
from x402_gateway.x402.headers import X_PAYMENT_PROOF_HEADER
from x402_gateway.x402.models import InternalFault, PaymentRequirement, Rejected

X402_VERSION = 1
MAX_TIMEOUT_SECONDS = 60

X_PAYMENT_REQUIRED_HEADER = "X-Payment-Required"
X_PAYMENT_STATUS_HEADER = "X-Payment-Status"
X_PAYMENT_PROTOCOL_VERSION_HEADER = "X-Payment-Protocol-Version"

INTERNAL_ERROR_MESSAGE = "Payment verification failed due to internal error"


def payment_required_body(requirement: PaymentRequirement, resource_path: str) -> Dict[str, Any]:
    """Body of the 402 Payment Required response."""
    return {
        "error": "Payment Required",
        "message": "This resource requires a valid X402 payment",
        "x402Version": X402_VERSION,
        "paymentRequirements": {
            "scheme": requirement.scheme,
            "network": requirement.network,
            "description": requirement.description or f"Access to {resource_path}",
            "payTo": requirement.pay_to,
            "asset": requirement.asset,
            "maxAmountRequired": requirement.max_amount_required,
            "maxTimeoutSeconds": MAX_TIMEOUT_SECONDS,
        },
        "instructions": {
            "step1": "Sign a transaction with your wallet",
            "step2": f"Include the signed payment object in the {X_PAYMENT_PROOF_HEADER} header",
            "headerExample": f"{X_PAYMENT_PROOF_HEADER}: {{ x402PaymentObject }}",
        },
    }


def create_payment_required_response(
    requirement: PaymentRequirement,
    resource_path: str
) -> JSONResponse:
    """
    Create the 402 response for a metered route requested without a proof.

    Args:
        requirement: The route's payment requirement
        resource_path: Request path, used for the default description

    Returns:
        JSONResponse with 402 status, payment requirements and instructions
    """
    return JSONResponse(
        status_code=402,
        content=payment_required_body(requirement, resource_path),
        headers={
            "Content-Type": "application/json",
            X_PAYMENT_REQUIRED_HEADER: "x402",
            X_PAYMENT_STATUS_HEADER: "required",
            X_PAYMENT_PROTOCOL_VERSION_HEADER: settings.X402_PROTOCOL_VERSION,
        }
    )


def create_payment_invalid_response(reason: str) -> JSONResponse:
    """Create the 402 response for a rejected payment proof."""
    return JSONResponse(
        status_code=402,
        content={"error": "Payment Invalid", "message": reason},
        headers={
            "Content-Type": "application/json",
            X_PAYMENT_STATUS_HEADER: "invalid",
        }
    )


def create_internal_error_response() -> JSONResponse:
    """Create the 500 response for a verification fault."""
    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error", "message": INTERNAL_ERROR_MESSAGE},
        headers={"Content-Type": "application/json"}
    )


def create_rejection_response(
    outcome: Union[Rejected, InternalFault],
    requirement: Optional[PaymentRequirement],
    resource_path: str
) -> JSONResponse:
    """Map a non-allowed verification outcome to its response."""
    if isinstance(outcome, InternalFault):
        return create_internal_error_response()
    if outcome.payment_required:
        return create_payment_required_response(requirement, resource_path)
    return create_payment_invalid_response(outcome.reason)
