# x402_gateway/x402/verification.py
"""
Pre-access payment verification.

verify() decides whether a request may reach the upstream resource. Each
step returns early with a Rejected outcome on failure; the facilitator being
unavailable is a rejection too (fail-closed). Only an unexpected exception
escapes the steps, and it is turned into InternalFault at one boundary.
"""
import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from x402_gateway.x402.facilitator import (
    DecodeFailure,
    FacilitatorClient,
    FacilitatorOk,
    ProtocolFailure,
    TransportFailure,
)
from x402_gateway.x402.headers import CarriedMetadata, is_header_safe, normalize_header_value
from x402_gateway.x402.models import (
    ANONYMOUS_PAYER,
    UNKNOWN_TRANSACTION,
    Allowed,
    InternalFault,
    PaymentErrorCode,
    PaymentProof,
    PaymentRequirement,
    Rejected,
    VerificationOutcome,
)

logger = logging.getLogger(__name__)

SPL_TOKEN_KIND = "spl-token"

NO_PAYMENT_REASON = "No payment provided"
MALFORMED_PROOF_REASON = "Invalid JSON in X-Payment-x402 header"
NOT_VALID_REASON = "Payment not valid"
UNCARRIABLE_METADATA_REASON = "Facilitator returned a transaction or payer that is not a valid header value"

FAILURE_CODES = {
    TransportFailure: PaymentErrorCode.FACILITATOR_UNREACHABLE,
    ProtocolFailure: PaymentErrorCode.FACILITATOR_PROTOCOL_ERROR,
    DecodeFailure: PaymentErrorCode.FACILITATOR_DECODE_ERROR,
}


def parse_payment_proof(raw_proof_header: str) -> Optional[PaymentProof]:
    """
    Parse the X-Payment-x402 header value.

    Returns:
        PaymentProof, or None if the value is not a JSON object
    """
    try:
        data = json.loads(raw_proof_header)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"x402: Failed to parse payment header: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning(f"x402: Payment header is not a JSON object: {type(data).__name__}")
        return None

    try:
        return PaymentProof.model_validate(data)
    except ValidationError as e:
        logger.warning(f"x402: Payment header has unexpected fields: {e}")
        return None


def build_verify_payload(proof: PaymentProof, requirement: PaymentRequirement) -> Dict[str, Any]:
    """Build the /v1/verify request body."""
    payment_requirements = {
        "network": requirement.network,
        "kind": SPL_TOKEN_KIND,
        "recipient": requirement.pay_to,
        "amount": requirement.amount,
        "token": requirement.asset,
    }
    if requirement.fee_payer:
        payment_requirements["feePayer"] = requirement.fee_payer

    return {
        "paymentPayload": {
            "network": requirement.network,
            "transaction": proof.transaction_payload,
        },
        "paymentRequirements": payment_requirements,
    }


def _verify_steps(
    raw_proof_header: Any,
    requirement: Optional[PaymentRequirement],
    facilitator_client: FacilitatorClient
) -> VerificationOutcome:
    if requirement is None:
        return Allowed()

    raw_proof_header = normalize_header_value(raw_proof_header)
    if not raw_proof_header:
        return Rejected(PaymentErrorCode.NO_PAYMENT_PROVIDED, NO_PAYMENT_REASON)

    proof = parse_payment_proof(raw_proof_header)
    if proof is None:
        return Rejected(PaymentErrorCode.MALFORMED_PROOF, MALFORMED_PROOF_REASON)

    logger.info(f"x402: Verifying payment with facilitator {facilitator_client.base_url}")
    result = facilitator_client.verify(build_verify_payload(proof, requirement))

    if not isinstance(result, FacilitatorOk):
        logger.warning(f"x402: Payment verification failed: {result.error}")
        return Rejected(FAILURE_CODES[type(result)], result.error)

    body = result.body
    if not body.get("isValid"):
        reason = body.get("error") or body.get("message") or NOT_VALID_REASON
        logger.warning(f"x402: Payment validation failed: {reason}")
        return Rejected(PaymentErrorCode.PAYMENT_REJECTED, str(reason))

    metadata = CarriedMetadata(
        valid=True,
        network=requirement.network,
        transaction=str(body.get("transaction") or UNKNOWN_TRANSACTION),
        payer=str(body.get("payer") or ANONYMOUS_PAYER),
        amount=requirement.max_amount_required,
        asset=requirement.asset,
        recipient=requirement.pay_to,
    )
    if not all(is_header_safe(value) for value in metadata.to_headers().values()):
        logger.warning(
            f"x402: Facilitator metadata cannot be carried in headers "
            f"(transaction={metadata.transaction!r}, payer={metadata.payer!r})"
        )
        return Rejected(PaymentErrorCode.FACILITATOR_DECODE_ERROR, UNCARRIABLE_METADATA_REASON)

    return Allowed(metadata=metadata)


def verify(
    raw_proof_header: Any,
    requirement: Optional[PaymentRequirement],
    facilitator_client: FacilitatorClient
) -> VerificationOutcome:
    """
    Decide whether a request may access a metered resource.

    Args:
        raw_proof_header: Value of the X-Payment-x402 header (string or list), if any
        requirement: Payment requirement for the route, None if unmetered
        facilitator_client: Client used to verify the proof

    Returns:
        Allowed (with carried metadata when a payment was verified),
        Rejected, or InternalFault if verification itself crashed
    """
    try:
        return _verify_steps(raw_proof_header, requirement, facilitator_client)
    except Exception as e:
        logger.exception("x402: CRITICAL ERROR during payment verification")
        return InternalFault(reason=f"{type(e).__name__}: {e}")
