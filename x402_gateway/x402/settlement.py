# x402_gateway/x402/settlement.py
"""
Post-response payment settlement.

settle() runs after the client response has been committed. It only sees the
carried metadata, never the response, so it cannot change what the client
receives. Every outcome is logged and audited; nothing is raised or returned.
"""
import logging
from typing import Any, Dict, Optional

from x402_gateway.x402.audit import (
    log_payment_settled,
    log_settlement_failed,
    log_settlement_skipped,
)
from x402_gateway.x402.facilitator import FacilitatorClient, FacilitatorOk
from x402_gateway.x402.headers import CarriedMetadata
from x402_gateway.x402.models import UNKNOWN_TRANSACTION

logger = logging.getLogger(__name__)


def build_settle_payload(metadata: CarriedMetadata) -> Dict[str, Any]:
    """
    Build the /v1/settle request body.

    Raises:
        ValueError: If the carried amount is not an integer
    """
    return {
        "network": metadata.network,
        "transaction": metadata.transaction,
        "recipient": metadata.recipient,
        "amount": int(metadata.amount),
        "token": metadata.asset,
    }


def _skip_reason(metadata: Optional[CarriedMetadata]) -> Optional[str]:
    if metadata is None or not metadata.valid:
        return "payment not verified"
    if not metadata.transaction or metadata.transaction == UNKNOWN_TRANSACTION:
        return "missing transaction information"
    return None


def settle(metadata: Optional[CarriedMetadata], facilitator_client: FacilitatorClient) -> None:
    """
    Settle a verified payment with the facilitator.

    Args:
        metadata: Metadata carried from the verification phase
        facilitator_client: Client used to submit the settlement
    """
    skip_reason = _skip_reason(metadata)
    if skip_reason:
        logger.info(f"x402: Cannot settle: {skip_reason}")
        log_settlement_skipped(metadata.transaction if metadata else None, skip_reason)
        return

    transaction = metadata.transaction
    logger.info(f"x402: Settling payment for transaction: {transaction}")

    try:
        result = facilitator_client.settle(build_settle_payload(metadata))
    except Exception as e:
        # The client already paid and received the content
        logger.exception(f"x402: ERROR: Settlement failed for {transaction}")
        log_settlement_failed(transaction, f"{type(e).__name__}: {e}")
        return

    if not isinstance(result, FacilitatorOk):
        logger.error(f"x402: Settlement failed for {transaction}: {result.error}")
        log_settlement_failed(transaction, result.error)
        return

    signature = result.body.get("signature")
    logger.info(f"x402: Settlement successful for {transaction}")
    if signature:
        logger.info(f"x402: Settlement signature: {signature}")
    log_payment_settled(transaction, metadata.network, signature, result.body)
