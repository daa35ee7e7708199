# x402_gateway/x402/audit.py
"""
Audit trail for x402 payment events.

Events are appended as JSON lines to X402_AUDIT_LOG_PATH when
X402_AUDIT_ENABLED is set. The trail is for debugging and reconciliation by
operators; the gateway never reads it back to make decisions.

Events logged:
- Payment required (path, method, amount)
- Payment rejected (error code, reason)
- Payment verified (transaction, payer, amount)
- Verification fault (internal detail, never sent to the client)
- Settlement skipped / settled / failed
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from x402_gateway.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_VERIFIED = "payment_verified"
    VERIFICATION_FAULT = "verification_fault"
    SETTLEMENT_SKIPPED = "settlement_skipped"
    PAYMENT_SETTLED = "payment_settled"
    SETTLEMENT_FAILED = "settlement_failed"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.X402_AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Create an audit event dictionary."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an audit event to the x402 audit log.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        request_id: Unique request identifier (if available)

    Returns:
        The request_id used for this event, or None if auditing is disabled
        or the write failed
    """
    if not settings.X402_AUDIT_ENABLED:
        return None

    event = create_audit_event(event_type=event_type, data=data, request_id=request_id)

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except OSError as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


# Convenience functions for specific event types

def log_payment_required_sent(path: str, method: str, amount: str, network: str) -> Optional[str]:
    """Log that a 402 Payment Required was returned."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REQUIRED_SENT,
        data={"path": path, "method": method, "amount": amount, "network": network}
    )


def log_payment_rejected(path: str, method: str, code: str, reason: str) -> Optional[str]:
    """Log a rejected payment proof."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REJECTED,
        data={"path": path, "method": method, "code": code, "reason": reason}
    )


def log_payment_verified(
    path: str,
    transaction: Optional[str],
    payer: Optional[str],
    amount: Optional[str],
    network: Optional[str]
) -> Optional[str]:
    """Log a payment accepted by the facilitator."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_VERIFIED,
        data={
            "path": path,
            "transaction": transaction,
            "payer": payer,
            "amount": amount,
            "network": network,
        }
    )


def log_verification_fault(path: str, detail: str) -> Optional[str]:
    """Log an internal verification fault with its full detail."""
    return log_audit_event(
        event_type=AuditEventType.VERIFICATION_FAULT,
        data={"path": path, "detail": detail}
    )


def log_settlement_skipped(transaction: Optional[str], reason: str) -> Optional[str]:
    """Log a settlement that was not attempted."""
    return log_audit_event(
        event_type=AuditEventType.SETTLEMENT_SKIPPED,
        data={"transaction": transaction, "reason": reason}
    )


def log_payment_settled(
    transaction: str,
    network: Optional[str],
    signature: Optional[str],
    response: Dict[str, Any]
) -> Optional[str]:
    """Log a successful settlement."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_SETTLED,
        data={
            "transaction": transaction,
            "network": network,
            "signature": signature,
            "response": response,
        }
    )


def log_settlement_failed(transaction: Optional[str], error: str) -> Optional[str]:
    """Log a failed settlement."""
    return log_audit_event(
        event_type=AuditEventType.SETTLEMENT_FAILED,
        data={"transaction": transaction, "error": error}
    )


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None
) -> list:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)

    Returns:
        List of audit events (most recent first)
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    events = []
    with open(log_path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            if event_type and event.get("event_type") != event_type.value:
                continue
            events.append(event)

    return list(reversed(events))[:max_entries]
