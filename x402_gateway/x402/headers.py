# x402_gateway/x402/headers.py
"""
Header contract between the verification and settlement phases.

The two phases share no process state. Verification attaches the carried
metadata to the request as X-Payment-* headers; the host echoes those headers
back when settlement runs, and settlement reads them from there.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

X_PAYMENT_PROOF_HEADER = "X-Payment-x402"

X_PAYMENT_VALID_HEADER = "X-Payment-Valid"
X_PAYMENT_NETWORK_HEADER = "X-Payment-Network"
X_PAYMENT_TX_HEADER = "X-Payment-Tx"
X_PAYMENT_PAYER_HEADER = "X-Payment-Payer"
X_PAYMENT_AMOUNT_HEADER = "X-Payment-Amount"
X_PAYMENT_TOKEN_HEADER = "X-Payment-Token"
X_PAYMENT_RECIPIENT_HEADER = "X-Payment-Recipient"

CARRIED_HEADERS = (
    X_PAYMENT_VALID_HEADER,
    X_PAYMENT_NETWORK_HEADER,
    X_PAYMENT_TX_HEADER,
    X_PAYMENT_PAYER_HEADER,
    X_PAYMENT_AMOUNT_HEADER,
    X_PAYMENT_TOKEN_HEADER,
    X_PAYMENT_RECIPIENT_HEADER,
)


def normalize_header_value(value: Any) -> Optional[str]:
    """
    Collapse a header value that may be a scalar or a list into one string.

    Args:
        value: Header value as received from the host (str, list, tuple or None)

    Returns:
        The first value as a string, or None if there is no value
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        if not value:
            return None
        value = value[0]
    if isinstance(value, bytes):
        value = value.decode("latin-1")
    return str(value)


def get_header(headers: Mapping[str, Any], name: str) -> Optional[str]:
    """Case-insensitive, normalized header lookup over any mapping."""
    if headers is None:
        return None
    value = headers.get(name)
    if value is None:
        wanted = name.lower()
        for key, candidate in headers.items():
            if key.lower() == wanted:
                value = candidate
                break
    return normalize_header_value(value)


def is_header_safe(value: str) -> bool:
    """Check that a value can be carried as a single latin-1 header value."""
    try:
        value.encode("latin-1")
    except UnicodeEncodeError:
        return False
    return "\r" not in value and "\n" not in value


@dataclass(frozen=True)
class CarriedMetadata:
    """Verification result forwarded to the settlement phase."""
    valid: bool
    network: Optional[str] = None
    transaction: Optional[str] = None
    payer: Optional[str] = None
    amount: Optional[str] = None
    asset: Optional[str] = None
    recipient: Optional[str] = None

    def to_headers(self) -> Dict[str, str]:
        """Serialize to the carried header set. Invalid metadata carries nothing."""
        if not self.valid:
            return {}
        values = {
            X_PAYMENT_VALID_HEADER: "true",
            X_PAYMENT_NETWORK_HEADER: self.network,
            X_PAYMENT_TX_HEADER: self.transaction,
            X_PAYMENT_PAYER_HEADER: self.payer,
            X_PAYMENT_AMOUNT_HEADER: self.amount,
            X_PAYMENT_TOKEN_HEADER: self.asset,
            X_PAYMENT_RECIPIENT_HEADER: self.recipient,
        }
        return {name: value for name, value in values.items() if value is not None}

    def raw_headers(self) -> List[Tuple[bytes, bytes]]:
        """Encode the carried headers as ASGI scope header pairs."""
        return [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in self.to_headers().items()
        ]

    @classmethod
    def from_headers(cls, headers: Mapping[str, Any]) -> "CarriedMetadata":
        """Parse carried headers. Anything but the literal "true" is not valid."""
        return cls(
            valid=get_header(headers, X_PAYMENT_VALID_HEADER) == "true",
            network=get_header(headers, X_PAYMENT_NETWORK_HEADER),
            transaction=get_header(headers, X_PAYMENT_TX_HEADER),
            payer=get_header(headers, X_PAYMENT_PAYER_HEADER),
            amount=get_header(headers, X_PAYMENT_AMOUNT_HEADER),
            asset=get_header(headers, X_PAYMENT_TOKEN_HEADER),
            recipient=get_header(headers, X_PAYMENT_RECIPIENT_HEADER),
        )
