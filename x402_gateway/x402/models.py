# x402_gateway/x402/models.py
"""
Data model for x402 payment gating.

PaymentRequirement comes from the per-route configuration and is read-only.
PaymentProof is parsed from the client's X-Payment-x402 header once per
verification attempt. VerificationOutcome is the result of the verification
phase and decides whether the request reaches the upstream resource.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from x402_gateway.x402.headers import CarriedMetadata

# Sentinels used when the facilitator omits the transaction or payer
UNKNOWN_TRANSACTION = "unknown"
ANONYMOUS_PAYER = "anonymous"

DEFAULT_SCHEME = "exact"

NETWORK_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)+$")
BASE58_ADDRESS_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
EVM_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_valid_address(address: str) -> bool:
    """Check that an address is a base58 (Solana) or 0x-hex (EVM) address."""
    return bool(BASE58_ADDRESS_PATTERN.match(address) or EVM_ADDRESS_PATTERN.match(address))


class PaymentRequirement(BaseModel):
    """Payment a client must make to access a metered route."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    network: str = Field(..., description="Network identifier, e.g. solana-devnet")
    scheme: str = Field(default=DEFAULT_SCHEME, description="Payment scheme")
    pay_to: str = Field(..., alias="payTo", description="Recipient address")
    asset: str = Field(..., description="Token/asset address")
    max_amount_required: str = Field(
        ...,
        alias="maxAmountRequired",
        description="Amount in the asset's base units, as a decimal string"
    )
    fee_payer: Optional[str] = Field(default=None, alias="feePayer", description="Fee payer address")
    description: Optional[str] = Field(default=None, description="Human readable resource description")

    @field_validator("network")
    @classmethod
    def validate_network(cls, value: str) -> str:
        if not NETWORK_PATTERN.match(value):
            raise ValueError(f"network must look like '<chain>-<env>', got {value!r}")
        return value

    @field_validator("pay_to", "asset")
    @classmethod
    def validate_address(cls, value: str) -> str:
        if not is_valid_address(value):
            raise ValueError(f"invalid address: {value!r}")
        return value

    @field_validator("fee_payer")
    @classmethod
    def validate_fee_payer(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_valid_address(value):
            raise ValueError(f"invalid fee payer address: {value!r}")
        return value

    @field_validator("max_amount_required", mode="before")
    @classmethod
    def validate_amount(cls, value: Any) -> str:
        # Integers in the route file are accepted and kept as decimal strings
        if isinstance(value, bool):
            raise ValueError("maxAmountRequired must be a positive integer")
        text = str(value).strip()
        if not (text.isascii() and text.isdigit()) or int(text) <= 0:
            raise ValueError(f"maxAmountRequired must be a positive integer, got {value!r}")
        return text

    @property
    def amount(self) -> int:
        """The required amount as an integer number of base units."""
        return int(self.max_amount_required)


class PaymentProof(BaseModel):
    """Client-supplied payment proof from the X-Payment-x402 header."""
    model_config = ConfigDict(extra="allow")

    network: Optional[str] = None
    transaction: Optional[Any] = None
    payload: Optional[Any] = None
    payer: Optional[str] = None

    @property
    def transaction_payload(self) -> Any:
        """The signed transaction blob, falling back to the scheme payload."""
        return self.transaction or self.payload or ""


class PaymentErrorCode(Enum):
    """Error taxonomy of the payment gate."""
    NO_PAYMENT_PROVIDED = "no_payment_provided"
    MALFORMED_PROOF = "malformed_proof"
    FACILITATOR_UNREACHABLE = "facilitator_unreachable"
    FACILITATOR_PROTOCOL_ERROR = "facilitator_protocol_error"
    FACILITATOR_DECODE_ERROR = "facilitator_decode_error"
    PAYMENT_REJECTED = "payment_rejected"
    INTERNAL_FAULT = "internal_fault"
    SETTLEMENT_FAILURE = "settlement_failure"


@dataclass(frozen=True)
class Allowed:
    """Access granted. metadata is None for unmetered routes."""
    metadata: Optional[CarriedMetadata] = None


@dataclass(frozen=True)
class Rejected:
    """Access denied; the reason is safe to show to the client."""
    code: PaymentErrorCode
    reason: str

    @property
    def payment_required(self) -> bool:
        """True when no proof was presented, as opposed to an invalid proof."""
        return self.code is PaymentErrorCode.NO_PAYMENT_PROVIDED


@dataclass(frozen=True)
class InternalFault:
    """Verification crashed. The reason is for logs only."""
    reason: str
    code: PaymentErrorCode = PaymentErrorCode.INTERNAL_FAULT


VerificationOutcome = Union[Allowed, Rejected, InternalFault]
