# tests/test_x402_verification.py
"""
Unit tests for the verification phase.

The facilitator client is mocked; results are built from the real
facilitator result variants.
"""
import json
import pytest
from unittest.mock import MagicMock

from x402_gateway.x402.facilitator import (
    DecodeFailure,
    FacilitatorOk,
    ProtocolFailure,
    TransportFailure,
)
from x402_gateway.x402.headers import CarriedMetadata
from x402_gateway.x402.models import (
    Allowed,
    InternalFault,
    PaymentErrorCode,
    PaymentProof,
    PaymentRequirement,
    Rejected,
)
from x402_gateway.x402.verification import (
    MALFORMED_PROOF_REASON,
    UNCARRIABLE_METADATA_REASON,
    build_verify_payload,
    parse_payment_proof,
    verify,
)

PAY_TO = "4ALzeixKQvVwVX65g9Rk9n7WPBRoMwgwymFXh5EiFpU8"
ASSET = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"
FEE_PAYER = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"

PROOF_HEADER = json.dumps({
    "network": "solana-devnet",
    "transaction": "base64_encoded_tx",
    "payer": "wallet_address",
})


@pytest.fixture
def requirement() -> PaymentRequirement:
    return PaymentRequirement.model_validate({
        "network": "solana-devnet",
        "payTo": PAY_TO,
        "asset": ASSET,
        "maxAmountRequired": "100",
        "feePayer": FEE_PAYER,
    })


@pytest.fixture
def facilitator():
    client = MagicMock()
    client.base_url = "https://facilitator.test"
    return client


class TestParsePaymentProof:
    """Test payment header parsing."""

    def test_valid_json_object(self):
        """A JSON object parses into a PaymentProof."""
        proof = parse_payment_proof(PROOF_HEADER)
        assert proof.transaction == "base64_encoded_tx"

    @pytest.mark.parametrize("raw", ["not-json", "invalid{json}", "[1, 2]", "\"text\"", "42", "null"])
    def test_rejects_non_objects(self, raw):
        """Anything but a JSON object is malformed."""
        assert parse_payment_proof(raw) is None

    def test_rejects_mistyped_fields(self):
        """Known fields with the wrong type are malformed."""
        assert parse_payment_proof(json.dumps({"payer": {"nested": True}})) is None


class TestBuildVerifyPayload:
    """Test the /v1/verify request body."""

    def test_payload_shape(self, requirement):
        """The body carries the proof transaction and the route requirement."""
        proof = PaymentProof.model_validate(json.loads(PROOF_HEADER))

        payload = build_verify_payload(proof, requirement)

        assert payload == {
            "paymentPayload": {
                "network": "solana-devnet",
                "transaction": "base64_encoded_tx",
            },
            "paymentRequirements": {
                "network": "solana-devnet",
                "kind": "spl-token",
                "recipient": PAY_TO,
                "feePayer": FEE_PAYER,
                "amount": 100,
                "token": ASSET,
            },
        }

    def test_fee_payer_omitted_when_unset(self, requirement):
        """feePayer is left out when the route does not configure one."""
        requirement = requirement.model_copy(update={"fee_payer": None})
        payload = build_verify_payload(PaymentProof(), requirement)

        assert "feePayer" not in payload["paymentRequirements"]
        assert payload["paymentPayload"]["transaction"] == ""


class TestVerifyPassThrough:
    """Test unmetered routes."""

    @pytest.mark.parametrize("raw", [None, "", "not-json", PROOF_HEADER])
    def test_no_requirement_allows_without_metadata(self, raw, facilitator):
        """Without a requirement every request is allowed, whatever the proof header."""
        outcome = verify(raw, None, facilitator)

        assert outcome == Allowed()
        assert outcome.metadata is None
        facilitator.verify.assert_not_called()


class TestVerifyRejections:
    """Test rejected verification outcomes."""

    @pytest.mark.parametrize("raw", [None, "", [], [""]])
    def test_missing_proof_is_payment_required(self, raw, requirement, facilitator):
        """A missing or empty proof is the payment-required case."""
        outcome = verify(raw, requirement, facilitator)

        assert isinstance(outcome, Rejected)
        assert outcome.code is PaymentErrorCode.NO_PAYMENT_PROVIDED
        assert outcome.payment_required is True
        facilitator.verify.assert_not_called()

    def test_malformed_proof_skips_facilitator(self, requirement, facilitator):
        """An unparsable proof is rejected without calling the facilitator."""
        outcome = verify("not-json", requirement, facilitator)

        assert outcome == Rejected(PaymentErrorCode.MALFORMED_PROOF, MALFORMED_PROOF_REASON)
        facilitator.verify.assert_not_called()

    def test_facilitator_unreachable_fails_closed(self, requirement, facilitator):
        """A transport failure rejects the payment instead of allowing access."""
        failure = TransportFailure(cause="Connection refused")
        facilitator.verify.return_value = failure

        outcome = verify(PROOF_HEADER, requirement, facilitator)

        assert outcome == Rejected(PaymentErrorCode.FACILITATOR_UNREACHABLE, failure.error)

    def test_facilitator_protocol_error(self, requirement, facilitator):
        """A non-2xx facilitator response rejects with the reported error."""
        facilitator.verify.return_value = ProtocolFailure(status_code=500, body="boom")

        outcome = verify(PROOF_HEADER, requirement, facilitator)

        assert outcome.code is PaymentErrorCode.FACILITATOR_PROTOCOL_ERROR
        assert outcome.reason == "Facilitator returned status 500: boom"

    def test_facilitator_decode_error(self, requirement, facilitator):
        """An undecodable facilitator body rejects the payment."""
        facilitator.verify.return_value = DecodeFailure(cause="Expecting value")

        outcome = verify(PROOF_HEADER, requirement, facilitator)

        assert outcome.code is PaymentErrorCode.FACILITATOR_DECODE_ERROR

    def test_invalid_payment_uses_error_field(self, requirement, facilitator):
        """isValid false surfaces the facilitator's error verbatim."""
        facilitator.verify.return_value = FacilitatorOk(body={"isValid": False, "error": "Insufficient amount"})

        outcome = verify(PROOF_HEADER, requirement, facilitator)

        assert outcome == Rejected(PaymentErrorCode.PAYMENT_REJECTED, "Insufficient amount")

    def test_invalid_payment_falls_back_to_message(self, requirement, facilitator):
        """The message field is used when error is absent."""
        facilitator.verify.return_value = FacilitatorOk(body={"isValid": False, "message": "Expired"})

        assert verify(PROOF_HEADER, requirement, facilitator).reason == "Expired"

    def test_invalid_payment_default_reason(self, requirement, facilitator):
        """Without error or message the generic reason is used."""
        facilitator.verify.return_value = FacilitatorOk(body={"isValid": False})

        assert verify(PROOF_HEADER, requirement, facilitator).reason == "Payment not valid"

    def test_missing_is_valid_is_rejection(self, requirement, facilitator):
        """A body without isValid is not a grant."""
        facilitator.verify.return_value = FacilitatorOk(body={"transaction": "SIG123"})

        assert isinstance(verify(PROOF_HEADER, requirement, facilitator), Rejected)


class TestVerifyAllowed:
    """Test successful verification."""

    def test_valid_payment_carries_metadata(self, requirement, facilitator):
        """A valid payment is allowed with the carried metadata populated."""
        facilitator.verify.return_value = FacilitatorOk(
            body={"isValid": True, "transaction": "SIG123", "payer": "PAYER1"}
        )

        outcome = verify(PROOF_HEADER, requirement, facilitator)

        assert outcome == Allowed(metadata=CarriedMetadata(
            valid=True,
            network="solana-devnet",
            transaction="SIG123",
            payer="PAYER1",
            amount="100",
            asset=ASSET,
            recipient=PAY_TO,
        ))

    def test_sentinels_when_facilitator_omits_fields(self, requirement, facilitator):
        """Missing transaction and payer fall back to the sentinels."""
        facilitator.verify.return_value = FacilitatorOk(body={"isValid": True})

        metadata = verify(PROOF_HEADER, requirement, facilitator).metadata

        assert metadata.transaction == "unknown"
        assert metadata.payer == "anonymous"

    def test_list_header_value(self, requirement, facilitator):
        """A proof header delivered as a list is normalized."""
        facilitator.verify.return_value = FacilitatorOk(body={"isValid": True, "transaction": "SIG123"})

        outcome = verify([PROOF_HEADER], requirement, facilitator)

        assert isinstance(outcome, Allowed)
        payload = facilitator.verify.call_args[0][0]
        assert payload["paymentPayload"]["transaction"] == "base64_encoded_tx"

    @pytest.mark.parametrize("body", [
        {"isValid": True, "transaction": "SIG123", "payer": "\u652f\u4ed8\u8005"},
        {"isValid": True, "transaction": "SIG\r\nX-Payment-Valid: true", "payer": "PAYER1"},
    ])
    def test_metadata_not_carriable_is_rejected(self, body, requirement, facilitator):
        """A transaction or payer that cannot be a header value is a facilitator decode error."""
        facilitator.verify.return_value = FacilitatorOk(body=body)

        outcome = verify(PROOF_HEADER, requirement, facilitator)

        assert isinstance(outcome, Rejected)
        assert outcome.code is PaymentErrorCode.FACILITATOR_DECODE_ERROR
        assert outcome.reason == UNCARRIABLE_METADATA_REASON


class TestVerifyInternalFault:
    """Test the single exception boundary."""

    def test_unexpected_exception_is_internal_fault(self, requirement, facilitator):
        """Any exception during verification becomes InternalFault."""
        facilitator.verify.side_effect = RuntimeError("database password is hunter2")

        outcome = verify(PROOF_HEADER, requirement, facilitator)

        assert isinstance(outcome, InternalFault)
        assert "hunter2" in outcome.reason

    def test_unexpected_result_type_is_internal_fault(self, requirement, facilitator):
        """A facilitator returning something unexpected is an internal fault."""
        facilitator.verify.return_value = None

        assert isinstance(verify(PROOF_HEADER, requirement, facilitator), InternalFault)
