"""
x402 Payment Protocol Integration Module.

This module gates priced routes of the gateway behind an x402 payment
proof. Verification happens before the upstream resource is accessed,
settlement after the response has been sent.

Key components:
- models: payment requirement, payment proof and verification outcomes
- headers: carried metadata passed from verification to settlement
- routes: per-route payment configuration and exact-match resolution
- facilitator: HTTP client for the facilitator's verify/settle endpoints
- verification: pre-access payment verification
- settlement: post-response payment settlement
- responses: 402/500 response construction
- middleware: Starlette middleware wiring both phases into the app
- audit: payment event audit trail

Configuration is loaded from environment variables via x402_gateway.core.config.
"""

__version__ = "1.0.0"
