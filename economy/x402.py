"""
x402 proof codec -- pure encode/decode of payment envelopes and proofs.

Stateless. Nothing here talks to a network or a ledger; the payment gate
builds on these helpers to challenge and verify callers.
"""

import base64
import binascii
import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

from swarm.base import InvalidAmount, PaymentEnvelope, PaymentProof, to_decimal

X402_VERSION = "0.1.0"

SUPPORTED_METHODS = ("base-sepolia", "base-mainnet", "solana")

# x402 header names used in requests and responses
HEADER_PAYMENT = "X-Payment"
HEADER_PAYMENT_METHOD = "X-Payment-Method"
HEADER_SWARM_ID = "X-Swarm-ID"
HEADER_MOLT_STAGE = "X-Molt-Stage"
HEADER_PRICE = "X-Price"
HEADER_PAYMENT_ADDRESS = "X-Payment-Address"
HEADER_PAYMENT_METHODS = "X-Payment-Methods"
HEADER_TTL = "X-TTL"
HEADER_RECEIPT_URL = "X-Receipt-URL"


def create_payment_envelope(
    price: str,
    address: str,
    resource: str,
    description: str,
    ttl: int = 300,
    methods: Optional[List[str]] = None,
) -> PaymentEnvelope:
    """Build the envelope for a priced resource.

    Raises:
        InvalidAmount: if price is negative or not a decimal.
        ValueError: if ttl is not positive or a method is unsupported.
    """
    amount = to_decimal(price)
    if amount < 0:
        raise InvalidAmount(price)
    if ttl <= 0:
        raise ValueError(f"ttl must be positive, got {ttl}")
    unknown = [m for m in methods or () if not is_valid_method(m)]
    if unknown:
        raise ValueError(f"Unsupported payment methods: {unknown}")
    return PaymentEnvelope(
        price=str(price),
        methods=list(methods) if methods is not None else list(SUPPORTED_METHODS),
        address=address,
        ttl=int(ttl),
        resource=resource,
        description=description,
    )


def envelope_headers(envelope: PaymentEnvelope) -> Dict[str, str]:
    """Response headers announcing what a 402 challenge asks for."""
    return {
        HEADER_PRICE: envelope.price,
        HEADER_PAYMENT_ADDRESS: envelope.address,
        HEADER_PAYMENT_METHODS: ", ".join(envelope.methods),
        HEADER_TTL: str(envelope.ttl),
    }


def _b64decode_json(data: str) -> Any:
    raw = base64.b64decode(data.encode("ascii"), validate=True)
    return json.loads(raw.decode("utf-8"))


def _b64encode_json(obj: Any) -> str:
    return base64.b64encode(json.dumps(obj, separators=(",", ":")).encode("utf-8")).decode("ascii")


def parse_payment_header(header: str) -> Optional[PaymentProof]:
    """Decode an X-Payment header. Returns None on any decode failure."""
    try:
        parsed = _b64decode_json(header)
    except (binascii.Error, ValueError, UnicodeError, AttributeError, RecursionError):
        return None

    if not isinstance(parsed, dict):
        return None
    version = parsed.get("version")
    signature = parsed.get("signature")
    payload = parsed.get("payload")
    if not version or not signature or not payload:
        return None
    if not all(isinstance(v, str) for v in (version, signature, payload)):
        return None

    return PaymentProof(version=version, signature=signature, payload=payload)


def encode_payment_header(proof: PaymentProof) -> str:
    """Inverse of parse_payment_header for well-formed proofs."""
    return _b64encode_json(proof.to_dict())


def encode_payload(resource: str, amount: Any, timestamp: Optional[int] = None) -> str:
    """Encode a proof payload. timestamp is epoch milliseconds."""
    body: Dict[str, Any] = {"resource": resource, "amount": str(amount)}
    if timestamp is not None:
        body["timestamp"] = timestamp
    return _b64encode_json(body)


def decode_payload(payload: str) -> Optional[Dict[str, Any]]:
    """Decode a proof payload into a dict, or None if it is not base64 JSON."""
    try:
        decoded = _b64decode_json(payload)
    except (binascii.Error, ValueError, UnicodeError, RecursionError):
        return None
    return decoded if isinstance(decoded, dict) else None


def payload_amount(payload: Dict[str, Any]) -> Decimal:
    """The amount a payload claims to have paid (missing counts as zero)."""
    return to_decimal(payload.get("amount") or 0)


def is_valid_method(method: str) -> bool:
    return method in SUPPORTED_METHODS
