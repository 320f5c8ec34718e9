"""
PaymentGate -- per-resource interceptor for x402-priced resources.

A request without an X-Payment header is challenged with PaymentRequired
(carrying the envelope). A request with a header must decode, match the
protocol version, pay for this resource, pay at least the price, be fresh
within the envelope TTL and carry a signature the verifier accepts. On
success the gate mints a receipt and returns a PaymentContext for the
downstream handler.
"""

import math
import threading
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional

from economy import x402
from economy.signatures import AcceptAllVerifier, SignatureVerifier
from swarm.base import (
    InsufficientAmount,
    InvalidAmount,
    MalformedProof,
    PaymentEnvelope,
    PaymentExpired,
    PaymentProof,
    PaymentRequired,
    ResourceMismatch,
    UnsupportedVersion,
    _now_ms,
    to_decimal,
)

# timestamps further back than this are rejected as malformed
MAX_PROOF_AGE_MS = 365 * 24 * 60 * 60 * 1000


@dataclass
class GateConfig:
    """Pricing for one gated resource."""

    price: str
    address: str
    resource: str
    description: Optional[str] = None
    ttl: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GateConfig":
        for field_name in ("price", "address", "resource"):
            if not data.get(field_name):
                raise ValueError(f"Gated resource is missing required field '{field_name}'")
        ttl = data.get("ttl")
        return cls(
            price=str(data["price"]),
            address=data["address"],
            resource=data["resource"],
            description=data.get("description"),
            ttl=int(ttl) if ttl is not None else None,
        )


@dataclass
class PaymentContext:
    """Verified payment details attached to a gated request."""

    proof: PaymentProof
    receipt_id: str
    receipt_url: str
    envelope: PaymentEnvelope
    amount: Decimal
    issued_at: int

    def receipt(self) -> Dict[str, Any]:
        return {
            "receiptId": self.receipt_id,
            "resource": self.envelope.resource,
            "amount": str(self.amount),
            "payTo": self.envelope.address,
            "issuedAt": self.issued_at,
        }


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


class PaymentGate:
    """Challenges and verifies payments for a single resource."""

    def __init__(
        self,
        config: GateConfig,
        verifier: Optional[SignatureVerifier] = None,
        clock: Callable[[], int] = _now_ms,
        receipt_base_url: str = "/api/x402/receipts",
        version: str = x402.X402_VERSION,
        default_ttl: int = 300,
    ) -> None:
        self.envelope = x402.create_payment_envelope(
            price=config.price,
            address=config.address,
            resource=config.resource,
            description=config.description or f"Access to {config.resource}",
            ttl=config.ttl or default_ttl,
        )
        self._price = to_decimal(config.price)
        self._verifier = verifier or AcceptAllVerifier()
        self._clock = clock
        self._receipt_base_url = receipt_base_url.rstrip("/")
        self._version = version
        self._receipts: Dict[str, PaymentContext] = {}
        self._lock = threading.Lock()

    @property
    def resource(self) -> str:
        return self.envelope.resource

    def __call__(self, headers: Mapping[str, str]) -> PaymentContext:
        """Intercept a request by its headers.

        Raises:
            PaymentRequired: no X-Payment header (protocol step).
            MalformedProof, UnsupportedVersion, ResourceMismatch,
            InsufficientAmount, PaymentExpired, InvalidSignature: bad proof.
        """
        header = _header(headers, x402.HEADER_PAYMENT)
        if not header:
            raise PaymentRequired(self.envelope)

        method = _header(headers, x402.HEADER_PAYMENT_METHOD)
        if method and method not in self.envelope.methods:
            raise MalformedProof(f"Unsupported payment method: {method}")

        proof, amount = self.verify(header)

        receipt_id = str(uuid.uuid4())
        context = PaymentContext(
            proof=proof,
            receipt_id=receipt_id,
            receipt_url=f"{self._receipt_base_url}/{receipt_id}",
            envelope=self.envelope,
            amount=amount,
            issued_at=self._clock(),
        )
        with self._lock:
            self._receipts[receipt_id] = context
        return context

    def verify(self, header: str):
        """Validate a raw X-Payment header against this gate's envelope.

        Returns (proof, amount paid).
        """
        proof = x402.parse_payment_header(header)
        if proof is None:
            raise MalformedProof("Malformed payment header")

        if proof.version != self._version:
            raise UnsupportedVersion(proof.version)

        payload = x402.decode_payload(proof.payload)
        if payload is None:
            raise MalformedProof("Invalid payload encoding")

        resource = str(payload.get("resource"))
        if resource != self.envelope.resource:
            raise ResourceMismatch(self.envelope.resource, resource)

        try:
            amount = x402.payload_amount(payload)
        except InvalidAmount:
            raise MalformedProof("Payload amount is not a number")
        if amount < self._price:
            raise InsufficientAmount(self._price, amount)

        timestamp = payload.get("timestamp")
        if timestamp is not None:
            if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
                raise MalformedProof("Payload timestamp is not a number")
            if isinstance(timestamp, float) and not math.isfinite(timestamp):
                raise MalformedProof("Payload timestamp is not a number")
            # compare in milliseconds; JSON ints are unbounded
            ttl_ms = self.envelope.ttl * 1000
            elapsed_ms = self._clock() - timestamp
            if elapsed_ms < -ttl_ms or elapsed_ms > MAX_PROOF_AGE_MS:
                raise MalformedProof("Payload timestamp is out of range")
            if elapsed_ms > ttl_ms:
                raise PaymentExpired(elapsed_ms / 1000.0, self.envelope.ttl)

        self._verifier.verify(proof, self.envelope.address)
        return proof, amount

    def get_receipt(self, receipt_id: str) -> Optional[PaymentContext]:
        with self._lock:
            return self._receipts.get(receipt_id)


def gate(config: GateConfig, **kwargs: Any) -> PaymentGate:
    """Build a request interceptor for one priced resource."""
    return PaymentGate(config, **kwargs)
