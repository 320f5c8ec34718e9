"""
Payment proof signature verification.

A proof's signature is the hex Ed25519 signature over its base64 payload
string, made with the key that belongs to the envelope's payee address.
AcceptAllVerifier keeps the permissive behaviour for development setups
that have no keys configured.
"""

import logging
from typing import Dict, Optional

from cryptography.exceptions import InvalidSignature as CryptoInvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from swarm.base import InvalidSignature, PaymentProof

logger = logging.getLogger(__name__)


class SignatureVerifier:
    """Checks that a proof was signed for a given payee address."""

    def verify(self, proof: PaymentProof, address: str) -> None:
        """Raise InvalidSignature unless proof.signature is acceptable."""
        raise NotImplementedError


class AcceptAllVerifier(SignatureVerifier):
    """Accepts any syntactically valid proof. Development only."""

    def __init__(self) -> None:
        self._warned = False

    def verify(self, proof: PaymentProof, address: str) -> None:
        if not self._warned:
            logger.warning("payment signatures are not verified (no signature keys configured)")
            self._warned = True


class Ed25519Verifier(SignatureVerifier):
    """Verifies proofs against Ed25519 public keys registered per address."""

    def __init__(self, keys: Optional[Dict[str, str]] = None) -> None:
        self._keys: Dict[str, Ed25519PublicKey] = {}
        for address, hex_key in (keys or {}).items():
            self.add_key(address, hex_key)

    def add_key(self, address: str, public_key_hex: str) -> None:
        raw = bytes.fromhex(public_key_hex)
        self._keys[address] = Ed25519PublicKey.from_public_bytes(raw)

    def verify(self, proof: PaymentProof, address: str) -> None:
        public_key = self._keys.get(address)
        if public_key is None:
            raise InvalidSignature(f"No signing key registered for {address}")
        try:
            signature = bytes.fromhex(proof.signature)
        except ValueError:
            raise InvalidSignature("Signature is not hex")
        try:
            public_key.verify(signature, proof.payload.encode("utf-8"))
        except CryptoInvalidSignature:
            raise InvalidSignature("Signature does not match payload")


def sign_payload(private_key: Ed25519PrivateKey, payload: str) -> str:
    """Sign a base64 payload string, returning the hex signature."""
    return private_key.sign(payload.encode("utf-8")).hex()


def build_verifier(keys: Optional[Dict[str, str]]) -> SignatureVerifier:
    """Ed25519 verification when keys are configured, accept-all otherwise."""
    if keys:
        return Ed25519Verifier(keys)
    return AcceptAllVerifier()
