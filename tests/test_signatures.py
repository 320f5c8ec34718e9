"""Tests for economy.signatures -- Ed25519 proof verification."""

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from economy import x402
from economy.signatures import (
    AcceptAllVerifier,
    Ed25519Verifier,
    build_verifier,
    sign_payload,
)
from swarm.base import InvalidSignature, PaymentProof

PAYEE = "0xpayee"


def _public_hex(key: Ed25519PrivateKey) -> str:
    return key.public_key().public_bytes(
        serialization.Encoding.Raw,
        serialization.PublicFormat.Raw,
    ).hex()


@pytest.fixture
def key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.generate()


@pytest.fixture
def verifier(key: Ed25519PrivateKey) -> Ed25519Verifier:
    return Ed25519Verifier({PAYEE: _public_hex(key)})


def _proof(key: Ed25519PrivateKey, payload: str) -> PaymentProof:
    return PaymentProof(version="0.1.0", signature=sign_payload(key, payload), payload=payload)


class TestEd25519Verifier:
    def test_valid_signature(self, key, verifier) -> None:
        proof = _proof(key, x402.encode_payload("/r", "1"))
        verifier.verify(proof, PAYEE)

    def test_tampered_payload(self, key, verifier) -> None:
        proof = _proof(key, x402.encode_payload("/r", "1"))
        forged = PaymentProof(proof.version, proof.signature, x402.encode_payload("/r", "100"))
        with pytest.raises(InvalidSignature):
            verifier.verify(forged, PAYEE)

    def test_wrong_key(self, verifier) -> None:
        other = Ed25519PrivateKey.generate()
        with pytest.raises(InvalidSignature):
            verifier.verify(_proof(other, x402.encode_payload("/r", "1")), PAYEE)

    def test_unknown_address(self, key, verifier) -> None:
        with pytest.raises(InvalidSignature, match="No signing key"):
            verifier.verify(_proof(key, "cGF5bG9hZA=="), "0xsomeoneelse")

    def test_non_hex_signature(self, verifier) -> None:
        with pytest.raises(InvalidSignature, match="not hex"):
            verifier.verify(PaymentProof("0.1.0", "zz-not-hex", "cGF5bG9hZA=="), PAYEE)

    def test_add_key_later(self, key) -> None:
        verifier = Ed25519Verifier()
        verifier.add_key(PAYEE, _public_hex(key))
        verifier.verify(_proof(key, "cGF5bG9hZA=="), PAYEE)


class TestBuildVerifier:
    def test_no_keys_accepts_everything(self, caplog) -> None:
        verifier = build_verifier({})
        assert isinstance(verifier, AcceptAllVerifier)
        with caplog.at_level("WARNING"):
            verifier.verify(PaymentProof("0.1.0", "anything", "p"), PAYEE)
            verifier.verify(PaymentProof("0.1.0", "anything", "p"), PAYEE)
        assert sum("not verified" in r.message for r in caplog.records) == 1

    def test_keys_give_ed25519(self, key) -> None:
        assert isinstance(build_verifier({PAYEE: _public_hex(key)}), Ed25519Verifier)
