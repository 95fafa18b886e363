# SPDX-License-Identifier: MPL-2.0
import sys

import pytest

from quantum_shield.core.crypto import build_registry
from quantum_shield.core.crypto.oqs_backend import OQSKEMProvider, OQSSignatureProvider
from quantum_shield.core.exceptions import ProviderUnavailableError


def test_missing_oqs_fails_closed(monkeypatch):
    monkeypatch.setitem(sys.modules, "oqs", None)
    with pytest.raises(ProviderUnavailableError):
        OQSSignatureProvider("ML-DSA-65")
    with pytest.raises(ProviderUnavailableError):
        OQSKEMProvider("ML-KEM-768")
    with pytest.raises(ProviderUnavailableError):
        build_registry("liboqs")


def test_parameter_sets_are_restricted():
    with pytest.raises(ProviderUnavailableError):
        OQSSignatureProvider("Falcon-512")
    with pytest.raises(ProviderUnavailableError):
        OQSKEMProvider("FrodoKEM-640-AES")


class TestLiboqs:
    """Runs only where liboqs-python is installed."""

    @pytest.fixture(autouse=True)
    def _require_oqs(self):
        pytest.importorskip("oqs")

    def test_ml_dsa_round_trip(self):
        provider = OQSSignatureProvider("ML-DSA-65")
        public, secret = provider.generate_keypair()
        signature = provider.sign(secret, b"payload")
        assert provider.verify(public, b"payload", signature)
        assert not provider.verify(public, b"payloaD", signature)

    def test_ml_kem_round_trip(self):
        kem = OQSKEMProvider("ML-KEM-768")
        public, secret = kem.generate_keypair()
        ciphertext, shared = kem.encapsulate(public)
        assert kem.decapsulate(secret, ciphertext) == shared

    def test_registry_hybrids(self):
        registry = build_registry("liboqs")
        hybrid = registry.signature("Ed25519+ML-DSA-65")
        public, secret = hybrid.generate_keypair()
        assert hybrid.verify(public, b"m", hybrid.sign(secret, b"m"))
