# SPDX-License-Identifier: MPL-2.0
import pytest

from quantum_shield.core.crypto import (
    CryptoSuite,
    Ed25519SignatureProvider,
    HybridKEMProvider,
    HybridSignatureProvider,
    InMemoryCustodian,
    X25519KEMProvider,
    build_registry,
    classical_registry,
    pack,
    unpack,
)
from quantum_shield.core.exceptions import CustodyError, ProviderUnavailableError

MESSAGE = b'{"assetId":"0.0.100:1"}'


def _flip(data: bytes, index: int = 0) -> bytes:
    return data[:index] + bytes([data[index] ^ 0x01]) + data[index + 1 :]


class TestEd25519:
    def test_round_trip(self):
        provider = Ed25519SignatureProvider()
        public, secret = provider.generate_keypair()
        signature = provider.sign(secret, MESSAGE)
        assert provider.verify(public, MESSAGE, signature)

    def test_any_single_byte_alteration_fails(self):
        provider = Ed25519SignatureProvider()
        public, secret = provider.generate_keypair()
        signature = provider.sign(secret, MESSAGE)
        for index in range(len(MESSAGE)):
            assert not provider.verify(public, _flip(MESSAGE, index), signature)

    def test_malformed_key_is_invalid_not_error(self):
        provider = Ed25519SignatureProvider()
        assert not provider.verify(b"short", MESSAGE, b"\x00" * 64)


def test_x25519_kem_agrees():
    kem = X25519KEMProvider()
    public, secret = kem.generate_keypair()
    ciphertext, shared = kem.encapsulate(public)
    assert kem.decapsulate(secret, ciphertext) == shared
    assert len(shared) == 32


class TestHybrid:
    def test_signature_needs_both_components(self, registry):
        hybrid = registry.signature("Ed25519+ML-DSA-65")
        assert isinstance(hybrid, HybridSignatureProvider)
        public, secret = hybrid.generate_keypair()
        signature = hybrid.sign(secret, MESSAGE)
        assert hybrid.verify(public, MESSAGE, signature)

        classical_sig, pqc_sig = unpack(signature)
        assert not hybrid.verify(public, MESSAGE, pack(_flip(classical_sig), pqc_sig))
        assert not hybrid.verify(public, MESSAGE, pack(classical_sig, _flip(pqc_sig)))
        assert not hybrid.verify(public, MESSAGE, b"\x00")

    def test_kem_combines_both_secrets(self, registry):
        hybrid = registry.kem("X25519+ML-KEM-768")
        assert isinstance(hybrid, HybridKEMProvider)
        public, secret = hybrid.generate_keypair()
        ciphertext, shared = hybrid.encapsulate(public)
        assert hybrid.decapsulate(secret, ciphertext) == shared

    def test_unpack_rejects_bad_prefix(self):
        with pytest.raises(ValueError):
            unpack(b"\x00\x00\x00\xffabc")


class TestRegistry:
    def test_classical_registry_has_no_pqc(self):
        registry = classical_registry()
        assert registry.supports(CryptoSuite("Ed25519", "X25519"))
        assert not registry.supports(CryptoSuite("Ed25519+ML-DSA-65", "X25519"))
        with pytest.raises(ProviderUnavailableError) as exc_info:
            registry.signature("ML-DSA-65")
        assert exc_info.value.details["algorithm"] == "ML-DSA-65"

    def test_no_backend_means_classical_only(self):
        assert build_registry(None).signature_algorithms == ["Ed25519"]

    def test_unknown_backend(self):
        with pytest.raises(ProviderUnavailableError):
            build_registry("quantum-magic")


class TestInMemoryCustodian:
    @pytest.mark.asyncio
    async def test_sign_and_verify_by_key_id(self, registry):
        custodian = InMemoryCustodian(registry)
        key_id = await custodian.create_key("Ed25519+ML-DSA-65")
        signature = await custodian.sign(key_id, MESSAGE)
        assert await custodian.verify(key_id, MESSAGE, signature)
        assert not await custodian.verify(key_id, MESSAGE + b"x", signature)

    @pytest.mark.asyncio
    async def test_unknown_key(self, registry):
        custodian = InMemoryCustodian(registry)
        with pytest.raises(CustodyError):
            await custodian.sign("kms-missing", MESSAGE)
