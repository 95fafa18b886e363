# SPDX-License-Identifier: MPL-2.0
"""Signature and key-encapsulation providers.

The core never talks to a primitive directly. It asks a
:class:`ProviderRegistry` for the provider registered under an algorithm name
(``"Ed25519"``, ``"ML-DSA-65"``, ``"Ed25519+ML-DSA-65"``...), so the state
machine above stays provider-agnostic. Classical providers are built on
``cryptography``; post-quantum providers live in
:mod:`quantum_shield.core.crypto.oqs_backend`.
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Protocol, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, x25519
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from quantum_shield.core.exceptions import (
    CryptoOperationError,
    CustodyError,
    ProviderUnavailableError,
)

CLASSICAL_SIGNATURE = "Ed25519"
CLASSICAL_KEM = "X25519"


class SignatureProvider(Protocol):
    """Signs and verifies byte strings for one algorithm."""

    algorithm: str

    def generate_keypair(self) -> Tuple[bytes, bytes]:
        """Return ``(public_key, secret_key)``."""
        ...

    def sign(self, secret_key: bytes, data: bytes) -> bytes: ...

    def verify(self, public_key: bytes, data: bytes, signature: bytes) -> bool: ...


class KEMProvider(Protocol):
    """Key encapsulation for one algorithm."""

    algorithm: str

    def generate_keypair(self) -> Tuple[bytes, bytes]:
        """Return ``(public_key, secret_key)``."""
        ...

    def encapsulate(self, public_key: bytes) -> Tuple[bytes, bytes]:
        """Return ``(ciphertext, shared_secret)``."""
        ...

    def decapsulate(self, secret_key: bytes, ciphertext: bytes) -> bytes: ...


# ----------------------------------------------------------------------
# Key material
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class LocalKey:
    """Secret key bytes held by this process."""

    secret_key: bytes = field(repr=False)


@dataclass(frozen=True)
class CustodialKey:
    """Secret key held by an external custodian, known only by reference."""

    key_id: str


KeyCustody = Union[LocalKey, CustodialKey]


@dataclass(frozen=True)
class SigningKeyPair:
    algorithm: str
    custody: Optional[KeyCustody]
    created: datetime
    public_key: Optional[bytes] = None

    @property
    def custodial(self) -> bool:
        return isinstance(self.custody, CustodialKey)


@dataclass(frozen=True)
class KEMKeyPair:
    algorithm: str
    public_key: bytes
    secret_key: bytes = field(repr=False)
    created: datetime = field(compare=False)


@dataclass(frozen=True)
class Encapsulation:
    ciphertext: bytes
    shared_secret: bytes = field(repr=False)


@dataclass(frozen=True)
class CryptoSuite:
    """The signature and KEM algorithms used for one crypto-agility posture."""

    signature_algorithm: str
    kem_algorithm: str


# ----------------------------------------------------------------------
# Classical providers
# ----------------------------------------------------------------------


class Ed25519SignatureProvider:
    """Ed25519 signatures with raw 32-byte keys."""

    algorithm = CLASSICAL_SIGNATURE

    def generate_keypair(self) -> Tuple[bytes, bytes]:
        private_key = ed25519.Ed25519PrivateKey.generate()
        secret = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return public, secret

    def sign(self, secret_key: bytes, data: bytes) -> bytes:
        return ed25519.Ed25519PrivateKey.from_private_bytes(secret_key).sign(data)

    def verify(self, public_key: bytes, data: bytes, signature: bytes) -> bool:
        try:
            ed25519.Ed25519PublicKey.from_public_bytes(public_key).verify(signature, data)
        except (InvalidSignature, ValueError):
            return False
        return True


class X25519KEMProvider:
    """Ephemeral-static X25519 key agreement used as a KEM."""

    algorithm = CLASSICAL_KEM
    INFO = b"quantum-shield/x25519-kem/v1"

    def generate_keypair(self) -> Tuple[bytes, bytes]:
        private_key = x25519.X25519PrivateKey.generate()
        return _x25519_public(private_key), private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def encapsulate(self, public_key: bytes) -> Tuple[bytes, bytes]:
        ephemeral = x25519.X25519PrivateKey.generate()
        ciphertext = _x25519_public(ephemeral)
        shared = ephemeral.exchange(x25519.X25519PublicKey.from_public_bytes(public_key))
        return ciphertext, self._derive(shared, ciphertext, public_key)

    def decapsulate(self, secret_key: bytes, ciphertext: bytes) -> bytes:
        private_key = x25519.X25519PrivateKey.from_private_bytes(secret_key)
        shared = private_key.exchange(x25519.X25519PublicKey.from_public_bytes(ciphertext))
        return self._derive(shared, ciphertext, _x25519_public(private_key))

    def _derive(self, shared: bytes, ciphertext: bytes, public_key: bytes) -> bytes:
        return HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=self.INFO + ciphertext + public_key,
        ).derive(shared)


def _x25519_public(private_key: x25519.X25519PrivateKey) -> bytes:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


# ----------------------------------------------------------------------
# Hybrid composition
# ----------------------------------------------------------------------


def pack(first: bytes, second: bytes) -> bytes:
    """Length-prefix ``first`` and concatenate ``second``."""
    return len(first).to_bytes(4, "big") + first + second


def unpack(blob: bytes) -> Tuple[bytes, bytes]:
    if len(blob) < 4:
        raise ValueError("hybrid blob too short")
    size = int.from_bytes(blob[:4], "big")
    if size > len(blob) - 4:
        raise ValueError("hybrid blob length prefix out of range")
    return blob[4 : 4 + size], blob[4 + size :]


def hybrid_name(classical: str, pqc: str) -> str:
    return f"{classical}+{pqc}"


class HybridSignatureProvider:
    """Classical and post-quantum signatures over the same message.

    A hybrid signature verifies only if both component signatures verify.
    """

    def __init__(self, classical: SignatureProvider, pqc: SignatureProvider) -> None:
        self.classical = classical
        self.pqc = pqc
        self.algorithm = hybrid_name(classical.algorithm, pqc.algorithm)

    def generate_keypair(self) -> Tuple[bytes, bytes]:
        classical_public, classical_secret = self.classical.generate_keypair()
        pqc_public, pqc_secret = self.pqc.generate_keypair()
        return pack(classical_public, pqc_public), pack(classical_secret, pqc_secret)

    def sign(self, secret_key: bytes, data: bytes) -> bytes:
        classical_secret, pqc_secret = unpack(secret_key)
        return pack(
            self.classical.sign(classical_secret, data),
            self.pqc.sign(pqc_secret, data),
        )

    def verify(self, public_key: bytes, data: bytes, signature: bytes) -> bool:
        try:
            classical_public, pqc_public = unpack(public_key)
            classical_sig, pqc_sig = unpack(signature)
        except ValueError:
            return False
        return self.classical.verify(classical_public, data, classical_sig) and self.pqc.verify(
            pqc_public, data, pqc_sig
        )


class HybridKEMProvider:
    """Concatenation combiner: both shared secrets feed one HKDF."""

    INFO = b"quantum-shield/hybrid-kem/v1"

    def __init__(self, classical: KEMProvider, pqc: KEMProvider) -> None:
        self.classical = classical
        self.pqc = pqc
        self.algorithm = hybrid_name(classical.algorithm, pqc.algorithm)

    def generate_keypair(self) -> Tuple[bytes, bytes]:
        classical_public, classical_secret = self.classical.generate_keypair()
        pqc_public, pqc_secret = self.pqc.generate_keypair()
        return pack(classical_public, pqc_public), pack(classical_secret, pqc_secret)

    def encapsulate(self, public_key: bytes) -> Tuple[bytes, bytes]:
        classical_public, pqc_public = unpack(public_key)
        classical_ct, classical_ss = self.classical.encapsulate(classical_public)
        pqc_ct, pqc_ss = self.pqc.encapsulate(pqc_public)
        ciphertext = pack(classical_ct, pqc_ct)
        return ciphertext, self._combine(classical_ss, pqc_ss, ciphertext)

    def decapsulate(self, secret_key: bytes, ciphertext: bytes) -> bytes:
        classical_secret, pqc_secret = unpack(secret_key)
        classical_ct, pqc_ct = unpack(ciphertext)
        return self._combine(
            self.classical.decapsulate(classical_secret, classical_ct),
            self.pqc.decapsulate(pqc_secret, pqc_ct),
            ciphertext,
        )

    def _combine(self, classical_ss: bytes, pqc_ss: bytes, ciphertext: bytes) -> bytes:
        return HKDF(
            algorithm=hashes.SHA3_256(),
            length=32,
            salt=None,
            info=self.INFO + hashlib.sha3_256(ciphertext).digest(),
        ).derive(classical_ss + pqc_ss)


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------


class ProviderRegistry:
    """Maps algorithm names to providers."""

    def __init__(self) -> None:
        self._signatures: Dict[str, SignatureProvider] = {}
        self._kems: Dict[str, KEMProvider] = {}

    def register_signature(self, provider: SignatureProvider) -> None:
        self._signatures[provider.algorithm] = provider

    def register_kem(self, provider: KEMProvider) -> None:
        self._kems[provider.algorithm] = provider

    def register_hybrids(self, pqc_signature: str, pqc_kem: str) -> None:
        """Register the classical+PQC combinations of already registered providers."""
        self.register_signature(
            HybridSignatureProvider(
                self.signature(CLASSICAL_SIGNATURE), self.signature(pqc_signature)
            )
        )
        self.register_kem(HybridKEMProvider(self.kem(CLASSICAL_KEM), self.kem(pqc_kem)))

    def signature(self, algorithm: str) -> SignatureProvider:
        try:
            return self._signatures[algorithm]
        except KeyError:
            raise ProviderUnavailableError(
                f"No signature provider registered for {algorithm}",
                {"algorithm": algorithm, "registered": sorted(self._signatures)},
            ) from None

    def kem(self, algorithm: str) -> KEMProvider:
        try:
            return self._kems[algorithm]
        except KeyError:
            raise ProviderUnavailableError(
                f"No KEM provider registered for {algorithm}",
                {"algorithm": algorithm, "registered": sorted(self._kems)},
            ) from None

    def supports(self, suite: CryptoSuite) -> bool:
        return suite.signature_algorithm in self._signatures and suite.kem_algorithm in self._kems

    @property
    def signature_algorithms(self) -> list[str]:
        return sorted(self._signatures)


def classical_registry() -> ProviderRegistry:
    """Registry with the classical providers only."""
    registry = ProviderRegistry()
    registry.register_signature(Ed25519SignatureProvider())
    registry.register_kem(X25519KEMProvider())
    return registry


def build_registry(
    pqc_backend: Optional[str] = None,
    pqc_signature_algorithm: str = "ML-DSA-65",
    pqc_kem_algorithm: str = "ML-KEM-768",
) -> ProviderRegistry:
    """Registry for the configured backend.

    Without a backend only the classical providers are registered; postures
    that need PQC then fail with :class:`ProviderUnavailableError` instead of
    silently degrading.
    """
    registry = classical_registry()
    if pqc_backend is None:
        return registry
    if pqc_backend != "liboqs":
        raise ProviderUnavailableError(
            f"Unknown PQC backend: {pqc_backend}", {"supported": ["liboqs"]}
        )

    from quantum_shield.core.crypto.oqs_backend import OQSKEMProvider, OQSSignatureProvider

    registry.register_signature(OQSSignatureProvider(pqc_signature_algorithm))
    registry.register_kem(OQSKEMProvider(pqc_kem_algorithm))
    registry.register_hybrids(pqc_signature_algorithm, pqc_kem_algorithm)
    return registry


# ----------------------------------------------------------------------
# External custody
# ----------------------------------------------------------------------


class KeyCustodian(Protocol):
    """External key-management service. Every call may suspend."""

    async def create_key(self, algorithm: str) -> str: ...

    async def public_key(self, key_id: str) -> bytes: ...

    async def sign(self, key_id: str, data: bytes) -> bytes: ...

    async def verify(self, key_id: str, data: bytes, signature: bytes) -> bool: ...


class InMemoryCustodian:
    """A custodian that keeps secrets in its own process memory.

    Secret keys never leave this object; callers only see key ids.
    """

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry
        self._keys: Dict[str, Tuple[str, bytes, bytes]] = {}

    async def create_key(self, algorithm: str) -> str:
        public, secret = self._registry.signature(algorithm).generate_keypair()
        key_id = f"kms-{os.urandom(8).hex()}"
        self._keys[key_id] = (algorithm, public, secret)
        return key_id

    def _entry(self, key_id: str) -> Tuple[str, bytes, bytes]:
        try:
            return self._keys[key_id]
        except KeyError:
            raise CustodyError(f"Unknown custodial key: {key_id}", {"keyId": key_id}) from None

    async def public_key(self, key_id: str) -> bytes:
        return self._entry(key_id)[1]

    async def sign(self, key_id: str, data: bytes) -> bytes:
        algorithm, _, secret = self._entry(key_id)
        try:
            return self._registry.signature(algorithm).sign(secret, data)
        except CryptoOperationError:
            raise
        except Exception as exc:
            raise CryptoOperationError(
                f"Custodial signing failed: {type(exc).__name__}", {"keyId": key_id}
            ) from None

    async def verify(self, key_id: str, data: bytes, signature: bytes) -> bool:
        algorithm, public, _ = self._entry(key_id)
        return self._registry.signature(algorithm).verify(public, data, signature)
