# SPDX-License-Identifier: MPL-2.0
"""ML-DSA (FIPS 204) and ML-KEM (FIPS 203) providers backed by liboqs.

Install with ``pip install "quantum-shield[pqc]"``. When ``oqs`` cannot be
imported every operation raises :class:`ProviderUnavailableError`; nothing
falls back to a weaker scheme.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Tuple

from quantum_shield.core.exceptions import CryptoOperationError, ProviderUnavailableError

ALLOWED_ML_DSA = ("ML-DSA-44", "ML-DSA-65", "ML-DSA-87")
ALLOWED_ML_KEM = ("ML-KEM-512", "ML-KEM-768", "ML-KEM-1024")

# Older liboqs builds expose the pre-standard names.
_LEGACY_NAMES = {
    "ML-DSA-44": "Dilithium2",
    "ML-DSA-65": "Dilithium3",
    "ML-DSA-87": "Dilithium5",
    "ML-KEM-512": "Kyber512",
    "ML-KEM-768": "Kyber768",
    "ML-KEM-1024": "Kyber1024",
}


def _import_oqs() -> Any:
    try:
        import oqs  # type: ignore[import-not-found]
    except Exception:
        raise ProviderUnavailableError(
            "liboqs backend selected but the 'oqs' module is not available. "
            'Install optional deps: pip install "quantum-shield[pqc]"'
        ) from None
    return oqs


def _resolve(algorithm: str, enabled: Iterable[str]) -> str:
    enabled = list(enabled)
    for candidate in (algorithm, _LEGACY_NAMES.get(algorithm)):
        if candidate and candidate in enabled:
            return candidate
    raise ProviderUnavailableError(
        f"liboqs build does not enable {algorithm}", {"algorithm": algorithm}
    )


class OQSSignatureProvider:
    """ML-DSA signatures through ``oqs.Signature``."""

    def __init__(self, algorithm: str = "ML-DSA-65") -> None:
        if algorithm not in ALLOWED_ML_DSA:
            raise ProviderUnavailableError(
                f"ML-DSA parameter set not allowed: {algorithm}",
                {"allowed": list(ALLOWED_ML_DSA)},
            )
        self.algorithm = algorithm
        self._oqs = _import_oqs()
        self._mechanism = _resolve(algorithm, self._oqs.get_enabled_sig_mechanisms())

    def generate_keypair(self) -> Tuple[bytes, bytes]:
        with self._oqs.Signature(self._mechanism) as signer:
            public = signer.generate_keypair()
            secret = signer.export_secret_key()
        return bytes(public), bytes(secret)

    def sign(self, secret_key: bytes, data: bytes) -> bytes:
        try:
            with self._oqs.Signature(self._mechanism, secret_key) as signer:
                return bytes(signer.sign(data))
        except Exception as exc:
            raise CryptoOperationError(
                f"{self.algorithm} signing failed: {type(exc).__name__}"
            ) from None

    def verify(self, public_key: bytes, data: bytes, signature: bytes) -> bool:
        try:
            with self._oqs.Signature(self._mechanism) as verifier:
                return bool(verifier.verify(data, signature, public_key))
        except Exception:
            # fail closed
            return False


class OQSKEMProvider:
    """ML-KEM encapsulation through ``oqs.KeyEncapsulation``."""

    def __init__(self, algorithm: str = "ML-KEM-768") -> None:
        if algorithm not in ALLOWED_ML_KEM:
            raise ProviderUnavailableError(
                f"ML-KEM parameter set not allowed: {algorithm}",
                {"allowed": list(ALLOWED_ML_KEM)},
            )
        self.algorithm = algorithm
        self._oqs = _import_oqs()
        self._mechanism = _resolve(algorithm, self._oqs.get_enabled_kem_mechanisms())

    def generate_keypair(self) -> Tuple[bytes, bytes]:
        with self._oqs.KeyEncapsulation(self._mechanism) as kem:
            public = kem.generate_keypair()
            secret = kem.export_secret_key()
        return bytes(public), bytes(secret)

    def encapsulate(self, public_key: bytes) -> Tuple[bytes, bytes]:
        with self._oqs.KeyEncapsulation(self._mechanism) as kem:
            ciphertext, shared = kem.encap_secret(public_key)
        return bytes(ciphertext), bytes(shared)

    def decapsulate(self, secret_key: bytes, ciphertext: bytes) -> bytes:
        with self._oqs.KeyEncapsulation(self._mechanism, secret_key) as kem:
            return bytes(kem.decap_secret(ciphertext))


def enabled_mechanisms() -> List[str]:
    """Signature and KEM mechanisms the installed liboqs build enables."""
    oqs = _import_oqs()
    return list(oqs.get_enabled_sig_mechanisms()) + list(oqs.get_enabled_kem_mechanisms())
