# SPDX-License-Identifier: MPL-2.0
"""Signing and verification on behalf of identities.

The engine is provider-agnostic: the algorithm recorded with each signature
selects the provider used to verify it.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union
from uuid import UUID

from quantum_shield.core.crypto import CustodialKey, KeyCustodian, LocalKey, ProviderRegistry
from quantum_shield.core.exceptions import (
    CryptoOperationError,
    CustodyError,
    NoPrivateKeyAvailableError,
    UnsupportedKeyCustodyError,
)
from quantum_shield.core.identity import IdentityKeyStore
from quantum_shield.core.models import KeyReference, SignatureData

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    message: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


class SignatureEngine:
    def __init__(
        self,
        identities: IdentityKeyStore,
        registry: ProviderRegistry,
        custodian: Optional[KeyCustodian] = None,
    ) -> None:
        self._identities = identities
        self._registry = registry
        self.custodian = custodian

    async def sign(self, identity_id: Union[str, UUID], payload: bytes) -> SignatureData:
        """Sign ``payload`` with the identity's signing key.

        Raises:
            IdentityNotFoundError: unknown identity
            NoPrivateKeyAvailableError: no local secret and no custodial reference
            CustodyError: custodial key but no custodian configured
            CryptoOperationError: the provider failed
        """
        identity = await self._identities.get(identity_id)
        key = identity.signing
        custody = key.custody

        if isinstance(custody, LocalKey) and custody.secret_key:
            if key.public_key is None:
                raise NoPrivateKeyAvailableError(
                    "Local key has no public key recorded", {"identityId": str(identity.id)}
                )
            public_key: Union[KeyReference, str] = key.public_key.hex()
            provider = self._registry.signature(key.algorithm)
            try:
                signature = provider.sign(custody.secret_key, payload)
            except CryptoOperationError:
                raise
            except Exception as exc:
                raise CryptoOperationError(
                    f"{key.algorithm} signing failed: {type(exc).__name__}",
                    {"identityId": str(identity.id)},
                ) from None
        elif isinstance(custody, CustodialKey):
            if self.custodian is None:
                raise CustodyError(
                    "Signing key is held by a custodian that is not configured",
                    {"identityId": str(identity.id), "keyId": custody.key_id},
                )
            signature = await self.custodian.sign(custody.key_id, payload)
            public_key = KeyReference(key_id=custody.key_id)
        else:
            raise NoPrivateKeyAvailableError(
                "Identity has neither a local secret key nor a custodial key",
                {"identityId": str(identity.id)},
            )

        return SignatureData(
            identity_id=identity.id,
            algorithm=key.algorithm,
            signature=signature.hex(),
            public_key=public_key,
        )

    async def verify(
        self,
        public_key: Union[KeyReference, str, bytes],
        payload: bytes,
        signature: Union[str, bytes],
        algorithm: str,
    ) -> VerificationResult:
        """Verify ``signature`` over ``payload``.

        Raises :class:`UnsupportedKeyCustodyError` for a key reference when no
        custodian is reachable; an invalid signature is reported, not raised.
        """
        try:
            sig_bytes = bytes.fromhex(signature) if isinstance(signature, str) else signature
        except ValueError:
            return VerificationResult(False, "Signature is not valid hex")

        if isinstance(public_key, KeyReference):
            if self.custodian is None:
                raise UnsupportedKeyCustodyError(
                    "Cannot verify against a custodial key reference without a custodian",
                    {"keyId": public_key.key_id},
                )
            valid = await self.custodian.verify(public_key.key_id, payload, sig_bytes)
        else:
            try:
                key_bytes = bytes.fromhex(public_key) if isinstance(public_key, str) else public_key
            except ValueError:
                return VerificationResult(False, "Public key is not valid hex")
            valid = self._registry.signature(algorithm).verify(key_bytes, payload, sig_bytes)

        if not valid:
            return VerificationResult(False, f"{algorithm} signature does not verify")
        return VerificationResult(True)

    async def verify_signature(self, data: SignatureData, payload: bytes) -> VerificationResult:
        return await self.verify(data.public_key, payload, data.signature, data.algorithm)
