# SPDX-License-Identifier: MPL-2.0
"""
Authenticated key establishment and encryption between identities.

A channel carries a KEM ciphertext signed by the sender; the recipient checks
the signature before decapsulating, and both sides derive the same AES-256 key
with HKDF. Encrypted packages use the same KEM step with AES-256-GCM and may
be signed by the sender, in which case the signature is checked before
anything is decrypted.
"""

import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from quantum_shield.core.canonicalization import canonical_bytes
from quantum_shield.core.crypto import CustodialKey, Encapsulation, ProviderRegistry
from quantum_shield.core.exceptions import (
    AuthenticationError,
    CryptoOperationError,
    IdentityNotFoundError,
)
from quantum_shield.core.identity import IdentityKeyStore
from quantum_shield.core.models import (
    EncryptedPackage,
    KeyReference,
    SecureChannel,
    SignatureData,
    utcnow,
)
from quantum_shield.core.signing import SignatureEngine

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
CHANNEL_INFO = b"quantum-shield/channel/v1"
ENCRYPTION_INFO = b"quantum-shield/encrypt/v1"


@dataclass(frozen=True)
class EstablishedChannel:
    channel: SecureChannel
    key: bytes = field(repr=False)

    @property
    def channel_id(self) -> uuid.UUID:
        return self.channel.channel_id


def derive_key(shared_secret: bytes, info: bytes, salt: Optional[bytes] = None) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(), length=KEY_SIZE, salt=salt, info=info
    ).derive(shared_secret)


def _unhex(value: str, what: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise AuthenticationError(f"{what} is not valid hex") from None


class SecureMessenger:
    """Signed channels and sealed packages on top of an identity store.

    Args:
        identities: Key store holding sender and recipient identities
        engine: Signs for senders and verifies sender signatures
        registry: KEM providers, looked up by the recipient key's algorithm
    """

    def __init__(
        self,
        identities: IdentityKeyStore,
        engine: SignatureEngine,
        registry: ProviderRegistry,
    ) -> None:
        self._identities = identities
        self._engine = engine
        self._registry = registry

    def _encapsulate(self, public_key: bytes, kem_algorithm: str) -> Encapsulation:
        provider = self._registry.kem(kem_algorithm)
        try:
            ciphertext, shared_secret = provider.encapsulate(public_key)
        except CryptoOperationError:
            raise
        except Exception as exc:
            raise CryptoOperationError(
                f"{kem_algorithm} encapsulation failed: {type(exc).__name__}"
            ) from None
        return Encapsulation(ciphertext, shared_secret)

    async def _recipient_secret(
        self, recipient_id: Union[str, uuid.UUID], kem_algorithm: str, ciphertext: bytes
    ) -> bytes:
        recipient = await self._identities.get(recipient_id)
        if recipient.kem.algorithm != kem_algorithm:
            raise CryptoOperationError(
                "Recipient KEM key does not match the sender's algorithm",
                {"expected": recipient.kem.algorithm, "received": kem_algorithm},
            )
        return await self._identities.decapsulate(recipient.id, ciphertext)

    async def _verify_sender(self, signature: SignatureData, payload: Mapping[str, Any]) -> bool:
        """True if ``signature`` verifies under the key stored for its identity."""
        try:
            sender = await self._identities.get(signature.identity_id)
        except IdentityNotFoundError:
            return False
        custody = sender.signing.custody
        if isinstance(custody, CustodialKey):
            expected: Union[KeyReference, str, None] = KeyReference(key_id=custody.key_id)
        else:
            expected = sender.signing.public_key.hex() if sender.signing.public_key else None
        if expected is None or signature.public_key != expected:
            return False
        if signature.algorithm != sender.signing.algorithm:
            return False
        result = await self._engine.verify_signature(signature, canonical_bytes(payload))
        return result.valid

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    async def create_channel(
        self,
        sender_id: Union[str, uuid.UUID],
        recipient_public_key: bytes,
        kem_algorithm: str,
    ) -> EstablishedChannel:
        """Encapsulate to the recipient and sign the result as ``sender_id``."""
        sender = await self._identities.get(sender_id)
        encapsulation = self._encapsulate(recipient_public_key, kem_algorithm)
        channel_id = uuid.uuid4()
        unsigned = {
            "channel_id": channel_id,
            "sender_id": sender.id,
            "kem_algorithm": kem_algorithm,
            "ciphertext": encapsulation.ciphertext.hex(),
            "created": utcnow(),
        }
        payload = SecureChannel.model_construct(**unsigned).signing_payload()
        signature = await self._engine.sign(sender.id, canonical_bytes(payload))
        channel = SecureChannel(signature=signature, **unsigned)
        logger.debug("Opened channel %s from %s", channel_id, sender.id)
        return EstablishedChannel(
            channel, derive_key(encapsulation.shared_secret, CHANNEL_INFO, channel_id.bytes)
        )

    async def accept_channel(
        self,
        recipient_id: Union[str, uuid.UUID],
        channel: Union[SecureChannel, Mapping[str, Any]],
    ) -> EstablishedChannel:
        """Verify the sender's signature, then decapsulate and derive the key.

        Raises:
            AuthenticationError: the signature is not the sender's or does not verify
        """
        channel = SecureChannel.parse(channel)
        if channel.signature.identity_id != channel.sender_id:
            raise AuthenticationError(
                "Channel is not signed by its sender", {"channelId": str(channel.channel_id)}
            )
        if not await self._verify_sender(channel.signature, channel.signing_payload()):
            logger.warning("Rejected channel %s from %s", channel.channel_id, channel.sender_id)
            raise AuthenticationError(
                "Invalid channel signature", {"channelId": str(channel.channel_id)}
            )
        shared_secret = await self._recipient_secret(
            recipient_id, channel.kem_algorithm, _unhex(channel.ciphertext, "ciphertext")
        )
        return EstablishedChannel(
            channel, derive_key(shared_secret, CHANNEL_INFO, channel.channel_id.bytes)
        )

    # ------------------------------------------------------------------
    # Packages
    # ------------------------------------------------------------------

    async def encrypt(
        self,
        recipient_public_key: bytes,
        kem_algorithm: str,
        plaintext: bytes,
        sender_id: Optional[Union[str, uuid.UUID]] = None,
    ) -> EncryptedPackage:
        encapsulation = self._encapsulate(recipient_public_key, kem_algorithm)
        nonce = os.urandom(NONCE_SIZE)
        key = derive_key(encapsulation.shared_secret, ENCRYPTION_INFO)
        kem_ciphertext = encapsulation.ciphertext.hex()
        sealed = AESGCM(key).encrypt(
            nonce, plaintext, _associated_data(kem_algorithm, kem_ciphertext)
        )
        package = EncryptedPackage(
            kem_algorithm=kem_algorithm,
            kem_ciphertext=kem_ciphertext,
            nonce=nonce.hex(),
            ciphertext=sealed.hex(),
        )
        if sender_id is None:
            return package
        signature = await self._engine.sign(sender_id, canonical_bytes(package.signing_payload()))
        return package.model_copy(update={"signature": signature})

    async def decrypt(
        self,
        recipient_id: Union[str, uuid.UUID],
        package: Union[EncryptedPackage, Mapping[str, Any]],
        require_signature: bool = False,
    ) -> bytes:
        """Open ``package`` for ``recipient_id``.

        A signed package is verified before any key material is touched.

        Raises:
            AuthenticationError: bad or missing signature, or the AEAD tag fails
        """
        package = EncryptedPackage.parse(package)
        if package.signature is not None:
            if not await self._verify_sender(package.signature, package.signing_payload()):
                raise AuthenticationError("Invalid package signature")
        elif require_signature:
            raise AuthenticationError("Package is not signed")

        shared_secret = await self._recipient_secret(
            recipient_id, package.kem_algorithm, _unhex(package.kem_ciphertext, "kemCiphertext")
        )
        key = derive_key(shared_secret, ENCRYPTION_INFO)
        try:
            return AESGCM(key).decrypt(
                _unhex(package.nonce, "nonce"),
                _unhex(package.ciphertext, "ciphertext"),
                _associated_data(package.kem_algorithm, package.kem_ciphertext),
            )
        except (InvalidTag, ValueError):
            raise AuthenticationError("Package failed authenticated decryption") from None


def _associated_data(kem_algorithm: str, kem_ciphertext: str) -> bytes:
    return canonical_bytes({"kemAlgorithm": kem_algorithm, "kemCiphertext": kem_ciphertext})
