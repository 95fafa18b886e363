# SPDX-License-Identifier: MPL-2.0
"""Per-entity key material.

An :class:`Identity` owns one signing key pair and one KEM key pair. Identities
are written to durable storage before they become visible in the in-memory
index, so a failed write never leaves a partial identity behind.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple, Union

from quantum_shield.core.crypto import (
    CustodialKey,
    CryptoSuite,
    Encapsulation,
    KEMKeyPair,
    KeyCustodian,
    LocalKey,
    ProviderRegistry,
    SigningKeyPair,
)
from quantum_shield.core.db import DurableStore
from quantum_shield.core.exceptions import (
    CryptoOperationError,
    CustodyError,
    IdentityNotFoundError,
    StorageError,
)
from quantum_shield.core.models import IdentityStatus, utcnow

logger = logging.getLogger(__name__)

COLLECTION = "identities"
DEFAULT_ROTATION_DAYS = 365


@dataclass(frozen=True)
class Identity:
    id: uuid.UUID
    name: str
    created: datetime
    signing: SigningKeyPair
    kem: KEMKeyPair
    rotation_days: int = DEFAULT_ROTATION_DAYS

    @property
    def custodial(self) -> bool:
        return self.signing.custodial


def _as_uuid(identity_id: Union[str, uuid.UUID]) -> uuid.UUID:
    if isinstance(identity_id, uuid.UUID):
        return identity_id
    try:
        return uuid.UUID(str(identity_id))
    except ValueError:
        raise IdentityNotFoundError(identity_id) from None


def _serialize(identity: Identity) -> Dict[str, Any]:
    """Persisted form. Custodial secrets are represented by their key id only."""
    signing: Dict[str, Any] = {
        "algorithm": identity.signing.algorithm,
        "created": identity.signing.created.isoformat(),
        "publicKey": identity.signing.public_key.hex() if identity.signing.public_key else None,
    }
    custody = identity.signing.custody
    if isinstance(custody, LocalKey):
        signing["secretKey"] = custody.secret_key.hex()
    elif isinstance(custody, CustodialKey):
        signing["keyId"] = custody.key_id
    return {
        "id": str(identity.id),
        "name": identity.name,
        "created": identity.created.isoformat(),
        "rotationDays": identity.rotation_days,
        "signing": signing,
        "kem": {
            "algorithm": identity.kem.algorithm,
            "created": identity.kem.created.isoformat(),
            "publicKey": identity.kem.public_key.hex(),
            "secretKey": identity.kem.secret_key.hex(),
        },
    }


def _deserialize(record: Dict[str, Any]) -> Identity:
    signing = record["signing"]
    custody: Optional[Union[LocalKey, CustodialKey]] = None
    if signing.get("secretKey"):
        custody = LocalKey(bytes.fromhex(signing["secretKey"]))
    elif signing.get("keyId"):
        custody = CustodialKey(signing["keyId"])
    kem = record["kem"]
    return Identity(
        id=uuid.UUID(record["id"]),
        name=record["name"],
        created=datetime.fromisoformat(record["created"]),
        rotation_days=int(record.get("rotationDays", DEFAULT_ROTATION_DAYS)),
        signing=SigningKeyPair(
            algorithm=signing["algorithm"],
            custody=custody,
            created=datetime.fromisoformat(signing["created"]),
            public_key=bytes.fromhex(signing["publicKey"]) if signing.get("publicKey") else None,
        ),
        kem=KEMKeyPair(
            algorithm=kem["algorithm"],
            public_key=bytes.fromhex(kem["publicKey"]),
            secret_key=bytes.fromhex(kem["secretKey"]),
            created=datetime.fromisoformat(kem["created"]),
        ),
    )


class IdentityKeyStore:
    """Creates, persists and reloads identities.

    Args:
        store: Durable storage for identity records
        registry: Providers used to generate key material
        suite_provider: Returns the suite for identities created without an
            explicit one (normally the agility manager's current suite)
        custodian: External key-management service for custodial signing keys
        rotation_days: Rotation schedule assigned to new identities
    """

    def __init__(
        self,
        store: DurableStore,
        registry: ProviderRegistry,
        suite_provider: Callable[[], CryptoSuite],
        custodian: Optional[KeyCustodian] = None,
        rotation_days: int = DEFAULT_ROTATION_DAYS,
    ) -> None:
        self._store = store
        self._registry = registry
        self._suite_provider = suite_provider
        self.custodian = custodian
        self.rotation_days = rotation_days
        self._index: Dict[uuid.UUID, Identity] = {}

    async def generate_identity(
        self, name: str, suite: Optional[CryptoSuite] = None, custodial: bool = False
    ) -> Identity:
        suite = suite or self._suite_provider()
        created = utcnow()
        signing, kem = await self._generate_keys(suite, created, custodial)
        identity = Identity(
            id=uuid.uuid4(),
            name=name,
            created=created,
            signing=signing,
            kem=kem,
            rotation_days=self.rotation_days,
        )
        await self._store.put(COLLECTION, str(identity.id), _serialize(identity))
        self._index[identity.id] = identity
        logger.debug(
            "Generated identity %s (%s, %s)", identity.id, suite.signature_algorithm, name
        )
        return identity

    async def _generate_keys(
        self, suite: CryptoSuite, created: datetime, custodial: bool
    ) -> Tuple[SigningKeyPair, KEMKeyPair]:
        kem_provider = self._registry.kem(suite.kem_algorithm)
        if custodial:
            if self.custodian is None:
                raise CustodyError("Custodial identity requested but no custodian is configured")
            key_id = await self.custodian.create_key(suite.signature_algorithm)
            signing = SigningKeyPair(
                algorithm=suite.signature_algorithm,
                custody=CustodialKey(key_id),
                created=created,
                public_key=await self.custodian.public_key(key_id),
            )
        else:
            provider = self._registry.signature(suite.signature_algorithm)
            try:
                public, secret = provider.generate_keypair()
            except CryptoOperationError:
                raise
            except Exception as exc:
                raise CryptoOperationError(
                    f"{suite.signature_algorithm} key generation failed: {type(exc).__name__}"
                ) from None
            signing = SigningKeyPair(
                algorithm=suite.signature_algorithm,
                custody=LocalKey(secret),
                created=created,
                public_key=public,
            )
        kem_public, kem_secret = kem_provider.generate_keypair()
        kem = KEMKeyPair(
            algorithm=suite.kem_algorithm,
            public_key=kem_public,
            secret_key=kem_secret,
            created=created,
        )
        return signing, kem

    async def load_identity(self, identity_id: Union[str, uuid.UUID]) -> Identity:
        """Rehydrate an identity from durable storage."""
        key = _as_uuid(identity_id)
        record = await self._store.get(COLLECTION, str(key))
        if record is None:
            raise IdentityNotFoundError(key)
        try:
            identity = _deserialize(record)
        except (KeyError, ValueError) as exc:
            raise StorageError(
                f"Corrupt identity record: {type(exc).__name__}", {"identityId": str(key)}
            ) from None
        self._index[identity.id] = identity
        return identity

    async def get(self, identity_id: Union[str, uuid.UUID]) -> Identity:
        key = _as_uuid(identity_id)
        identity = self._index.get(key)
        if identity is not None:
            return identity
        return await self.load_identity(key)

    def needs_rotation(self, identity: Identity, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        created = identity.created
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return now - created >= timedelta(days=identity.rotation_days)

    async def get_identity_status(self, identity_id: Union[str, uuid.UUID]) -> IdentityStatus:
        identity = await self.get(identity_id)
        due = self.needs_rotation(identity)
        if due:
            logger.warning("Identity %s is due for key rotation", identity.id)
        return IdentityStatus(
            identity_id=identity.id,
            name=identity.name,
            created=identity.created,
            needs_rotation=due,
            signing_algorithm=identity.signing.algorithm,
            kem_algorithm=identity.kem.algorithm,
            custodial=identity.custodial,
        )

    async def encapsulate_for(self, identity_id: Union[str, uuid.UUID]) -> Encapsulation:
        """Encapsulate a fresh shared secret to the identity's KEM public key."""
        identity = await self.get(identity_id)
        ciphertext, shared_secret = self._registry.kem(identity.kem.algorithm).encapsulate(
            identity.kem.public_key
        )
        return Encapsulation(ciphertext, shared_secret)

    async def decapsulate(self, identity_id: Union[str, uuid.UUID], ciphertext: bytes) -> bytes:
        identity = await self.get(identity_id)
        provider = self._registry.kem(identity.kem.algorithm)
        try:
            return provider.decapsulate(identity.kem.secret_key, ciphertext)
        except CryptoOperationError:
            raise
        except Exception as exc:
            raise CryptoOperationError(
                f"{identity.kem.algorithm} decapsulation failed: {type(exc).__name__}"
            ) from None
