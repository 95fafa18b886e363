# SPDX-License-Identifier: MPL-2.0
"""Data models for Quantum Shield.

All models serialize with camelCase aliases, which is the wire format used by
the HTTP API, the durable store and the ledger anchors.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from quantum_shield.core.exceptions import MigrationError, ValidationError

ModelT = TypeVar("ModelT", bound="ShieldModel")


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class CryptoState(str, Enum):
    """Crypto-agility posture, totally ordered from classical to post-quantum."""

    CLASSICAL_ONLY = "CLASSICAL_ONLY"  # Ed25519 / X25519 only
    HYBRID_SIGN = "HYBRID_SIGN"  # classical + PQC signatures
    HYBRID_ENCRYPT = "HYBRID_ENCRYPT"  # classical + PQC signatures and key exchange
    PQC_PRIMARY = "PQC_PRIMARY"  # PQC primary, classical kept as fallback
    PQC_ONLY = "PQC_ONLY"  # pure post-quantum

    @property
    def rank(self) -> int:
        return list(CryptoState).index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, CryptoState):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, CryptoState):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, CryptoState):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, CryptoState):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Union[str, "CryptoState"]) -> "CryptoState":
        """Parse a state name, accepting the SDK's legacy state names."""
        if isinstance(value, CryptoState):
            return value
        name = str(value).strip().upper()
        if name in LEGACY_STATE_ALIASES:
            return LEGACY_STATE_ALIASES[name]
        try:
            return cls(name)
        except ValueError:
            raise MigrationError(
                f"Unknown crypto state: {value}",
                {"allowed": [s.value for s in cls] + sorted(LEGACY_STATE_ALIASES)},
            ) from None


# SDK-era names, mapped monotonically onto the canonical order.
LEGACY_STATE_ALIASES: Dict[str, CryptoState] = {
    "HYBRID_PREPARE": CryptoState.CLASSICAL_ONLY,
    "HYBRID_VERIFY": CryptoState.PQC_PRIMARY,
    "QUANTUM_ONLY": CryptoState.PQC_ONLY,
}


class ProvenanceEventType(str, Enum):
    """Lifecycle events recorded on a shield's provenance chain."""

    SHIELD_CREATED = "SHIELD_CREATED"
    OWNERSHIP_TRANSFERRED = "OWNERSHIP_TRANSFERRED"
    METADATA_UPDATED = "METADATA_UPDATED"
    COMPLIANCE_VERIFIED = "COMPLIANCE_VERIFIED"
    MIGRATION_PERFORMED = "MIGRATION_PERFORMED"


class AssetType(str, Enum):
    """Known asset categories."""

    NFT = "nft"
    IP = "ip"
    DOCUMENT = "document"
    DATA = "data"


class IdentityScope(str, Enum):
    """Which identity signs provenance events."""

    SHIELD = "shield"  # the shield's own identity, rotated by migrations
    EVENT = "event"  # a fresh identity per event


class ShieldModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible dictionary using wire (camelCase) names."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def parse(cls: Type[ModelT], raw: Union[ModelT, Mapping[str, Any]]) -> ModelT:
        """Validate ``raw`` and report every violation as a :class:`ValidationError`."""
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, Mapping):
            raise ValidationError([f"body: expected an object, got {type(raw).__name__}"])
        try:
            return cls.model_validate(dict(raw))
        except PydanticValidationError as exc:
            raise ValidationError(_violations(exc)) from None


def _violations(exc: PydanticValidationError) -> List[str]:
    violations = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "body"
        violations.append(f"{location}: {error['msg']}")
    return violations


class AssetData(ShieldModel):
    """An asset submitted for shielding."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    asset_id: str = Field(min_length=1)
    asset_type: AssetType
    name: str = Field(min_length=1, max_length=200)
    owner: str = Field(min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def hashable(self) -> Dict[str, Any]:
        """The record the integrity hash is computed over."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class KeyReference(ShieldModel):
    """A pointer to key material held by an external custodian."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    key_id: str


class SignatureData(ShieldModel):
    """A signature and the public key (or key reference) that verifies it."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    identity_id: UUID
    algorithm: str
    signature: str  # hex
    public_key: Union[KeyReference, str]  # hex when held locally


class LedgerProof(ShieldModel):
    """Pointer to the message that anchors a record in the ledger log."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    log_id: str
    message_id: str
    sequence_number: int
    running_hash: Optional[str] = None
    anchored_at: Optional[datetime] = None


class Shield(ShieldModel):
    """A signed, hash-anchored attestation for one asset."""

    shield_id: UUID
    asset_id: str
    owner: str
    integrity_hash: str
    quantum_signature: SignatureData
    ledger_proof: LedgerProof
    migration_state: CryptoState
    timestamp: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def signing_payload(self) -> Dict[str, Any]:
        return shield_payload(self.shield_id, self.asset_id, self.integrity_hash, self.timestamp)


def shield_payload(
    shield_id: UUID, asset_id: str, integrity_hash: str, timestamp: datetime
) -> Dict[str, Any]:
    """The exact record a shield signature covers."""
    return {
        "shieldId": str(shield_id),
        "assetId": asset_id,
        "integrityHash": integrity_hash,
        "timestamp": timestamp,
    }


class ShieldSummary(ShieldModel):
    """Compact view returned when a shield is created over HTTP."""

    shield_id: UUID
    asset_id: str
    timestamp: datetime
    integrity_hash: str
    migration_state: CryptoState
    ledger_proof: LedgerProof

    @classmethod
    def from_shield(cls, shield: Shield) -> "ShieldSummary":
        return cls(
            shield_id=shield.shield_id,
            asset_id=shield.asset_id,
            timestamp=shield.timestamp,
            integrity_hash=shield.integrity_hash,
            migration_state=shield.migration_state,
            ledger_proof=shield.ledger_proof,
        )


class ShieldPage(ShieldModel):
    total: int
    limit: int
    offset: int
    shields: List[Shield]


class ProvenanceEvent(ShieldModel):
    """One signed, anchored entry of a provenance chain."""

    event_id: UUID
    shield_id: UUID
    event_type: ProvenanceEventType
    timestamp: datetime
    actor: str
    data: Dict[str, Any] = Field(default_factory=dict)
    quantum_signature: SignatureData
    ledger_proof: LedgerProof

    def signing_payload(self) -> Dict[str, Any]:
        return event_payload(
            self.event_id, self.shield_id, self.event_type, self.timestamp, self.actor, self.data
        )

    def migration_signature(self) -> Optional[SignatureData]:
        """The shield re-signature carried by a migration event, if well formed."""
        if self.event_type is not ProvenanceEventType.MIGRATION_PERFORMED:
            return None
        raw = self.data.get("shieldSignature")
        if not isinstance(raw, dict):
            return None
        try:
            return SignatureData.model_validate(raw)
        except PydanticValidationError:
            return None


def event_payload(
    event_id: UUID,
    shield_id: UUID,
    event_type: ProvenanceEventType,
    timestamp: datetime,
    actor: str,
    data: Mapping[str, Any],
) -> Dict[str, Any]:
    """The exact record a provenance event signature covers."""
    return {
        "eventId": str(event_id),
        "shieldId": str(shield_id),
        "eventType": event_type.value,
        "timestamp": timestamp,
        "actor": actor,
        "data": dict(data),
    }


class ProvenanceEventRequest(ShieldModel):
    """Client request to append an event."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    event_type: ProvenanceEventType
    actor: str = Field(min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)


class ProvenanceChain(ShieldModel):
    """Append-only, ordered lifecycle of one shield."""

    shield_id: UUID
    asset_id: str
    original_owner: str
    current_owner: str
    created_at: datetime
    last_updated: datetime
    events: List[ProvenanceEvent] = Field(default_factory=list)

    def apply(self, event: ProvenanceEvent) -> None:
        """Append ``event`` and update the derived fields."""
        self.events.append(event)
        self.last_updated = event.timestamp
        if event.event_type is ProvenanceEventType.OWNERSHIP_TRANSFERRED:
            self.current_owner = str(event.data["newOwner"])

    def signer_identity_id(self) -> Optional[UUID]:
        """Identity currently responsible for the shield.

        The creation event's signer, replaced by the signer of each migration.
        """
        for event in reversed(self.events):
            if event.event_type in (
                ProvenanceEventType.MIGRATION_PERFORMED,
                ProvenanceEventType.SHIELD_CREATED,
            ):
                return event.quantum_signature.identity_id
        return None

    def latest_migration_state(self) -> Optional[CryptoState]:
        """Target posture of the last well-formed migration event."""
        for event in reversed(self.events):
            if event.migration_signature() is None:
                continue
            try:
                return CryptoState.parse(event.data.get("toState", ""))
            except MigrationError:
                continue
        return None


class MigrationReadiness(ShieldModel):
    """Effective posture (after migrations) and the posture captured at creation."""

    state: CryptoState
    captured_state: CryptoState
    next_state: Optional[CryptoState] = None
    deadline: Optional[str] = None


class ComplianceCheck(ShieldModel):
    """Regulatory evaluation of a shield's effective posture."""

    shield_id: UUID
    compliant: bool
    regulations: Dict[str, bool]
    migration_readiness: MigrationReadiness
    recommendations: List[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=utcnow)


class IntegrityVerification(ShieldModel):
    """Outcome of re-verifying a shield and its provenance chain."""

    shield_id: UUID
    valid: bool
    signature_valid: bool
    provenance_valid: bool
    integrity_hash: str
    integrity_valid: Optional[bool] = None
    migration_state: CryptoState
    effective_state: CryptoState
    verified_at: datetime = Field(default_factory=utcnow)
    warnings: List[str] = Field(default_factory=list)


class MigrationStatus(ShieldModel):
    """Progress report for a crypto-agility migration run."""

    current_state: CryptoState
    target_state: CryptoState
    migrated_count: int = 0
    total_count: int = 0
    in_progress: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def progress(self) -> float:
        if self.total_count == 0:
            return 100.0
        return round(100.0 * self.migrated_count / self.total_count, 2)


class MigrationRequest(ShieldModel):
    target_state: str = Field(min_length=1)


class IdentityStatus(ShieldModel):
    identity_id: UUID
    name: str
    created: datetime
    needs_rotation: bool
    signing_algorithm: str
    kem_algorithm: str
    custodial: bool


class SecureChannel(ShieldModel):
    """KEM ciphertext for a recipient, signed by the sender."""

    channel_id: UUID
    sender_id: UUID
    kem_algorithm: str
    ciphertext: str  # hex
    created: datetime
    signature: SignatureData

    def signing_payload(self) -> Dict[str, Any]:
        return {
            "channelId": str(self.channel_id),
            "senderId": str(self.sender_id),
            "kemAlgorithm": self.kem_algorithm,
            "ciphertext": self.ciphertext,
            "created": self.created,
        }


class EncryptedPackage(ShieldModel):
    """KEM + AES-256-GCM envelope, optionally signed by the sender."""

    kem_algorithm: str
    kem_ciphertext: str  # hex
    nonce: str  # hex
    ciphertext: str  # hex, includes the GCM tag
    signature: Optional[SignatureData] = None

    def signing_payload(self) -> Dict[str, Any]:
        return {
            "kemAlgorithm": self.kem_algorithm,
            "kemCiphertext": self.kem_ciphertext,
            "nonce": self.nonce,
            "ciphertext": self.ciphertext,
        }

    @property
    def authenticated(self) -> bool:
        return self.signature is not None


class LedgerReconciliation(ShieldModel):
    """Local anchors compared against what the ledger log actually holds."""

    shield_id: UUID
    verified: bool
    local_sequence_numbers: List[int]
    ledger_sequence_numbers: List[int]
    discrepancies: List[str] = Field(default_factory=list)


class OrphanedAnchor(ShieldModel):
    """A ledger anchor with no corresponding local record."""

    kind: str
    reference: str
    ledger_proof: LedgerProof
    reason: str
    recorded_at: datetime = Field(default_factory=utcnow)
