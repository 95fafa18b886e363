# SPDX-License-Identifier: MPL-2.0
"""
Shield orchestration.

:meth:`ShieldService.shield_asset` turns an asset record into a signed,
ledger-anchored shield with an initialized provenance chain. Any failing step
aborts the whole operation and nothing partial is left in the shield table.
"""

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Union

from quantum_shield.config import ShieldSettings
from quantum_shield.core.agility import CryptoAgilityManager
from quantum_shield.core.canonicalization import canonical_bytes
from quantum_shield.core.channels import SecureMessenger
from quantum_shield.core.crypto import KeyCustodian, ProviderRegistry, build_registry
from quantum_shield.core.db import DurableStore, open_store
from quantum_shield.core.exceptions import (
    ConfigurationError,
    IdentityNotFoundError,
    ProviderUnavailableError,
    QuantumShieldError,
    ShieldNotFoundError,
    StorageError,
    ValidationError,
)
from quantum_shield.core.hashing import IntegrityHasher
from quantum_shield.core.identity import IdentityKeyStore
from quantum_shield.core.models import (
    AssetData,
    ComplianceCheck,
    CryptoState,
    IdentityScope,
    IntegrityVerification,
    LedgerReconciliation,
    MigrationStatus,
    ProvenanceChain,
    ProvenanceEvent,
    ProvenanceEventRequest,
    ProvenanceEventType,
    Shield,
    ShieldPage,
    shield_payload,
    utcnow,
)
from quantum_shield.core.provenance import ProvenanceLedger
from quantum_shield.core.reconciliation import ReconciliationLog
from quantum_shield.core.signing import SignatureEngine
from quantum_shield.services.ledger.anchor import LedgerAnchor
from quantum_shield.services.ledger.log import InMemoryLedgerLog, LedgerLog
from quantum_shield.services.metadata.store import InMemoryMetadataStore, MetadataStore

logger = logging.getLogger(__name__)

COLLECTION = "shields"
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
CLASSICAL_WARNING = "WARNING: Using classical cryptography only - not quantum-safe"


def _shield_uuid(shield_id: Union[str, uuid.UUID]) -> uuid.UUID:
    if isinstance(shield_id, uuid.UUID):
        return shield_id
    try:
        return uuid.UUID(str(shield_id))
    except ValueError:
        raise ShieldNotFoundError(shield_id) from None


class ShieldService:
    """Issues, verifies and migrates shields."""

    def __init__(
        self,
        store: DurableStore,
        ledger_log: LedgerLog,
        registry: ProviderRegistry,
        agility: Optional[CryptoAgilityManager] = None,
        metadata_store: Optional[MetadataStore] = None,
        custodian: Optional[KeyCustodian] = None,
        identity_scope: IdentityScope = IdentityScope.SHIELD,
        rotation_days: int = 365,
        proof_topic_memo: str = "QuantumShield Proof Topic",
    ) -> None:
        self.store = store
        self.registry = registry
        self.agility = agility or CryptoAgilityManager()
        self.metadata_store = metadata_store
        self.hasher = IntegrityHasher()
        self.identities = IdentityKeyStore(
            store,
            registry,
            suite_provider=self.agility.current_suite,
            custodian=custodian,
            rotation_days=rotation_days,
        )
        self.engine = SignatureEngine(self.identities, registry, custodian)
        self.messaging = SecureMessenger(self.identities, self.engine, registry)
        self.anchor = LedgerAnchor(ledger_log, memo=proof_topic_memo)
        self.reconciliation = ReconciliationLog(store)
        self.provenance = ProvenanceLedger(
            store,
            self.identities,
            self.engine,
            self.anchor,
            self.reconciliation,
            identity_scope=identity_scope,
        )

    @classmethod
    def from_settings(cls, settings: ShieldSettings) -> "ShieldService":
        registry = build_registry(
            settings.pqc_backend,
            settings.pqc_signature_algorithm,
            settings.pqc_kem_algorithm,
        )
        agility = CryptoAgilityManager(
            settings.migration_state,
            settings.pqc_signature_algorithm,
            settings.pqc_kem_algorithm,
        )
        suite = agility.current_suite()
        if not registry.supports(suite):
            raise ConfigurationError(
                f"Posture {agility.current_state.value} needs providers that are not "
                "registered; set QSHIELD_PQC_BACKEND=liboqs or choose CLASSICAL_ONLY",
                {
                    "signatureAlgorithm": suite.signature_algorithm,
                    "kemAlgorithm": suite.kem_algorithm,
                    "pqcBackend": settings.pqc_backend,
                },
            )
        metadata_store = InMemoryMetadataStore() if settings.metadata_store == "memory" else None
        return cls(
            store=open_store(settings.database),
            ledger_log=InMemoryLedgerLog(),
            registry=registry,
            agility=agility,
            metadata_store=metadata_store,
            identity_scope=settings.identity_scope,
            rotation_days=settings.rotation_days,
            proof_topic_memo=settings.proof_topic_memo,
        )

    async def close(self) -> None:
        await self.store.close()

    # ------------------------------------------------------------------
    # Shield lifecycle
    # ------------------------------------------------------------------

    async def shield_asset(self, asset: Union[AssetData, Mapping[str, Any]]) -> Shield:
        asset = AssetData.parse(asset)
        integrity_hash = self.hasher.hash(asset)

        # snapshot; a concurrent migration does not change this shield's posture
        state = self.agility.current_state
        suite = self.agility.suite_for(state)
        if not self.registry.supports(suite):
            raise ProviderUnavailableError(
                f"Posture {state.value} requires providers that are not registered",
                {
                    "signatureAlgorithm": suite.signature_algorithm,
                    "kemAlgorithm": suite.kem_algorithm,
                },
            )

        identity = await self.identities.generate_identity(asset.name, suite=suite)
        shield_id = uuid.uuid4()
        timestamp = utcnow()

        metadata: Dict[str, Any] = {"asset": asset.hashable()}
        if self.metadata_store is not None:
            stored = await self.metadata_store.upload(
                _metadata_document(asset, integrity_hash, state)
            )
            metadata["metadataCid"] = stored.cid
            metadata["metadataUrl"] = stored.url

        payload = shield_payload(shield_id, asset.asset_id, integrity_hash, timestamp)
        signature = await self.engine.sign(identity.id, canonical_bytes(payload))
        proof = await self.anchor.anchor(
            shield_id,
            "shield",
            shield_id,
            signature,
            {
                "assetId": asset.asset_id,
                "integrityHash": integrity_hash,
                "migrationState": state.value,
            },
        )

        shield = Shield(
            shield_id=shield_id,
            asset_id=asset.asset_id,
            owner=asset.owner,
            integrity_hash=integrity_hash,
            quantum_signature=signature,
            ledger_proof=proof,
            migration_state=state,
            timestamp=timestamp,
            metadata=metadata,
        )
        try:
            await self.store.put(COLLECTION, str(shield_id), shield.to_dict())
        except BaseException as exc:
            await self.reconciliation.record(
                "shield", str(shield_id), proof, f"{type(exc).__name__}: {exc}"
            )
            raise

        try:
            await self.provenance.initialize_chain(
                shield_id,
                asset.asset_id,
                asset.owner,
                timestamp,
                {
                    "assetType": asset.asset_type.value,
                    "integrityHash": integrity_hash,
                    "migrationState": state.value,
                },
                signer_id=identity.id,
            )
        except BaseException as exc:
            await self._discard_shield(shield_id)
            await self.reconciliation.record(
                "shield", str(shield_id), proof, f"{type(exc).__name__}: {exc}"
            )
            raise

        logger.info(
            "Shielded asset %s as %s (%s)", asset.asset_id, shield_id, state.value
        )
        return shield

    async def _discard_shield(self, shield_id: uuid.UUID) -> None:
        try:
            await self.store.delete(COLLECTION, str(shield_id))
        except StorageError:
            logger.exception("Failed to remove incomplete shield %s", shield_id)

    async def get_shield(self, shield_id: Union[str, uuid.UUID]) -> Shield:
        key = _shield_uuid(shield_id)
        record = await self.store.get(COLLECTION, str(key))
        if record is None:
            raise ShieldNotFoundError(key)
        return Shield.model_validate(record)

    async def list_shields(
        self, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> ShieldPage:
        violations = []
        if not 1 <= limit <= MAX_PAGE_SIZE:
            violations.append(f"limit: must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            violations.append("offset: must not be negative")
        if violations:
            raise ValidationError(violations)
        records = await self.store.query(COLLECTION)
        return ShieldPage(
            total=len(records),
            limit=limit,
            offset=offset,
            shields=[Shield.model_validate(r) for r in records[offset : offset + limit]],
        )

    async def verify_shield(self, shield_id: Union[str, uuid.UUID]) -> IntegrityVerification:
        """Re-verify a shield and its chain. Performs no writes."""
        shield = await self.get_shield(shield_id)
        chain = await self.provenance.get_chain(shield.shield_id)
        payload = canonical_bytes(shield.signing_payload())

        signature_valid = (await self.engine.verify_signature(shield.quantum_signature, payload)).valid
        for event in chain.events:
            if event.event_type is not ProvenanceEventType.MIGRATION_PERFORMED:
                continue
            resigned = event.migration_signature()
            # the re-signature must come from the identity that signed the event
            if resigned is None or resigned.identity_id != event.quantum_signature.identity_id:
                signature_valid = False
                continue
            result = await self.engine.verify_signature(resigned, payload)
            signature_valid = signature_valid and result.valid

        provenance_valid = await self.provenance.verify_chain(chain)
        effective_state = chain.latest_migration_state() or shield.migration_state

        integrity_valid = None
        asset = shield.metadata.get("asset")
        if isinstance(asset, dict):
            integrity_valid = self.hasher.matches(asset, shield.integrity_hash)

        warnings: List[str] = []
        if effective_state is CryptoState.CLASSICAL_ONLY:
            warnings.append(CLASSICAL_WARNING)
        signer_id = chain.signer_identity_id() or shield.quantum_signature.identity_id
        try:
            identity = await self.identities.get(signer_id)
        except IdentityNotFoundError:
            warnings.append(f"Signing identity {signer_id} not found in key store")
        else:
            if self.identities.needs_rotation(identity):
                warnings.append(f"Signing identity {signer_id} is due for key rotation")
        if integrity_valid is False:
            warnings.append("Stored asset record does not match the integrity hash")

        return IntegrityVerification(
            shield_id=shield.shield_id,
            valid=signature_valid and provenance_valid,
            signature_valid=signature_valid,
            provenance_valid=provenance_valid,
            integrity_hash=shield.integrity_hash,
            integrity_valid=integrity_valid,
            migration_state=shield.migration_state,
            effective_state=effective_state,
            warnings=warnings,
        )

    async def get_provenance(self, shield_id: Union[str, uuid.UUID]) -> ProvenanceChain:
        shield = await self.get_shield(shield_id)
        return await self.provenance.get_chain(shield.shield_id)

    async def add_provenance_event(
        self,
        shield_id: Union[str, uuid.UUID],
        request: Union[ProvenanceEventRequest, Mapping[str, Any]],
    ) -> ProvenanceEvent:
        request = ProvenanceEventRequest.parse(request)
        shield = await self.get_shield(shield_id)
        return await self.provenance.append_event(
            shield.shield_id, request.event_type, request.actor, request.data
        )

    async def transfer_ownership(
        self,
        shield_id: Union[str, uuid.UUID],
        new_owner: str,
        actor: Optional[str] = None,
    ) -> ProvenanceEvent:
        chain = await self.get_provenance(shield_id)
        return await self.provenance.append_event(
            chain.shield_id,
            ProvenanceEventType.OWNERSHIP_TRANSFERRED,
            actor or chain.current_owner,
            {"previousOwner": chain.current_owner, "newOwner": new_owner},
        )

    async def update_metadata(
        self, shield_id: Union[str, uuid.UUID], changes: Mapping[str, Any], actor: str
    ) -> ProvenanceEvent:
        shield = await self.get_shield(shield_id)
        return await self.provenance.append_event(
            shield.shield_id, ProvenanceEventType.METADATA_UPDATED, actor, {"changes": dict(changes)}
        )

    async def check_compliance(self, shield_id: Union[str, uuid.UUID]) -> ComplianceCheck:
        shield = await self.get_shield(shield_id)
        chain = await self.provenance.get_chain(shield.shield_id)
        return self.agility.check_compliance(shield, chain.latest_migration_state())

    async def reconcile_with_ledger(
        self, shield_id: Union[str, uuid.UUID]
    ) -> LedgerReconciliation:
        """Compare local anchors of a shield with the ledger's proof messages."""
        shield = await self.get_shield(shield_id)
        chain = await self.provenance.get_chain(shield.shield_id)
        local = [shield.ledger_proof.sequence_number] + [
            e.ledger_proof.sequence_number for e in chain.events
        ]
        on_ledger = [p["sequenceNumber"] for p in await self.anchor.find_proofs(shield.shield_id)]

        discrepancies = [
            f"Local anchor #{n} not found on ledger" for n in local if n not in on_ledger
        ]
        discrepancies += [
            f"Ledger anchor #{n} has no local record" for n in on_ledger if n not in local
        ]
        return LedgerReconciliation(
            shield_id=shield.shield_id,
            verified=not discrepancies,
            local_sequence_numbers=local,
            ledger_sequence_numbers=on_ledger,
            discrepancies=discrepancies,
        )

    # ------------------------------------------------------------------
    # Crypto agility
    # ------------------------------------------------------------------

    async def migrate_to_state(self, target: Union[str, CryptoState]) -> MigrationStatus:
        """Re-sign every shield not yet migrated to ``target``.

        Each migrated shield gets a MIGRATION_PERFORMED event signed by a new
        identity in the target suite. Already migrated shields are skipped, so
        an interrupted run can simply be repeated.
        """
        target = CryptoState.parse(target)
        suite = self.agility.suite_for(target)
        if not self.registry.supports(suite):
            raise ProviderUnavailableError(
                f"Posture {target.value} requires providers that are not registered",
                {
                    "signatureAlgorithm": suite.signature_algorithm,
                    "kemAlgorithm": suite.kem_algorithm,
                },
            )

        chains = await self.provenance.all_chains()
        shields = [Shield.model_validate(r) for r in await self.store.query(COLLECTION)]
        pending = []
        for shield in shields:
            chain = chains.get(shield.shield_id)
            if chain is None:
                continue
            effective = chain.latest_migration_state() or shield.migration_state
            if effective is not target:
                pending.append((shield, effective))

        self.agility.begin_migration(target, len(pending))
        try:
            for shield, effective in pending:
                identity = await self.identities.generate_identity(
                    f"migration-{shield.shield_id}", suite=suite
                )
                resigned = await self.engine.sign(
                    identity.id, canonical_bytes(shield.signing_payload())
                )
                await self.provenance.record_migration(
                    shield.shield_id, effective, target, resigned
                )
                self.agility.record_progress()
        except QuantumShieldError as exc:
            return self.agility.abort_migration(exc.message)
        except BaseException:
            self.agility.abort_migration("interrupted")
            raise
        return self.agility.complete_migration()

    def get_migration_status(self) -> MigrationStatus:
        return self.agility.status()


def _metadata_document(asset: AssetData, integrity_hash: str, state: CryptoState) -> bytes:
    """HIP-412 style metadata document for the asset."""
    document = {
        "name": asset.name,
        "description": asset.description or "",
        "type": asset.asset_type.value,
        "creator": asset.owner,
        "checksum": integrity_hash,
        "properties": {
            "assetId": asset.asset_id,
            "category": asset.category,
            "migrationState": state.value,
            "attributes": asset.metadata,
        },
    }
    return canonical_bytes(document)
