# SPDX-License-Identifier: MPL-2.0
"""
Per-shield provenance chains.

Every event is signed, anchored in the ledger log, and only then appended to
the chain; there is no pending state. Appends for the same shield are
serialized by a per-shield lock, so the sign, anchor and persist sequence of
two events never interleaves. Different shields proceed concurrently.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Mapping, Optional, Union

from quantum_shield.core.canonicalization import canonical_bytes, to_json_compatible
from quantum_shield.core.db import DurableStore
from quantum_shield.core.exceptions import (
    ProvenanceNotFoundError,
    ValidationError,
)
from quantum_shield.core.identity import IdentityKeyStore
from quantum_shield.core.models import (
    CryptoState,
    IdentityScope,
    ProvenanceChain,
    ProvenanceEvent,
    ProvenanceEventType,
    SignatureData,
    event_payload,
    utcnow,
)
from quantum_shield.core.reconciliation import ReconciliationLog
from quantum_shield.core.signing import SignatureEngine
from quantum_shield.services.ledger.anchor import LedgerAnchor

logger = logging.getLogger(__name__)

COLLECTION = "provenance"
MIGRATION_ACTOR = "crypto-agility-manager"

RESERVED_EVENT_TYPES = {
    ProvenanceEventType.SHIELD_CREATED: "only recorded when a shield is created",
    ProvenanceEventType.MIGRATION_PERFORMED: "only recorded by a crypto-agility migration",
}


def _as_uuid(shield_id: Union[str, uuid.UUID]) -> uuid.UUID:
    if isinstance(shield_id, uuid.UUID):
        return shield_id
    try:
        return uuid.UUID(str(shield_id))
    except ValueError:
        raise ProvenanceNotFoundError(shield_id) from None


class ProvenanceLedger:
    def __init__(
        self,
        store: DurableStore,
        identities: IdentityKeyStore,
        engine: SignatureEngine,
        anchor: LedgerAnchor,
        reconciliation: ReconciliationLog,
        identity_scope: IdentityScope = IdentityScope.SHIELD,
    ) -> None:
        self._store = store
        self._identities = identities
        self._engine = engine
        self._anchor = anchor
        self._reconciliation = reconciliation
        self.identity_scope = identity_scope
        self._chains: Dict[uuid.UUID, ProvenanceChain] = {}
        self._locks: Dict[uuid.UUID, asyncio.Lock] = {}

    def _lock_for(self, shield_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(shield_id)
        if lock is None:
            lock = self._locks[shield_id] = asyncio.Lock()
        return lock

    async def _load(self, shield_id: uuid.UUID) -> Optional[ProvenanceChain]:
        chain = self._chains.get(shield_id)
        if chain is not None:
            return chain
        record = await self._store.get(COLLECTION, str(shield_id))
        if record is None:
            return None
        chain = ProvenanceChain.model_validate(record)
        self._chains[shield_id] = chain
        return chain

    async def get_chain(self, shield_id: Union[str, uuid.UUID]) -> ProvenanceChain:
        key = _as_uuid(shield_id)
        chain = await self._load(key)
        if chain is None:
            raise ProvenanceNotFoundError(key)
        return chain.model_copy(deep=True)

    async def initialize_chain(
        self,
        shield_id: uuid.UUID,
        asset_id: str,
        owner: str,
        created_at: Any,
        data: Mapping[str, Any],
        signer_id: uuid.UUID,
    ) -> ProvenanceEvent:
        """Create the chain with its SHIELD_CREATED event."""
        async with self._lock_for(shield_id):
            if await self._load(shield_id) is not None:
                raise ValidationError([f"shieldId: provenance chain already exists for {shield_id}"])
            chain = ProvenanceChain(
                shield_id=shield_id,
                asset_id=asset_id,
                original_owner=owner,
                current_owner=owner,
                created_at=created_at,
                last_updated=created_at,
            )
            return await self._append(
                chain, ProvenanceEventType.SHIELD_CREATED, owner, data, signer_id
            )

    async def append_event(
        self,
        shield_id: Union[str, uuid.UUID],
        event_type: Union[str, ProvenanceEventType],
        actor: str,
        data: Optional[Mapping[str, Any]] = None,
        signer_id: Optional[uuid.UUID] = None,
    ) -> ProvenanceEvent:
        """Sign, anchor and append one event to an existing chain."""
        key = _as_uuid(shield_id)
        event_type = ProvenanceEventType(event_type)
        data = dict(data or {})
        _validate_event(event_type, actor, data)

        async with self._lock_for(key):
            chain = await self._load(key)
            if chain is None:
                raise ProvenanceNotFoundError(key)
            return await self._append(chain, event_type, actor, data, signer_id)

    async def record_migration(
        self,
        shield_id: uuid.UUID,
        from_state: CryptoState,
        to_state: CryptoState,
        shield_signature: SignatureData,
    ) -> ProvenanceEvent:
        """Append the MIGRATION_PERFORMED event for a re-signed shield.

        The event is signed by the identity that produced ``shield_signature``,
        which becomes the shield's signer from then on.
        """
        async with self._lock_for(shield_id):
            chain = await self._load(shield_id)
            if chain is None:
                raise ProvenanceNotFoundError(shield_id)
            data = {
                "fromState": from_state.value,
                "toState": to_state.value,
                "previousIdentityId": str(chain.signer_identity_id()),
                "shieldSignature": shield_signature.to_dict(),
            }
            return await self._append(
                chain,
                ProvenanceEventType.MIGRATION_PERFORMED,
                MIGRATION_ACTOR,
                data,
                shield_signature.identity_id,
            )

    async def _append(
        self,
        chain: ProvenanceChain,
        event_type: ProvenanceEventType,
        actor: str,
        data: Mapping[str, Any],
        signer_id: Optional[uuid.UUID],
    ) -> ProvenanceEvent:
        normalized = to_json_compatible(dict(data))
        event_id = uuid.uuid4()
        # non-decreasing within the chain even if the clock steps back
        timestamp = max(utcnow(), chain.last_updated)

        signer = await self._signer_for(chain, event_type, signer_id)
        payload = event_payload(event_id, chain.shield_id, event_type, timestamp, actor, normalized)
        signature = await self._engine.sign(signer, canonical_bytes(payload))
        proof = await self._anchor.anchor(
            chain.shield_id, "provenance", event_id, signature, {"eventType": event_type.value}
        )

        event = ProvenanceEvent(
            event_id=event_id,
            shield_id=chain.shield_id,
            event_type=event_type,
            timestamp=timestamp,
            actor=actor,
            data=normalized,
            quantum_signature=signature,
            ledger_proof=proof,
        )
        updated = chain.model_copy(deep=True)
        updated.apply(event)
        try:
            await self._store.put(COLLECTION, str(chain.shield_id), updated.to_dict())
        except BaseException as exc:
            await self._reconciliation.record(
                "provenance-event",
                f"{chain.shield_id}/{event_id}",
                proof,
                f"{type(exc).__name__}: {exc}",
            )
            raise
        self._chains[chain.shield_id] = updated
        logger.info(
            "Appended %s to shield %s (event %d)",
            event_type.value,
            chain.shield_id,
            len(updated.events),
        )
        return event

    async def _signer_for(
        self,
        chain: ProvenanceChain,
        event_type: ProvenanceEventType,
        signer_id: Optional[uuid.UUID],
    ) -> uuid.UUID:
        if signer_id is not None:
            return signer_id
        if self.identity_scope is IdentityScope.SHIELD:
            current = chain.signer_identity_id()
            if current is not None:
                return current
        identity = await self._identities.generate_identity(f"provenance-event-{event_type.value}")
        return identity.id

    async def verify_chain(self, chain: ProvenanceChain) -> bool:
        """Re-verify structure and every event signature. Fails fast."""
        events = chain.events
        if not events or events[0].event_type is not ProvenanceEventType.SHIELD_CREATED:
            return False
        owner = chain.original_owner
        previous = None
        for index, event in enumerate(events):
            if event.shield_id != chain.shield_id:
                return False
            if index > 0 and event.event_type is ProvenanceEventType.SHIELD_CREATED:
                return False
            if (
                event.event_type is ProvenanceEventType.MIGRATION_PERFORMED
                and event.actor != MIGRATION_ACTOR
            ):
                return False
            if previous is not None and event.timestamp < previous:
                return False
            previous = event.timestamp
            if event.event_type is ProvenanceEventType.OWNERSHIP_TRANSFERRED:
                owner = str(event.data.get("newOwner"))
            result = await self._engine.verify_signature(
                event.quantum_signature, canonical_bytes(event.signing_payload())
            )
            if not result.valid:
                logger.warning(
                    "Invalid signature on event %s of shield %s", event.event_id, chain.shield_id
                )
                return False
        return owner == chain.current_owner

    async def all_chains(self) -> Dict[uuid.UUID, ProvenanceChain]:
        records = await self._store.query(COLLECTION)
        return {
            chain.shield_id: chain
            for chain in (ProvenanceChain.model_validate(r) for r in records)
        }


def _validate_event(
    event_type: ProvenanceEventType, actor: str, data: Mapping[str, Any]
) -> None:
    violations = []
    if not actor or not str(actor).strip():
        violations.append("actor: must not be empty")
    if event_type in RESERVED_EVENT_TYPES:
        violations.append(f"eventType: {event_type.value} is {RESERVED_EVENT_TYPES[event_type]}")
    if event_type is ProvenanceEventType.OWNERSHIP_TRANSFERRED:
        new_owner = data.get("newOwner")
        if not isinstance(new_owner, str) or not new_owner.strip():
            violations.append("data.newOwner: required for OWNERSHIP_TRANSFERRED")
    if violations:
        raise ValidationError(violations)
