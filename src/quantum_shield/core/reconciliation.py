# SPDX-License-Identifier: MPL-2.0
"""Bookkeeping for ledger anchors that have no local record.

An anchor that reached the ledger before local persistence failed (or was
cancelled) cannot be retried without producing a duplicate anchor. It is
logged and recorded here for manual reconciliation instead.
"""

import logging
from typing import List

from quantum_shield.core.db import DurableStore
from quantum_shield.core.models import LedgerProof, OrphanedAnchor

logger = logging.getLogger(__name__)

COLLECTION = "reconciliation"


class ReconciliationLog:
    def __init__(self, store: DurableStore) -> None:
        self._store = store
        self.entries: List[OrphanedAnchor] = []

    async def record(
        self, kind: str, reference: str, ledger_proof: LedgerProof, reason: str
    ) -> OrphanedAnchor:
        orphan = OrphanedAnchor(
            kind=kind, reference=reference, ledger_proof=ledger_proof, reason=reason
        )
        logger.error(
            "Orphaned ledger anchor: %s %s (topic %s, sequence %d): %s",
            kind,
            reference,
            ledger_proof.log_id,
            ledger_proof.sequence_number,
            reason,
        )
        self.entries.append(orphan)
        key = f"{ledger_proof.log_id}:{ledger_proof.sequence_number}"
        try:
            await self._store.put(COLLECTION, key, orphan.to_dict())
        except Exception:
            # best-effort: the in-memory entry and the log line remain
            logger.exception("Failed to persist reconciliation record %s", key)
        return orphan

    async def pending(self) -> List[OrphanedAnchor]:
        records = await self._store.query(COLLECTION)
        return [OrphanedAnchor.model_validate(r) for r in records]
