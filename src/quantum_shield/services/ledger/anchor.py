# SPDX-License-Identifier: MPL-2.0
"""Anchoring of signed records in the ledger log."""

import asyncio
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Union
from uuid import UUID

from quantum_shield.core.canonicalization import canonical_bytes
from quantum_shield.core.exceptions import LedgerAnchorError
from quantum_shield.core.models import LedgerProof, SignatureData, utcnow
from quantum_shield.services.ledger.log import LedgerLog, LedgerMessage, MessageFilter

logger = logging.getLogger(__name__)

DEFAULT_PROOF_TOPIC_MEMO = "QuantumShield Proof Topic"


def is_nist_compliant(algorithm: str) -> bool:
    return "ML-DSA" in algorithm


class LedgerAnchor:
    """Submits proof messages to a single, memoized proof topic.

    The topic is created on first use only; concurrent first calls share it.
    """

    def __init__(
        self,
        log: LedgerLog,
        memo: str = DEFAULT_PROOF_TOPIC_MEMO,
        topic_id: Optional[str] = None,
    ) -> None:
        self._log = log
        self.memo = memo
        self._topic_id = topic_id
        self._lock = asyncio.Lock()

    async def proof_topic(self) -> str:
        if self._topic_id is not None:
            return self._topic_id
        async with self._lock:
            if self._topic_id is None:
                self._topic_id = await self._log.create_topic(self.memo)
        return self._topic_id

    async def anchor(
        self,
        shield_id: Union[str, UUID],
        kind: str,
        record_id: Union[str, UUID],
        signature: SignatureData,
        data: Mapping[str, Any],
    ) -> LedgerProof:
        """Anchor a signed record; any failure becomes :class:`LedgerAnchorError`."""
        message = {
            "kind": kind,
            "shieldId": str(shield_id),
            "recordId": str(record_id),
            "timestamp": utcnow(),
            "data": dict(data),
            "algorithm": signature.algorithm,
            "signature": signature.to_dict(),
            "nistCompliant": is_nist_compliant(signature.algorithm),
        }
        try:
            topic_id = await self.proof_topic()
            receipt = await self._log.append(topic_id, canonical_bytes(message))
        except Exception as exc:
            raise LedgerAnchorError(
                f"Failed to anchor {kind} record: {exc}",
                {"shieldId": str(shield_id), "recordId": str(record_id)},
            ) from exc
        logger.info(
            "Anchored %s %s at %s#%d", kind, record_id, receipt.topic_id, receipt.sequence_number
        )
        return LedgerProof(
            log_id=receipt.topic_id,
            message_id=receipt.transaction_id,
            sequence_number=receipt.sequence_number,
            running_hash=receipt.running_hash,
            anchored_at=receipt.consensus_timestamp,
        )

    async def find_proofs(self, shield_id: Union[str, UUID]) -> List[Dict[str, Any]]:
        """Return the decoded proof messages anchored for ``shield_id``."""
        needle = str(shield_id)
        found: List[Dict[str, Any]] = []
        try:
            topic_id = await self.proof_topic()
            async for message in self._log.read_messages(topic_id, MessageFilter()):
                decoded = _decode(message)
                if decoded is not None and decoded.get("shieldId") == needle:
                    found.append(decoded)
        except Exception as exc:
            raise LedgerAnchorError(
                f"Failed to read proofs: {exc}", {"shieldId": needle}
            ) from exc
        return found


def _decode(message: LedgerMessage) -> Optional[Dict[str, Any]]:
    try:
        decoded = json.loads(message.contents)
    except (UnicodeDecodeError, ValueError):
        logger.warning(
            "Skipping undecodable message %s#%d", message.topic_id, message.sequence_number
        )
        return None
    if not isinstance(decoded, dict):
        return None
    decoded["sequenceNumber"] = message.sequence_number
    decoded["transactionId"] = message.transaction_id
    return decoded
