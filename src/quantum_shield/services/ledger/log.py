# SPDX-License-Identifier: MPL-2.0
"""Append-only consensus log abstraction.

Only the operations the shield protocol needs are modeled: create a topic,
append a message, stream a topic's messages back. :class:`InMemoryLedgerLog`
mimics a Hedera consensus topic (``0.0.N`` ids, per-topic sequence numbers,
SHA-384 running hash) and backs the tests and local runs.
"""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerReceipt:
    topic_id: str
    transaction_id: str
    sequence_number: int
    running_hash: str
    consensus_timestamp: datetime


@dataclass(frozen=True)
class LedgerMessage:
    topic_id: str
    sequence_number: int
    consensus_timestamp: datetime
    contents: bytes
    running_hash: str
    transaction_id: str


@dataclass(frozen=True)
class MessageFilter:
    """Selects messages by inclusive sequence range and payload predicate."""

    start_sequence: int = 1
    end_sequence: Optional[int] = None
    predicate: Optional[Callable[[bytes], bool]] = None

    def matches(self, message: LedgerMessage) -> bool:
        if message.sequence_number < self.start_sequence:
            return False
        if self.end_sequence is not None and message.sequence_number > self.end_sequence:
            return False
        return self.predicate is None or self.predicate(message.contents)


class LedgerLog(Protocol):
    async def create_topic(self, memo: str) -> str: ...

    async def append(self, topic_id: str, message: bytes) -> LedgerReceipt: ...

    def read_messages(
        self, topic_id: str, message_filter: Optional[MessageFilter] = None
    ) -> AsyncIterator[LedgerMessage]: ...


@dataclass
class _Topic:
    memo: str
    messages: List[LedgerMessage]
    running_hash: bytes


class InMemoryLedgerLog:
    def __init__(self, account_id: str = "0.0.2", shard_realm: str = "0.0") -> None:
        self.account_id = account_id
        self.shard_realm = shard_realm
        self._topics: Dict[str, _Topic] = {}
        self._next_entity = 1000
        self._lock = asyncio.Lock()

    def _transaction_id(self) -> str:
        now = time.time_ns()
        return f"{self.account_id}@{now // 1_000_000_000}.{now % 1_000_000_000:09d}"

    async def create_topic(self, memo: str) -> str:
        async with self._lock:
            self._next_entity += 1
            topic_id = f"{self.shard_realm}.{self._next_entity}"
            self._topics[topic_id] = _Topic(memo=memo, messages=[], running_hash=b"\x00" * 48)
        logger.info("Created ledger topic %s (%s)", topic_id, memo)
        return topic_id

    def _topic(self, topic_id: str) -> _Topic:
        try:
            return self._topics[topic_id]
        except KeyError:
            raise ValueError(f"Unknown topic: {topic_id}") from None

    async def append(self, topic_id: str, message: bytes) -> LedgerReceipt:
        async with self._lock:
            topic = self._topic(topic_id)
            sequence = len(topic.messages) + 1
            timestamp = datetime.now(timezone.utc)
            if topic.messages and timestamp < topic.messages[-1].consensus_timestamp:
                timestamp = topic.messages[-1].consensus_timestamp
            digest = hashlib.sha384()
            digest.update(topic.running_hash)
            digest.update(topic_id.encode())
            digest.update(sequence.to_bytes(8, "big"))
            digest.update(timestamp.isoformat().encode())
            digest.update(hashlib.sha384(message).digest())
            topic.running_hash = digest.digest()
            entry = LedgerMessage(
                topic_id=topic_id,
                sequence_number=sequence,
                consensus_timestamp=timestamp,
                contents=bytes(message),
                running_hash=topic.running_hash.hex(),
                transaction_id=self._transaction_id(),
            )
            topic.messages.append(entry)
        return LedgerReceipt(
            topic_id=topic_id,
            transaction_id=entry.transaction_id,
            sequence_number=sequence,
            running_hash=entry.running_hash,
            consensus_timestamp=timestamp,
        )

    async def read_messages(
        self, topic_id: str, message_filter: Optional[MessageFilter] = None
    ) -> AsyncIterator[LedgerMessage]:
        message_filter = message_filter or MessageFilter()
        for message in list(self._topic(topic_id).messages):
            if message_filter.matches(message):
                yield message

    def topic_memo(self, topic_id: str) -> str:
        return self._topic(topic_id).memo
