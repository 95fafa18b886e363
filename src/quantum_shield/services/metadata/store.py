# SPDX-License-Identifier: MPL-2.0
"""Content-addressed metadata storage (IPFS-like)."""

import base64
import hashlib
from dataclasses import dataclass
from typing import Dict, Protocol

from quantum_shield.core.exceptions import MetadataNotFoundError

# CIDv1 prefix: version 1, raw codec, sha2-256 multihash of 32 bytes
_CID_PREFIX = b"\x01\x55\x12\x20"


@dataclass(frozen=True)
class StoredObject:
    cid: str
    url: str


class MetadataStore(Protocol):
    async def upload(self, data: bytes) -> StoredObject: ...

    async def retrieve(self, cid: str) -> bytes: ...


def compute_cid(data: bytes) -> str:
    """CIDv1 (raw, sha2-256) in base32 multibase form."""
    digest = hashlib.sha256(data).digest()
    encoded = base64.b32encode(_CID_PREFIX + digest).decode("ascii").rstrip("=").lower()
    return "b" + encoded


class InMemoryMetadataStore:
    def __init__(self) -> None:
        self._objects: Dict[str, bytes] = {}

    async def upload(self, data: bytes) -> StoredObject:
        cid = compute_cid(data)
        self._objects[cid] = bytes(data)
        return StoredObject(cid=cid, url=f"ipfs://{cid}")

    async def retrieve(self, cid: str) -> bytes:
        try:
            return self._objects[cid]
        except KeyError:
            raise MetadataNotFoundError(cid) from None
