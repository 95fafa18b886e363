# SPDX-License-Identifier: MPL-2.0
"""Content hashing for tamper detection.

The integrity hash is independent of any signature: it detects changes to the
asset record even if a valid signature is replayed next to it.
"""

import hashlib
import hmac
from typing import Any, Mapping, Union

from quantum_shield.core.canonicalization import canonical_bytes
from quantum_shield.core.models import AssetData


class IntegrityHasher:
    """SHA3-256 over the canonical serialization of an asset record."""

    algorithm = "sha3-256"

    def hash(self, asset: Union[AssetData, Mapping[str, Any]]) -> str:
        record = asset.hashable() if isinstance(asset, AssetData) else dict(asset)
        return hashlib.sha3_256(canonical_bytes(record)).hexdigest()

    def matches(self, asset: Union[AssetData, Mapping[str, Any]], expected: str) -> bool:
        return hmac.compare_digest(self.hash(asset), expected)
