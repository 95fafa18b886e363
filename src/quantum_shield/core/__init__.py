# SPDX-License-Identifier: MPL-2.0
"""Core functionality for Quantum Shield."""
from quantum_shield.core.canonicalization import canonical_bytes, canonicalize
from quantum_shield.core.models import CryptoState, ProvenanceEventType
from quantum_shield.core.hashing import IntegrityHasher
from quantum_shield.core.agility import CryptoAgilityManager
from quantum_shield.core.identity import IdentityKeyStore
from quantum_shield.core.signing import SignatureEngine
from quantum_shield.core.provenance import ProvenanceLedger
from quantum_shield.core.channels import SecureMessenger

__all__ = [
    "canonicalize",
    "canonical_bytes",
    "CryptoState",
    "ProvenanceEventType",
    "IntegrityHasher",
    "CryptoAgilityManager",
    "IdentityKeyStore",
    "SignatureEngine",
    "ProvenanceLedger",
    "SecureMessenger",
]
