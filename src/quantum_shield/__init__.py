# SPDX-License-Identifier: MPL-2.0
"""
Quantum Shield - Quantum-safe attestations for digital assets.

This package issues signed, ledger-anchored shields for assets, keeps an
append-only provenance chain per shield, and migrates the service between
classical, hybrid and post-quantum cryptographic postures.
"""

import contextlib
from importlib.metadata import version

# Set up version
__version__ = "0.1.0"

with contextlib.suppress(Exception):
    __version__ = version("quantum-shield")


# Core components
from quantum_shield.core import CryptoAgilityManager, CryptoState, canonicalize
from quantum_shield.services.shield.service import ShieldService

# Public API
__all__ = [
    "canonicalize",
    "CryptoState",
    "CryptoAgilityManager",
    "ShieldService",
    "__version__",
]
