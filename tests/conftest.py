# SPDX-License-Identifier: MPL-2.0
"""Shared fixtures.

The lattice providers below are test doubles that reuse Ed25519 and X25519
under the ML-DSA/ML-KEM algorithm names, so every posture can be exercised
without a liboqs build. They are never registered outside the test suite.
"""

import pytest

from quantum_shield.core.agility import CryptoAgilityManager
from quantum_shield.core.crypto import (
    Ed25519SignatureProvider,
    ProviderRegistry,
    X25519KEMProvider,
    classical_registry,
)
from quantum_shield.core.db import InMemoryStore
from quantum_shield.core.models import CryptoState
from quantum_shield.services.ledger.log import InMemoryLedgerLog
from quantum_shield.services.shield.service import ShieldService

SAMPLE_ASSET = {
    "assetId": "0.0.100:1",
    "name": "Test",
    "owner": "0.0.200",
    "assetType": "nft",
}


class FakeMLDSAProvider(Ed25519SignatureProvider):
    algorithm = "ML-DSA-65"


class FakeMLKEMProvider(X25519KEMProvider):
    algorithm = "ML-KEM-768"


def make_registry() -> ProviderRegistry:
    registry = classical_registry()
    registry.register_signature(FakeMLDSAProvider())
    registry.register_kem(FakeMLKEMProvider())
    registry.register_hybrids("ML-DSA-65", "ML-KEM-768")
    return registry


def make_service(state=CryptoState.HYBRID_SIGN, **kwargs) -> ShieldService:
    kwargs.setdefault("store", InMemoryStore())
    kwargs.setdefault("ledger_log", InMemoryLedgerLog())
    kwargs.setdefault("registry", make_registry())
    return ShieldService(agility=CryptoAgilityManager(state), **kwargs)


@pytest.fixture
def registry():
    return make_registry()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def ledger_log():
    return InMemoryLedgerLog()


@pytest.fixture
def service(store, ledger_log, registry):
    return make_service(store=store, ledger_log=ledger_log, registry=registry)


@pytest.fixture
def sample_asset():
    return dict(SAMPLE_ASSET)


@pytest.fixture
def service_factory():
    """Build services with a chosen posture and optional overrides."""
    return make_service
