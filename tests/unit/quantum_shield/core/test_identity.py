# SPDX-License-Identifier: MPL-2.0
import uuid
from datetime import timedelta

import pytest

from quantum_shield.core.crypto import CryptoSuite, InMemoryCustodian, LocalKey
from quantum_shield.core.db import InMemoryStore
from quantum_shield.core.exceptions import (
    CustodyError,
    IdentityNotFoundError,
    ProviderUnavailableError,
    StorageError,
)
from quantum_shield.core.identity import COLLECTION, IdentityKeyStore

HYBRID = CryptoSuite("Ed25519+ML-DSA-65", "X25519")


class FailingStore(InMemoryStore):
    async def put(self, collection, key, record):
        raise StorageError("disk full")


def _keystore(store, registry, **kwargs):
    return IdentityKeyStore(store, registry, suite_provider=lambda: HYBRID, **kwargs)


class TestIdentityKeyStore:
    @pytest.mark.asyncio
    async def test_generate_persists_and_indexes(self, store, registry):
        identities = _keystore(store, registry)
        identity = await identities.generate_identity("Test")
        assert identity.signing.algorithm == "Ed25519+ML-DSA-65"
        assert identity.kem.algorithm == "X25519"
        assert isinstance(identity.signing.custody, LocalKey)
        assert await store.get(COLLECTION, str(identity.id)) is not None
        assert await identities.get(identity.id) is identity

    @pytest.mark.asyncio
    async def test_load_rehydrates_key_material(self, store, registry):
        identity = await _keystore(store, registry).generate_identity("Test")
        reloaded = await _keystore(store, registry).load_identity(str(identity.id))
        assert reloaded.signing.public_key == identity.signing.public_key
        assert reloaded.signing.custody == identity.signing.custody
        assert reloaded.kem.public_key == identity.kem.public_key
        assert reloaded.created == identity.created

    @pytest.mark.asyncio
    async def test_failed_write_leaves_no_identity(self, registry):
        identities = _keystore(FailingStore(), registry)
        with pytest.raises(StorageError):
            await identities.generate_identity("Test")
        assert identities._index == {}

    @pytest.mark.asyncio
    async def test_unknown_identity(self, store, registry):
        identities = _keystore(store, registry)
        with pytest.raises(IdentityNotFoundError) as exc_info:
            await identities.get(uuid.uuid4())
        assert exc_info.value.details["resource"] == "identity"
        with pytest.raises(IdentityNotFoundError):
            await identities.get("not-a-uuid")

    @pytest.mark.asyncio
    async def test_unsupported_suite(self, store, registry):
        identities = _keystore(store, registry)
        with pytest.raises(ProviderUnavailableError):
            await identities.generate_identity("Test", suite=CryptoSuite("SPHINCS+", "X25519"))

    @pytest.mark.asyncio
    async def test_needs_rotation(self, store, registry):
        identities = _keystore(store, registry, rotation_days=365)
        identity = await identities.generate_identity("Test")
        assert not identities.needs_rotation(identity)
        assert not identities.needs_rotation(identity, identity.created + timedelta(days=364))
        assert identities.needs_rotation(identity, identity.created + timedelta(days=365))

        status = await identities.get_identity_status(identity.id)
        assert status.needs_rotation is False
        assert status.custodial is False
        assert status.signing_algorithm == "Ed25519+ML-DSA-65"

    @pytest.mark.asyncio
    async def test_custodial_record_has_no_secret(self, store, registry):
        identities = _keystore(store, registry, custodian=InMemoryCustodian(registry))
        identity = await identities.generate_identity("Vault", custodial=True)
        record = await store.get(COLLECTION, str(identity.id))
        assert "secretKey" not in record["signing"]
        assert record["signing"]["keyId"].startswith("kms-")
        assert (await identities.get_identity_status(identity.id)).custodial

    @pytest.mark.asyncio
    async def test_custodial_needs_custodian(self, store, registry):
        with pytest.raises(CustodyError):
            await _keystore(store, registry).generate_identity("Vault", custodial=True)

    @pytest.mark.asyncio
    async def test_kem_round_trip(self, store, registry):
        identities = _keystore(store, registry)
        identity = await identities.generate_identity("Peer")
        encapsulation = await identities.encapsulate_for(identity.id)
        recovered = await identities.decapsulate(identity.id, encapsulation.ciphertext)
        assert recovered == encapsulation.shared_secret
