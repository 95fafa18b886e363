# SPDX-License-Identifier: MPL-2.0
import pytest

from quantum_shield.core.canonicalization import canonical_bytes
from quantum_shield.core.channels import SecureMessenger
from quantum_shield.core.crypto import CryptoSuite
from quantum_shield.core.exceptions import AuthenticationError, CryptoOperationError
from quantum_shield.core.identity import IdentityKeyStore
from quantum_shield.core.models import EncryptedPackage, SecureChannel
from quantum_shield.core.signing import SignatureEngine

HYBRID = CryptoSuite("Ed25519+ML-DSA-65", "X25519")


def _flip(value: str) -> str:
    return value[:-1] + ("1" if value[-1] == "0" else "0")


@pytest.fixture
def parties(store, registry):
    identities = IdentityKeyStore(store, registry, suite_provider=lambda: HYBRID)
    engine = SignatureEngine(identities, registry)
    return identities, engine, SecureMessenger(identities, engine, registry)


async def _pair(identities):
    return (
        await identities.generate_identity("sender"),
        await identities.generate_identity("recipient"),
    )


class TestSecureChannel:
    @pytest.mark.asyncio
    async def test_both_sides_derive_the_same_key(self, parties):
        identities, _, messenger = parties
        sender, recipient = await _pair(identities)

        opened = await messenger.create_channel(sender.id, recipient.kem.public_key, "X25519")
        accepted = await messenger.accept_channel(recipient.id, opened.channel.to_dict())

        assert len(opened.key) == 32
        assert accepted.key == opened.key
        assert accepted.channel_id == opened.channel_id
        assert opened.channel.signature.identity_id == sender.id
        assert "key" not in repr(opened)

    @pytest.mark.asyncio
    async def test_other_recipient_derives_a_different_key(self, parties):
        identities, _, messenger = parties
        sender, recipient = await _pair(identities)
        bystander = await identities.generate_identity("bystander")

        opened = await messenger.create_channel(sender.id, recipient.kem.public_key, "X25519")
        accepted = await messenger.accept_channel(bystander.id, opened.channel)

        assert accepted.key != opened.key

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["ciphertext", "created"])
    async def test_tampered_channel_is_rejected(self, parties, field):
        identities, _, messenger = parties
        sender, recipient = await _pair(identities)
        opened = await messenger.create_channel(sender.id, recipient.kem.public_key, "X25519")

        raw = opened.channel.to_dict()
        if field == "ciphertext":
            raw["ciphertext"] = _flip(raw["ciphertext"])
        else:
            raw["created"] = "2020-01-01T00:00:00Z"

        with pytest.raises(AuthenticationError):
            await messenger.accept_channel(recipient.id, raw)

    @pytest.mark.asyncio
    async def test_tampered_signature_is_rejected(self, parties):
        identities, _, messenger = parties
        sender, recipient = await _pair(identities)
        opened = await messenger.create_channel(sender.id, recipient.kem.public_key, "X25519")

        raw = opened.channel.to_dict()
        raw["signature"]["signature"] = _flip(raw["signature"]["signature"])

        with pytest.raises(AuthenticationError):
            await messenger.accept_channel(recipient.id, raw)

    @pytest.mark.asyncio
    async def test_channel_signed_by_someone_else_is_rejected(self, parties):
        identities, engine, messenger = parties
        sender, recipient = await _pair(identities)
        impostor = await identities.generate_identity("impostor")

        opened = await messenger.create_channel(impostor.id, recipient.kem.public_key, "X25519")
        raw = opened.channel.to_dict()
        raw["senderId"] = str(sender.id)
        forged = SecureChannel.parse(raw)
        signature = await engine.sign(impostor.id, canonical_bytes(forged.signing_payload()))

        # signed by the impostor, as the impostor
        raw["signature"] = signature.to_dict()
        with pytest.raises(AuthenticationError):
            await messenger.accept_channel(recipient.id, raw)

        # signed by the impostor, claiming the sender's identity
        raw["signature"] = dict(signature.to_dict(), identityId=str(sender.id))
        with pytest.raises(AuthenticationError):
            await messenger.accept_channel(recipient.id, raw)

    @pytest.mark.asyncio
    async def test_kem_algorithm_mismatch(self, parties):
        identities, _, messenger = parties
        sender, recipient = await _pair(identities)
        opened = await messenger.create_channel(sender.id, recipient.kem.public_key, "ML-KEM-768")

        with pytest.raises(CryptoOperationError) as exc_info:
            await messenger.accept_channel(recipient.id, opened.channel)
        assert exc_info.value.details["received"] == "ML-KEM-768"


class TestEncryptedPackage:
    @pytest.mark.asyncio
    async def test_unsigned_round_trip(self, parties):
        identities, _, messenger = parties
        _, recipient = await _pair(identities)

        package = await messenger.encrypt(recipient.kem.public_key, "X25519", b"provenance record")

        assert not package.authenticated
        assert bytes.fromhex(package.ciphertext) != b"provenance record"
        assert len(bytes.fromhex(package.nonce)) == 12
        assert await messenger.decrypt(recipient.id, package.to_dict()) == b"provenance record"

    @pytest.mark.asyncio
    async def test_signed_round_trip(self, parties):
        identities, _, messenger = parties
        sender, recipient = await _pair(identities)

        package = await messenger.encrypt(
            recipient.kem.public_key, "X25519", b"provenance record", sender_id=sender.id
        )

        assert package.authenticated
        assert package.signature.identity_id == sender.id
        plaintext = await messenger.decrypt(recipient.id, package, require_signature=True)
        assert plaintext == b"provenance record"

    @pytest.mark.asyncio
    async def test_nonces_are_fresh(self, parties):
        identities, _, messenger = parties
        _, recipient = await _pair(identities)

        first = await messenger.encrypt(recipient.kem.public_key, "X25519", b"same")
        second = await messenger.encrypt(recipient.kem.public_key, "X25519", b"same")

        assert first.nonce != second.nonce
        assert first.ciphertext != second.ciphertext

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["ciphertext", "nonce", "kemAlgorithm"])
    async def test_tampered_unsigned_package_fails_closed(self, parties, field):
        identities, _, messenger = parties
        _, recipient = await _pair(identities)
        raw = (await messenger.encrypt(recipient.kem.public_key, "X25519", b"secret")).to_dict()

        if field == "kemAlgorithm":
            raw["kemAlgorithm"] = "ML-KEM-768"
            expected = CryptoOperationError
        else:
            raw[field] = _flip(raw[field])
            expected = AuthenticationError

        with pytest.raises(expected):
            await messenger.decrypt(recipient.id, raw)

    @pytest.mark.asyncio
    async def test_tampered_signed_package_is_rejected_before_decryption(
        self, parties, monkeypatch
    ):
        identities, _, messenger = parties
        sender, recipient = await _pair(identities)
        package = await messenger.encrypt(
            recipient.kem.public_key, "X25519", b"secret", sender_id=sender.id
        )
        raw = package.to_dict()
        raw["ciphertext"] = _flip(raw["ciphertext"])

        calls = []

        async def decapsulate(identity_id, ciphertext):
            calls.append(identity_id)

        monkeypatch.setattr(identities, "decapsulate", decapsulate)
        with pytest.raises(AuthenticationError):
            await messenger.decrypt(recipient.id, raw)
        assert calls == []

    @pytest.mark.asyncio
    async def test_unsigned_package_rejected_when_signature_required(self, parties):
        identities, _, messenger = parties
        _, recipient = await _pair(identities)
        package = await messenger.encrypt(recipient.kem.public_key, "X25519", b"secret")

        with pytest.raises(AuthenticationError):
            await messenger.decrypt(recipient.id, package, require_signature=True)

    @pytest.mark.asyncio
    async def test_stripped_signature_detected_when_required(self, parties):
        identities, _, messenger = parties
        sender, recipient = await _pair(identities)
        package = await messenger.encrypt(
            recipient.kem.public_key, "X25519", b"secret", sender_id=sender.id
        )
        stripped = EncryptedPackage.parse(dict(package.to_dict(), signature=None))

        assert await messenger.decrypt(recipient.id, stripped) == b"secret"
        with pytest.raises(AuthenticationError):
            await messenger.decrypt(recipient.id, stripped, require_signature=True)

    @pytest.mark.asyncio
    async def test_wrong_recipient_cannot_decrypt(self, parties):
        identities, _, messenger = parties
        _, recipient = await _pair(identities)
        bystander = await identities.generate_identity("bystander")
        package = await messenger.encrypt(recipient.kem.public_key, "X25519", b"secret")

        with pytest.raises(AuthenticationError):
            await messenger.decrypt(bystander.id, package)
