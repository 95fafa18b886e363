# SPDX-License-Identifier: MPL-2.0
import pytest

from quantum_shield.core.exceptions import MigrationError, ValidationError
from quantum_shield.core.models import (
    AssetData,
    CryptoState,
    MigrationStatus,
    ProvenanceEventRequest,
)


class TestCryptoState:
    def test_total_order(self):
        states = list(CryptoState)
        assert states == sorted(states)
        assert CryptoState.CLASSICAL_ONLY < CryptoState.HYBRID_SIGN < CryptoState.PQC_ONLY
        assert CryptoState.PQC_PRIMARY >= CryptoState.HYBRID_ENCRYPT

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("HYBRID_PREPARE", CryptoState.CLASSICAL_ONLY),
            ("HYBRID_VERIFY", CryptoState.PQC_PRIMARY),
            ("QUANTUM_ONLY", CryptoState.PQC_ONLY),
            ("hybrid_sign", CryptoState.HYBRID_SIGN),
        ],
    )
    def test_parse_accepts_legacy_names(self, name, expected):
        assert CryptoState.parse(name) is expected

    def test_parse_rejects_unknown(self):
        with pytest.raises(MigrationError):
            CryptoState.parse("QUANTUM_MAYBE")


class TestAssetValidation:
    def test_lists_every_violation(self):
        with pytest.raises(ValidationError) as exc_info:
            AssetData.parse({"assetId": "", "name": "", "owner": "", "assetType": "car"})
        violations = exc_info.value.violations
        assert len(violations) == 4
        for field in ("assetId", "name", "owner", "assetType"):
            assert any(v.startswith(field) for v in violations), field

    def test_whitespace_only_name_is_empty(self):
        with pytest.raises(ValidationError):
            AssetData.parse({"assetId": "1", "name": "   ", "owner": "o", "assetType": "ip"})

    def test_non_object_body(self):
        with pytest.raises(ValidationError):
            AssetData.parse(["not", "an", "object"])

    def test_accepts_python_names(self):
        asset = AssetData.parse(
            {"asset_id": "1", "name": "n", "owner": "o", "asset_type": "document"}
        )
        assert asset.hashable() == {
            "assetId": "1",
            "assetType": "document",
            "name": "n",
            "owner": "o",
            "metadata": {},
        }


def test_event_request_requires_actor():
    with pytest.raises(ValidationError):
        ProvenanceEventRequest.parse({"eventType": "METADATA_UPDATED", "actor": ""})


def test_migration_progress_is_serialized():
    status = MigrationStatus(
        current_state=CryptoState.HYBRID_SIGN,
        target_state=CryptoState.PQC_PRIMARY,
        migrated_count=1,
        total_count=4,
    )
    assert status.progress == 25.0
    assert status.to_dict()["progress"] == 25.0
    assert status.to_dict()["migratedCount"] == 1
