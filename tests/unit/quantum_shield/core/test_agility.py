# SPDX-License-Identifier: MPL-2.0
import itertools
import uuid
from datetime import datetime, timezone

import pytest

from quantum_shield.core.agility import (
    CryptoAgilityManager,
    Migrating,
    Stable,
    get_next_state,
    regulations_for,
)
from quantum_shield.core.exceptions import MigrationError
from quantum_shield.core.models import CryptoState, LedgerProof, Shield, SignatureData


def _shield(state: CryptoState) -> Shield:
    return Shield(
        shield_id=uuid.uuid4(),
        asset_id="0.0.100:1",
        owner="0.0.200",
        integrity_hash="00" * 32,
        quantum_signature=SignatureData(
            identity_id=uuid.uuid4(), algorithm="Ed25519", signature="00", public_key="00"
        ),
        ledger_proof=LedgerProof(log_id="0.0.1001", message_id="tx", sequence_number=1),
        migration_state=state,
        timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


class TestStateOrder:
    def test_next_state(self):
        assert get_next_state(CryptoState.CLASSICAL_ONLY) is CryptoState.HYBRID_SIGN
        assert get_next_state(CryptoState.PQC_PRIMARY) is CryptoState.PQC_ONLY
        assert get_next_state(CryptoState.PQC_ONLY) is None

    def test_compliance_is_monotonic(self):
        for lower, higher in itertools.combinations(list(CryptoState), 2):
            before = regulations_for(lower)
            after = regulations_for(higher)
            for name, passed in before.items():
                assert not passed or after[name], (lower, higher, name)


class TestComplianceCheck:
    def test_classical_is_non_compliant(self):
        check = CryptoAgilityManager().check_compliance(_shield(CryptoState.CLASSICAL_ONLY))
        assert check.compliant is False
        assert check.regulations["CNSA-2.0"] is False
        assert check.regulations["NIST-FIPS-203"] is False
        assert any("URGENT" in r for r in check.recommendations)
        assert check.migration_readiness.next_state is CryptoState.HYBRID_SIGN
        assert check.migration_readiness.deadline == "2030-01-01"

    def test_uses_captured_state_not_service_state(self):
        manager = CryptoAgilityManager(CryptoState.CLASSICAL_ONLY)
        check = manager.check_compliance(_shield(CryptoState.PQC_PRIMARY))
        assert check.compliant is True
        assert check.migration_readiness.deadline == "2035-01-01"
        assert check.recommendations == ["Good: On track for 2035 PQC_ONLY mandate"]

    def test_pqc_only_has_no_deadline(self):
        check = CryptoAgilityManager().check_compliance(_shield(CryptoState.PQC_ONLY))
        assert check.migration_readiness.next_state is None
        assert check.migration_readiness.deadline is None

    def test_effective_state_overrides_captured_state(self):
        check = CryptoAgilityManager().check_compliance(
            _shield(CryptoState.CLASSICAL_ONLY), effective_state=CryptoState.PQC_ONLY
        )
        assert check.compliant is True
        assert check.migration_readiness.state is CryptoState.PQC_ONLY
        assert check.migration_readiness.captured_state is CryptoState.CLASSICAL_ONLY


class TestSuites:
    def test_suite_mapping(self):
        manager = CryptoAgilityManager()
        assert manager.suite_for(CryptoState.CLASSICAL_ONLY).signature_algorithm == "Ed25519"
        assert manager.suite_for(CryptoState.HYBRID_SIGN).signature_algorithm == "Ed25519+ML-DSA-65"
        assert manager.suite_for(CryptoState.HYBRID_SIGN).kem_algorithm == "X25519"
        assert manager.suite_for(CryptoState.HYBRID_ENCRYPT).kem_algorithm == "X25519+ML-KEM-768"
        assert manager.suite_for(CryptoState.PQC_ONLY).signature_algorithm == "ML-DSA-65"
        assert manager.suite_for(CryptoState.PQC_ONLY).kem_algorithm == "ML-KEM-768"

    def test_parameter_sets_follow_configuration(self):
        manager = CryptoAgilityManager(CryptoState.PQC_ONLY, "ML-DSA-87", "ML-KEM-1024")
        assert manager.current_suite().signature_algorithm == "ML-DSA-87"


class TestMigrationLifecycle:
    def test_begin_progress_complete(self):
        manager = CryptoAgilityManager(CryptoState.HYBRID_SIGN)
        status = manager.begin_migration(CryptoState.PQC_PRIMARY, total=4)
        assert status.in_progress
        assert isinstance(manager.posture, Migrating)
        assert manager.current_state is CryptoState.HYBRID_SIGN

        manager.record_progress()
        manager.record_progress()
        assert manager.status().progress == 50.0

        version = manager.version
        done = manager.complete_migration()
        assert manager.posture == Stable(CryptoState.PQC_PRIMARY)
        assert manager.version == version + 1
        assert done.current_state is CryptoState.PQC_PRIMARY
        assert done.migrated_count == 2
        assert not done.in_progress
        assert done.completed_at is not None

    def test_only_one_migration_at_a_time(self):
        manager = CryptoAgilityManager(CryptoState.HYBRID_SIGN)
        manager.begin_migration(CryptoState.PQC_PRIMARY, total=1)
        with pytest.raises(MigrationError):
            manager.begin_migration(CryptoState.PQC_ONLY, total=1)

    def test_no_downgrade(self):
        manager = CryptoAgilityManager(CryptoState.PQC_PRIMARY)
        with pytest.raises(MigrationError) as exc_info:
            manager.begin_migration(CryptoState.HYBRID_SIGN, total=0)
        assert exc_info.value.details["fromState"] == "PQC_PRIMARY"
        assert manager.posture == Stable(CryptoState.PQC_PRIMARY)

    def test_same_state_is_a_resume(self):
        manager = CryptoAgilityManager(CryptoState.HYBRID_SIGN)
        manager.begin_migration(CryptoState.HYBRID_SIGN, total=0)
        assert manager.complete_migration().progress == 100.0

    def test_abort_returns_to_source(self):
        manager = CryptoAgilityManager(CryptoState.HYBRID_SIGN)
        manager.begin_migration(CryptoState.PQC_ONLY, total=3)
        manager.record_progress()
        status = manager.abort_migration("ledger unavailable")
        assert manager.posture == Stable(CryptoState.HYBRID_SIGN)
        assert status.error == "ledger unavailable"
        assert status.migrated_count == 1
        assert manager.status() == status

    def test_progress_requires_migration(self):
        with pytest.raises(MigrationError):
            CryptoAgilityManager().record_progress()