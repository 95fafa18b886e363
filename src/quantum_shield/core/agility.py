# SPDX-License-Identifier: MPL-2.0
"""
Crypto-agility state machine.

The service-wide posture is either ``Stable(state)`` or
``Migrating(from_state, to_state, ...)``. A migration can only start from a
stable posture, which makes a second concurrent migration impossible rather
than merely unlikely. Each change bumps ``version`` so observers can detect
that the posture moved under them.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional, Union

from quantum_shield.core.crypto import (
    CLASSICAL_KEM,
    CLASSICAL_SIGNATURE,
    CryptoSuite,
    hybrid_name,
)
from quantum_shield.core.exceptions import MigrationError
from quantum_shield.core.models import (
    ComplianceCheck,
    CryptoState,
    MigrationReadiness,
    MigrationStatus,
    Shield,
    utcnow,
)

logger = logging.getLogger(__name__)

_ORDER: List[CryptoState] = list(CryptoState)

_QUANTUM_SAFE = frozenset(
    {
        CryptoState.HYBRID_SIGN,
        CryptoState.HYBRID_ENCRYPT,
        CryptoState.PQC_PRIMARY,
        CryptoState.PQC_ONLY,
    }
)

_RECOMMENDATIONS: Dict[CryptoState, str] = {
    CryptoState.CLASSICAL_ONLY: "URGENT: Migrate to HYBRID_SIGN immediately - not quantum-safe",
    CryptoState.HYBRID_SIGN: "Recommended: Plan migration to PQC_PRIMARY by 2030",
    CryptoState.HYBRID_ENCRYPT: "Recommended: Complete migration to PQC_PRIMARY by 2030",
    CryptoState.PQC_PRIMARY: "Good: On track for 2035 PQC_ONLY mandate",
    CryptoState.PQC_ONLY: "Excellent: Fully post-quantum, no migration required",
}


@dataclass(frozen=True)
class Stable:
    state: CryptoState


@dataclass(frozen=True)
class Migrating:
    from_state: CryptoState
    to_state: CryptoState
    migrated: int = 0
    total: int = 0
    started_at: datetime = field(default_factory=utcnow)


Posture = Union[Stable, Migrating]


def get_next_state(current: CryptoState) -> Optional[CryptoState]:
    """Next posture in the fixed order, or ``None`` at the end."""
    index = _ORDER.index(current)
    return _ORDER[index + 1] if index + 1 < len(_ORDER) else None


def regulations_for(state: CryptoState) -> Dict[str, bool]:
    return {
        "NIST-FIPS-203": state is not CryptoState.CLASSICAL_ONLY,
        "NIST-FIPS-204": state is not CryptoState.CLASSICAL_ONLY,
        "CNSA-2.0": state in _QUANTUM_SAFE,
        "EU-AI-Act": state is not CryptoState.CLASSICAL_ONLY,
    }


def migration_deadline(state: CryptoState) -> Optional[str]:
    if state is CryptoState.PQC_ONLY:
        return None
    if state is CryptoState.PQC_PRIMARY:
        return "2035-01-01"
    return "2030-01-01"


class CryptoAgilityManager:
    """Owns the service-wide posture and maps postures to crypto suites."""

    def __init__(
        self,
        initial_state: CryptoState = CryptoState.HYBRID_SIGN,
        pqc_signature_algorithm: str = "ML-DSA-65",
        pqc_kem_algorithm: str = "ML-KEM-768",
    ) -> None:
        self.pqc_signature_algorithm = pqc_signature_algorithm
        self.pqc_kem_algorithm = pqc_kem_algorithm
        self.posture: Posture = Stable(CryptoState.parse(initial_state))
        self.version = 0
        self._last_status: Optional[MigrationStatus] = None

    @property
    def current_state(self) -> CryptoState:
        """The posture new shields capture; the source posture while migrating."""
        if isinstance(self.posture, Migrating):
            return self.posture.from_state
        return self.posture.state

    @property
    def migrating(self) -> bool:
        return isinstance(self.posture, Migrating)

    def suite_for(self, state: CryptoState) -> CryptoSuite:
        hybrid_sig = hybrid_name(CLASSICAL_SIGNATURE, self.pqc_signature_algorithm)
        hybrid_kem = hybrid_name(CLASSICAL_KEM, self.pqc_kem_algorithm)
        if state is CryptoState.CLASSICAL_ONLY:
            return CryptoSuite(CLASSICAL_SIGNATURE, CLASSICAL_KEM)
        if state is CryptoState.HYBRID_SIGN:
            return CryptoSuite(hybrid_sig, CLASSICAL_KEM)
        if state in (CryptoState.HYBRID_ENCRYPT, CryptoState.PQC_PRIMARY):
            return CryptoSuite(hybrid_sig, hybrid_kem)
        return CryptoSuite(self.pqc_signature_algorithm, self.pqc_kem_algorithm)

    def current_suite(self) -> CryptoSuite:
        return self.suite_for(self.current_state)

    def get_next_state(self, current: Optional[CryptoState] = None) -> Optional[CryptoState]:
        return get_next_state(current or self.current_state)

    def check_compliance(
        self, shield: Shield, effective_state: Optional[CryptoState] = None
    ) -> ComplianceCheck:
        """Score a shield against its effective posture. Deterministic.

        ``effective_state`` is the target of the shield's last migration; without
        one the posture captured at creation is scored.
        """
        state = effective_state or shield.migration_state
        regulations = regulations_for(state)
        return ComplianceCheck(
            shield_id=shield.shield_id,
            compliant=all(regulations.values()),
            regulations=regulations,
            migration_readiness=MigrationReadiness(
                state=state,
                captured_state=shield.migration_state,
                next_state=get_next_state(state),
                deadline=migration_deadline(state),
            ),
            recommendations=[_RECOMMENDATIONS[state]],
        )

    # ------------------------------------------------------------------
    # Migration lifecycle
    # ------------------------------------------------------------------

    def begin_migration(self, target: CryptoState, total: int) -> MigrationStatus:
        """Enter ``Migrating``.

        ``target == current`` is allowed and resumes an interrupted run.
        """
        if isinstance(self.posture, Migrating):
            raise MigrationError(
                "A migration is already in progress",
                {
                    "fromState": self.posture.from_state.value,
                    "toState": self.posture.to_state.value,
                },
            )
        current = self.posture.state
        if target < current:
            raise MigrationError(
                f"Downgrade from {current.value} to {target.value} is not supported",
                {"fromState": current.value, "toState": target.value},
            )
        self.posture = Migrating(from_state=current, to_state=target, total=total)
        self.version += 1
        logger.info(
            "Migration started: %s -> %s (%d shields)", current.value, target.value, total
        )
        return self.status()

    def record_progress(self, count: int = 1) -> None:
        posture = self._require_migrating()
        self.posture = replace(posture, migrated=posture.migrated + count)

    def complete_migration(self) -> MigrationStatus:
        posture = self._require_migrating()
        status = self._status_for(posture, in_progress=False, completed_at=utcnow())
        self.posture = Stable(posture.to_state)
        self.version += 1
        self._last_status = status.model_copy(update={"current_state": posture.to_state})
        logger.info(
            "Migration finished: %s -> %s (%d/%d shields)",
            posture.from_state.value,
            posture.to_state.value,
            posture.migrated,
            posture.total,
        )
        return self._last_status

    def abort_migration(self, error: str) -> MigrationStatus:
        posture = self._require_migrating()
        status = self._status_for(posture, in_progress=False, completed_at=None, error=error)
        self.posture = Stable(posture.from_state)
        self.version += 1
        self._last_status = status
        logger.error(
            "Migration to %s aborted after %d/%d shields: %s",
            posture.to_state.value,
            posture.migrated,
            posture.total,
            error,
        )
        return status

    def status(self) -> MigrationStatus:
        if isinstance(self.posture, Migrating):
            return self._status_for(self.posture, in_progress=True, completed_at=None)
        if self._last_status is not None:
            return self._last_status
        state = self.posture.state
        return MigrationStatus(current_state=state, target_state=state)

    def _require_migrating(self) -> Migrating:
        if not isinstance(self.posture, Migrating):
            raise MigrationError("No migration is in progress")
        return self.posture

    @staticmethod
    def _status_for(
        posture: Migrating,
        in_progress: bool,
        completed_at: Optional[datetime],
        error: Optional[str] = None,
    ) -> MigrationStatus:
        return MigrationStatus(
            current_state=posture.from_state,
            target_state=posture.to_state,
            migrated_count=posture.migrated,
            total_count=posture.total,
            in_progress=in_progress,
            started_at=posture.started_at,
            completed_at=completed_at,
            error=error,
        )
