# SPDX-License-Identifier: MPL-2.0
"""Runtime configuration read from environment variables."""

import os
from typing import List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from quantum_shield.core.exceptions import ConfigurationError, MigrationError
from quantum_shield.core.models import CryptoState, IdentityScope


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class ShieldSettings(BaseModel):
    migration_state: CryptoState = CryptoState.HYBRID_SIGN
    rotation_days: int = Field(default=365, ge=1)
    pqc_signature_algorithm: str = "ML-DSA-65"
    pqc_kem_algorithm: str = "ML-KEM-768"
    pqc_backend: Optional[str] = None
    identity_scope: IdentityScope = IdentityScope.SHIELD
    database: str = ":memory:"
    metadata_store: Optional[str] = None
    proof_topic_memo: str = "QuantumShield Proof Topic"
    log_level: str = "INFO"
    allowed_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:8000"]
    )
    trusted_hosts: List[str] = Field(
        default_factory=lambda: ["localhost", "127.0.0.1", "testserver"]
    )
    rate_limit: str = "100/minute"

    @field_validator("migration_state", mode="before")
    @classmethod
    def _parse_state(cls, value: object) -> CryptoState:
        return CryptoState.parse(value)  # type: ignore[arg-type]

    @field_validator("pqc_backend", "metadata_store", mode="before")
    @classmethod
    def _blank_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ShieldSettings":
        """Build settings from ``environ`` (``os.environ`` by default)."""
        env = os.environ if environ is None else environ
        values = {}
        mapping = {
            "QSHIELD_MIGRATION_STATE": "migration_state",
            "QSHIELD_ROTATION_DAYS": "rotation_days",
            "QSHIELD_SIGNATURE_ALGORITHM": "pqc_signature_algorithm",
            "QSHIELD_KEM_ALGORITHM": "pqc_kem_algorithm",
            "QSHIELD_PQC_BACKEND": "pqc_backend",
            "QSHIELD_IDENTITY_SCOPE": "identity_scope",
            "QSHIELD_DATABASE": "database",
            "QSHIELD_METADATA_STORE": "metadata_store",
            "QSHIELD_PROOF_TOPIC_MEMO": "proof_topic_memo",
            "LOG_LEVEL": "log_level",
            "QSHIELD_RATE_LIMIT": "rate_limit",
        }
        for variable, name in mapping.items():
            if variable in env:
                values[name] = env[variable]
        if "ALLOWED_ORIGINS" in env:
            values["allowed_origins"] = _split(env["ALLOWED_ORIGINS"])
        if "TRUSTED_HOSTS" in env:
            values["trusted_hosts"] = _split(env["TRUSTED_HOSTS"])
        if "identity_scope" in values:
            values["identity_scope"] = values["identity_scope"].strip().lower()

        try:
            return cls.model_validate(values)
        except MigrationError as exc:
            raise ConfigurationError(exc.message, exc.details) from None
        except PydanticValidationError as exc:
            problems = [
                f"{'.'.join(str(p) for p in error['loc'])}: {error['msg']}"
                for error in exc.errors()
            ]
            raise ConfigurationError("Invalid configuration", {"errors": problems}) from None
