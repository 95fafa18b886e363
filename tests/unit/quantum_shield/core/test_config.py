# SPDX-License-Identifier: MPL-2.0
import pytest

from quantum_shield.config import ShieldSettings
from quantum_shield.core.exceptions import ConfigurationError
from quantum_shield.core.models import CryptoState, IdentityScope


def test_defaults():
    settings = ShieldSettings.from_env({})
    assert settings.migration_state is CryptoState.HYBRID_SIGN
    assert settings.rotation_days == 365
    assert settings.pqc_backend is None
    assert settings.identity_scope is IdentityScope.SHIELD
    assert settings.database == ":memory:"
    assert "testserver" in settings.trusted_hosts


def test_reads_environment():
    settings = ShieldSettings.from_env(
        {
            "QSHIELD_MIGRATION_STATE": "HYBRID_PREPARE",
            "QSHIELD_ROTATION_DAYS": "90",
            "QSHIELD_PQC_BACKEND": "liboqs",
            "QSHIELD_IDENTITY_SCOPE": "EVENT",
            "LOG_LEVEL": "debug",
            "ALLOWED_ORIGINS": "https://a.example, https://b.example",
        }
    )
    assert settings.migration_state is CryptoState.CLASSICAL_ONLY
    assert settings.rotation_days == 90
    assert settings.pqc_backend == "liboqs"
    assert settings.identity_scope is IdentityScope.EVENT
    assert settings.log_level == "DEBUG"
    assert settings.allowed_origins == ["https://a.example", "https://b.example"]


def test_blank_backend_is_unset():
    assert ShieldSettings.from_env({"QSHIELD_PQC_BACKEND": " "}).pqc_backend is None


@pytest.mark.parametrize(
    "environ",
    [
        {"QSHIELD_MIGRATION_STATE": "SOMEDAY"},
        {"QSHIELD_ROTATION_DAYS": "0"},
        {"QSHIELD_ROTATION_DAYS": "yearly"},
        {"QSHIELD_IDENTITY_SCOPE": "global"},
    ],
)
def test_invalid_values(environ):
    with pytest.raises(ConfigurationError):
        ShieldSettings.from_env(environ)
