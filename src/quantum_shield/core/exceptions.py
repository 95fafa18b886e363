# SPDX-License-Identifier: MPL-2.0
"""Exception hierarchy for Quantum Shield.

Every error raised by the core carries a human readable ``message`` and an
optional ``details`` mapping so that the HTTP boundary can tell apart "your
input was wrong", "the resource does not exist" and "the system failed".
Messages never contain secret key material.
"""

from typing import Any, Dict, List, Optional


class QuantumShieldError(Exception):
    """Base exception for all Quantum Shield errors."""

    code = "quantum_shield_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for API responses."""
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(QuantumShieldError):
    """Raised when input validation fails.

    ``violations`` lists every violated constraint, not just the first one.
    """

    code = "validation_error"

    def __init__(self, violations: List[str], message: Optional[str] = None) -> None:
        self.violations = list(violations)
        super().__init__(
            message or "Validation failed: " + "; ".join(self.violations),
            {"violations": self.violations},
        )


class NotFoundError(QuantumShieldError):
    """Raised when a referenced resource does not exist. Never auto-created."""

    code = "not_found"
    resource = "resource"

    def __init__(self, identifier: Any) -> None:
        self.identifier = str(identifier)
        super().__init__(
            f"{self.resource.capitalize()} not found: {self.identifier}",
            {"resource": self.resource, "identifier": self.identifier},
        )


class ShieldNotFoundError(NotFoundError):
    """Raised when a shield id is unknown."""

    resource = "shield"


class IdentityNotFoundError(NotFoundError):
    """Raised when an identity id is unknown."""

    resource = "identity"


class ProvenanceNotFoundError(NotFoundError):
    """Raised when no provenance chain exists for a shield."""

    resource = "provenance chain"


class CryptoOperationError(QuantumShieldError):
    """Raised when signing, verification or key generation fails.

    Always fatal to the current operation; never downgraded to "unsigned".
    """

    code = "crypto_error"


class NoPrivateKeyAvailableError(CryptoOperationError):
    """Raised when an identity has neither a local secret key nor a custodial key."""

    code = "no_private_key"


class ProviderUnavailableError(CryptoOperationError):
    """Raised when no provider is registered for a requested algorithm."""

    code = "provider_unavailable"


class AuthenticationError(CryptoOperationError):
    """Raised when a channel or encrypted package fails its signature or AEAD check."""

    code = "authentication_failed"


class CustodyError(QuantumShieldError):
    """Raised when a key's custody cannot be accessed by the running process."""

    code = "custody_error"


class UnsupportedKeyCustodyError(CustodyError):
    """Raised when verifying against a custodial key reference nobody can reach."""

    code = "unsupported_key_custody"


class LedgerAnchorError(QuantumShieldError):
    """Raised when the external ledger log is unavailable or rejects a message."""

    code = "ledger_anchor_error"


class MigrationError(QuantumShieldError):
    """Raised for invalid crypto-agility transitions."""

    code = "migration_error"


class StorageError(QuantumShieldError):
    """Raised when the durable store fails."""

    code = "storage_error"


class ConfigurationError(QuantumShieldError):
    """Raised when configuration is invalid or missing."""

    code = "configuration_error"


class MetadataNotFoundError(NotFoundError):
    """Raised when a metadata object id is unknown to the metadata store."""

    resource = "metadata object"
