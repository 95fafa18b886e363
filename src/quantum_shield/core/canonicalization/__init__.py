# SPDX-License-Identifier: MPL-2.0
"""Canonical JSON shared by every signer and verifier (RFC 8785 style).

Signatures are only meaningful if the verifier rebuilds the exact bytes the
signer saw, so all payloads pass through :func:`canonical_bytes`.
"""

from __future__ import annotations

import json
import math
import unicodedata
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from quantum_shield.core.exceptions import QuantumShieldError


class CanonicalizationError(QuantumShieldError):
    """Raised when data cannot be canonicalized."""

    code = "canonicalization_error"


def _format_datetime(value: datetime) -> str:
    # UTC, RFC 3339, fractional seconds without trailing zeros
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    iso = value.isoformat(timespec="microseconds").replace("+00:00", "Z")
    main, rest = iso.split(".", 1)
    frac = rest.rstrip("Z").rstrip("0")
    return main + ("." + frac if frac else "") + "Z"


def _normalize(value: Any) -> Any:
    """Recursively reduce a value to JSON-native types."""

    if isinstance(value, BaseModel):
        return _normalize(value.model_dump(by_alias=True, mode="json"))

    if isinstance(value, Enum):
        return _normalize(value.value)

    if isinstance(value, str):
        return unicodedata.normalize("NFC", value)

    if isinstance(value, bool) or value is None or isinstance(value, int):
        return value

    if isinstance(value, float):
        if not math.isfinite(value):
            raise CanonicalizationError("Non-finite float values are not allowed")
        if value.is_integer():
            return int(value)
        return float(Decimal(str(value)))

    if isinstance(value, datetime):
        return _format_datetime(value)

    if isinstance(value, UUID):
        return str(value)

    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()

    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]

    if isinstance(value, dict):
        if any(not isinstance(k, str) for k in value):
            raise CanonicalizationError("Dictionary keys must be strings")
        return {unicodedata.normalize("NFC", k): _normalize(v) for k, v in value.items()}

    raise CanonicalizationError(f"Type {type(value)!r} is not supported for canonicalization")


def canonicalize(data: Any) -> str:
    """Convert data to a canonical JSON string."""

    canonical_data = _normalize(data)
    try:
        return json.dumps(
            canonical_data,
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise CanonicalizationError(str(exc)) from exc


def canonical_bytes(data: Any) -> bytes:
    """UTF-8 encoded :func:`canonicalize` output; the only input ever signed."""

    return canonicalize(data).encode("utf-8")


def to_json_compatible(data: Any) -> Any:
    """Return ``data`` as plain JSON types, exactly as it will be signed.

    Values stored next to a signature must survive a storage round trip
    without changing their canonical form, so callers normalize first.
    """

    return json.loads(canonicalize(data))
