"""Stable keys that collapse retried reward requests onto one record."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping
from uuid import uuid4

from rewards_api.core.settings import settings
from rewards_api.services.errors import ValidationError


def derive_key(user_id: str, action_type: str, correlating_fields: Mapping[str, Any] | None = None) -> str:
    """Return a deterministic SHA-256 hex digest for the inputs.

    Field order is irrelevant: the payload is canonicalised with sorted keys
    before hashing, so equal inputs always yield equal keys.
    """

    if not user_id or not action_type:
        raise ValidationError("user_id and action_type are required to derive an idempotency key")
    canonical = json.dumps(
        {
            "userId": str(user_id),
            "actionType": action_type,
            "fields": dict(correlating_fields or {}),
        },
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def generate_key() -> str:
    return uuid4().hex


def normalize_key(key: str) -> str:
    """Validate a caller-supplied key."""

    normalized = (key or "").strip()
    if not normalized:
        raise ValidationError("Idempotency key must not be blank")
    if len(normalized) > settings.reward_request_key_max_length:
        raise ValidationError(
            f"Idempotency key exceeds {settings.reward_request_key_max_length} characters"
        )
    return normalized


__all__ = ["derive_key", "generate_key", "normalize_key"]
