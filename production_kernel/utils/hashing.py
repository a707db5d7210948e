"""
Canonical JSON and SHA-256 helpers for the audit chain.

Two payloads that mean the same thing must hash the same: keys are
sorted, whitespace is dropped, and decimals are normalized so that
``Decimal("2")`` and ``Decimal("2.000")`` agree.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

CHAIN_ROOT = "GENESIS"


def _encode_special(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"cannot canonicalize {type(value).__name__}")


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode_special)


def json_safe(data: Any) -> Any:
    """``data`` as plain JSON types, ready for a JSON column."""
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict) -> str:
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Event hash; the first event of a chain links to ``CHAIN_ROOT``."""
    link = prev_hash if prev_hash is not None else CHAIN_ROOT
    return _sha256("|".join((entity_type, str(entity_id), action, payload_hash, link)))
