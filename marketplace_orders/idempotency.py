"""Idempotency utilities for safely handling duplicate cart submissions.

This module stores and retrieves idempotency keys. It supports creating an
idempotent record, detecting conflicts when the same key is used with a
different payload, finalizing a stored response so subsequent retries can
short-circuit, and releasing a key when the request failed for a transient
reason and may be retried for real.
"""

import hashlib
import json
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .errors import ConflictError
from .models import IdempotencyKey


def canonical_hash(payload: dict) -> str:
    """Compute a stable SHA-256 hash for a JSON-serializable payload.

    The payload is serialized with sorted keys and compact separators to
    ensure a deterministic representation before hashing.

    Args:
        payload: A JSON-serializable dictionary.

    Returns:
        str: Hex-encoded SHA-256 digest of the normalized payload.
    """
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class StoredResponse:
    status_code: int
    body: dict


def get_or_create_idempotent(session_factory: sessionmaker, key: str, payload: dict) -> Optional[StoredResponse]:
    """Get-or-create an idempotency record for the given key and payload.

    Behavior:
        - First request with a new key: create a record and return None; the
          caller processes the request and then calls ``finalize``.
        - Retry with the same key and payload after completion: return the
          stored response.
        - Same key, different payload: raise ``IDEMPOTENCY_CONFLICT``.
        - Same key while the first request is still running: raise
          ``IDEMPOTENCY_IN_PROGRESS``.

    Args:
        session_factory: Session factory of the service database.
        key: Client-provided idempotency key.
        payload: Request payload used to compute the request hash.

    Raises:
        ConflictError: As described above, both with HTTP status 409.
    """
    h = canonical_hash(payload)
    with session_factory() as s:
        try:
            s.add(IdempotencyKey(key=key, request_hash=h, response_status=0, response_body={}))
            s.commit()
            return None
        except IntegrityError:
            s.rollback()

        rec = s.execute(select(IdempotencyKey).where(IdempotencyKey.key == key)).scalars().first()
        if rec is None:
            # released between our insert and read: treat as a fresh request
            return get_or_create_idempotent(session_factory, key, payload)
        if rec.request_hash != h:
            raise ConflictError("Idempotency key reused with a different payload", code="IDEMPOTENCY_CONFLICT", status_code=409)
        if not rec.response_status:
            raise ConflictError("A request with this idempotency key is in progress", code="IDEMPOTENCY_IN_PROGRESS", status_code=409)
        return StoredResponse(status_code=rec.response_status, body=rec.response_body)


def finalize(session_factory: sessionmaker, key: str, status_code: int, body: dict) -> None:
    """Persist the final response for an idempotent request.

    Args:
        session_factory: Session factory of the service database.
        key: The idempotency key to update.
        status_code: HTTP status code to store for the response.
        body: JSON-serializable response body to persist.
    """
    with session_factory() as s:
        s.execute(
            update(IdempotencyKey)
            .where(IdempotencyKey.key == key)
            .values(response_status=status_code, response_body=body)
        )
        s.commit()


def release(session_factory: sessionmaker, key: str) -> None:
    """Forget a key whose request failed transiently so a retry runs again."""
    with session_factory() as s:
        s.execute(delete(IdempotencyKey).where(IdempotencyKey.key == key))
        s.commit()
