"""Shared utility functions for services and blueprints.

unit_of_work:   one commit per façade operation, rollback on any failure
parse_date:     ISO date parsing (None on bad input)
parse_datetime: strict ISO datetime parsing for expiries (raises on bad input)
request_actor:  caller identity from X-User-Id / X-User-Name headers
"""
import logging
from contextlib import contextmanager
from datetime import UTC, date, datetime

from flask import request
from sqlalchemy.exc import IntegrityError, OperationalError

from decision_trail.core.exceptions import (
    ConflictError,
    InvalidArgumentError,
    StorageUnavailableError,
)
from decision_trail.models import db

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse an ISO date string (YYYY-MM-DD) to a date object.

    Returns None for empty/invalid input; date and datetime objects pass
    through as dates.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        return None


def parse_datetime(value, field="expires_at"):
    """Parse an ISO-8601 datetime, raising InvalidArgumentError on bad input.

    Naive values are taken as UTC.  ``None``/empty returns None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as exc:
            raise InvalidArgumentError(
                f"{field} must be an ISO-8601 datetime", details={field: str(value)}
            ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def request_actor():
    """Return ``(user_id, user_name)`` supplied by the upstream auth layer."""
    user_id = request.headers.get("X-User-Id") or None
    user_name = request.headers.get("X-User-Name") or None
    return user_id, user_name


# ── Unit of work ─────────────────────────────────────────────────────────────

@contextmanager
def unit_of_work(operation):
    """Run a block of flush-only writes and commit them exactly once.

    Usage::

        with unit_of_work("create_version"):
            version = snapshot_store.append_version(...)
            audit_recorder.append_entry(...)

    Any exception rolls the session back.  IntegrityError becomes
    ConflictError and OperationalError becomes StorageUnavailableError;
    every other exception propagates unchanged.
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning(
            "Integrity error during %s: %s", operation, exc.orig,
            extra={"action": operation},
        )
        raise ConflictError(operation, "unique constraint", str(exc.orig)) from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error during %s", operation)
        raise StorageUnavailableError(operation) from exc
    except Exception:
        db.session.rollback()
        raise
