"""
Snapshot Store: immutable, numbered DecisionVersion records.

Every function here is flush-only.  Callers (the decision façade) own the
transaction and commit through ``unit_of_work``; a version and the audit
entry describing it therefore land in the same commit.

Version numbers are ``max(existing) + 1`` computed under the decision row
lock.  The (decision_id, version_number) unique constraint catches racing
writers on backends where the lock is a no-op (SQLite); the façade then
retries the whole operation.
"""

import copy
import logging
from datetime import UTC, datetime

from sqlalchemy import func, select

from decision_trail.core.exceptions import InvalidArgumentError, NotFoundError
from decision_trail.models import db
from decision_trail.models.decision import Decision, DecisionVersion
from decision_trail.utils.helpers import parse_date

logger = logging.getLogger(__name__)

# Keys a caller may overlay onto the captured live snapshot.
OVERLAY_FIELDS = ("title", "description", "category", "owner_id", "due_date", "tags", "metadata")


def _utcnow():
    return datetime.now(UTC)


# ── Locking / lookup ─────────────────────────────────────────────────────────

def lock_decision(decision_id: str) -> Decision:
    """Load the decision with ``SELECT ... FOR UPDATE``.

    ``populate_existing`` refreshes an instance already in the identity map,
    so counters read here are the ones committed by the previous writer.
    """
    stmt = (
        select(Decision)
        .where(Decision.id == decision_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    decision = db.session.execute(stmt).scalar_one_or_none()
    if decision is None:
        raise NotFoundError("Decision", decision_id)
    return decision


def get_decision(decision_id: str) -> Decision:
    decision = db.session.get(Decision, decision_id)
    if decision is None:
        raise NotFoundError("Decision", decision_id)
    return decision


# ── Snapshot capture ─────────────────────────────────────────────────────────

def _option_snapshot(option) -> dict:
    return {
        "id": option.id,
        "label": option.label,
        "media_url": option.media_url,
        "cost": copy.deepcopy(option.cost),
        "dependencies": copy.deepcopy(option.dependencies or {}),
        "order_index": option.order_index,
        "is_recommended": bool(option.is_recommended),
    }


def _object_snapshot(obj) -> dict:
    options = sorted(obj.options, key=lambda o: o.order_index)
    return {
        "id": obj.id,
        "title": obj.title,
        "description": obj.description,
        "order_index": obj.order_index,
        "status": obj.status,
        "metadata": copy.deepcopy(obj.meta or {}),
        "options": [_option_snapshot(o) for o in options],
    }


def capture_snapshot(decision: Decision) -> dict:
    """Denormalized deep copy of the live decision content."""
    objects = sorted(decision.objects, key=lambda o: o.order_index)
    return {
        "title": decision.title,
        "description": decision.description,
        "category": decision.category,
        "owner_id": decision.owner_id,
        "due_date": decision.due_date.isoformat() if decision.due_date else None,
        "tags": list(decision.tags or []),
        "metadata": copy.deepcopy(decision.meta or {}),
        "decision_objects": [_object_snapshot(o) for o in objects],
    }


# ── Scalar field validation / write-through ──────────────────────────────────

def apply_scalar_fields(decision: Decision, data: dict) -> list[str]:
    """Validate ``data`` and write it onto the live decision.

    Returns the names of the fields whose value actually changed.
    """
    errors = {}
    changes = {}

    if "title" in data:
        title = data["title"]
        if not isinstance(title, str) or not title.strip():
            errors["title"] = "title is required"
        else:
            changes["title"] = title.strip()

    for field in ("description", "category", "owner_id"):
        if field in data:
            value = data[field]
            if value is not None and not isinstance(value, str):
                errors[field] = f"{field} must be a string or null"
            else:
                changes[field] = value

    if "due_date" in data:
        raw = data["due_date"]
        parsed = parse_date(raw)
        if raw not in (None, "") and parsed is None:
            errors["due_date"] = "due_date must be an ISO date (YYYY-MM-DD)"
        else:
            changes["due_date"] = parsed

    if "tags" in data:
        tags = data["tags"]
        if tags is None:
            changes["tags"] = []
        elif not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            errors["tags"] = "tags must be a list of strings"
        else:
            changes["tags"] = list(tags)

    if "metadata" in data:
        meta = data["metadata"]
        if meta is None:
            changes["metadata"] = {}
        elif not isinstance(meta, dict):
            errors["metadata"] = "metadata must be an object"
        else:
            changes["metadata"] = copy.deepcopy(meta)

    if errors:
        raise InvalidArgumentError("Invalid decision fields", details=errors)

    changed = []
    for field, value in changes.items():
        attr = "meta" if field == "metadata" else field
        if getattr(decision, attr) != value:
            setattr(decision, attr, value)
            changed.append(field)
    if changed:
        decision.updated_at = _utcnow()
    return changed


def _validate_overlay(snapshot) -> dict:
    if snapshot is None:
        return {}
    if not isinstance(snapshot, dict):
        raise InvalidArgumentError("snapshot must be an object")
    if "decision_objects" in snapshot:
        raise InvalidArgumentError(
            "decision_objects cannot be supplied; they are captured from the live decision",
            details={"decision_objects": "not allowed"},
        )
    unknown = sorted(set(snapshot) - set(OVERLAY_FIELDS))
    if unknown:
        raise InvalidArgumentError(
            "Unknown snapshot fields: " + ", ".join(unknown),
            details={k: "unknown field" for k in unknown},
        )
    if "title" in snapshot and not (isinstance(snapshot["title"], str) and snapshot["title"].strip()):
        raise InvalidArgumentError("title is required", details={"title": "empty"})
    return snapshot


# ── Versions ─────────────────────────────────────────────────────────────────

def _next_version_number(decision_id: str) -> int:
    stmt = select(func.max(DecisionVersion.version_number)).where(
        DecisionVersion.decision_id == decision_id
    )
    return (db.session.execute(stmt).scalar() or 0) + 1


def append_version(
    decision_id: str,
    snapshot: dict | None = None,
    *,
    note: str | None = None,
    author_id: str | None = None,
    author_name: str | None = None,
) -> DecisionVersion:
    """Append version N+1 of a decision and re-point ``current_version_id``."""
    overlay = _validate_overlay(snapshot)
    decision = lock_decision(decision_id)
    if overlay:
        apply_scalar_fields(decision, overlay)

    number = _next_version_number(decision_id)
    version = DecisionVersion(
        decision_id=decision_id,
        version_number=number,
        snapshot=capture_snapshot(decision),
        note=note,
        author_id=author_id,
        author_name=author_name,
    )
    db.session.add(version)
    db.session.flush()

    decision.current_version_id = version.id
    decision.current_version_number = number
    decision.updated_at = _utcnow()
    db.session.flush()

    logger.debug(
        "Version %s appended to decision %s", number, decision_id,
        extra={"decision_id": decision_id},
    )
    return version


def get_version(decision_id: str, version_id: str) -> DecisionVersion:
    version = db.session.get(DecisionVersion, version_id)
    if version is None or version.decision_id != decision_id:
        raise NotFoundError("DecisionVersion", version_id)
    return version


def get_version_by_number(decision_id: str, number) -> DecisionVersion:
    if isinstance(number, bool) or not isinstance(number, int) or number <= 0:
        raise InvalidArgumentError(
            "version_number must be a positive integer",
            details={"version_number": number},
        )
    stmt = select(DecisionVersion).where(
        DecisionVersion.decision_id == decision_id,
        DecisionVersion.version_number == number,
    )
    version = db.session.execute(stmt).scalar_one_or_none()
    if version is None:
        raise NotFoundError("DecisionVersion", f"{decision_id}#{number}")
    return version


def list_versions(decision_id: str) -> list[DecisionVersion]:
    get_decision(decision_id)
    stmt = (
        select(DecisionVersion)
        .where(DecisionVersion.decision_id == decision_id)
        .order_by(DecisionVersion.version_number.asc())
    )
    return list(db.session.execute(stmt).scalars())
