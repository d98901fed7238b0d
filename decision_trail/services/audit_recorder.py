"""
Audit Recorder: append-only decision audit trail.

``append_entry`` is the flush-only writer the other services call inside
their own unit of work.  ``record`` is the standalone operation that
commits on its own.  ``query`` returns newest-first pages.
"""

import json
import logging

from flask import current_app
from sqlalchemy import select

from decision_trail.core.exceptions import InvalidArgumentError
from decision_trail.models import db
from decision_trail.models.audit import AUDIT_ACTIONS, AuditLogEntry
from decision_trail.models.decision import Decision
from decision_trail.services import snapshot_store
from decision_trail.utils.helpers import unit_of_work

logger = logging.getLogger(__name__)


def _json_safe(details) -> dict:
    """Store any ``details`` value without failing the write."""
    if details is None:
        return {}
    try:
        safe = json.loads(json.dumps(details, default=str))
    except (TypeError, ValueError):
        return {"raw": repr(details)}
    if not isinstance(safe, dict):
        return {"value": safe}
    return safe


def _validate_action(action: str) -> None:
    if action not in AUDIT_ACTIONS:
        raise InvalidArgumentError(
            f"Unknown audit action: {action!r}",
            details={"action": action, "allowed": list(AUDIT_ACTIONS)},
        )


def append_entry(
    decision: Decision,
    action: str,
    details=None,
    *,
    user_id: str | None = None,
    user_name: str | None = None,
    version_id: str | None = None,
) -> AuditLogEntry:
    """Append one entry.  Uses ``flush`` so callers keep transaction control.

    The sequence number comes from ``decision.audit_sequence``; callers hold
    the decision row lock when they mutate, so the counter is serialized
    with the mutation it describes.
    """
    _validate_action(action)
    decision.audit_sequence = (decision.audit_sequence or 0) + 1
    entry = AuditLogEntry(
        decision_id=decision.id,
        version_id=version_id,
        action=action,
        user_id=user_id,
        user_name=user_name,
        details=_json_safe(details),
        sequence=decision.audit_sequence,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def record(
    decision_id: str,
    action: str,
    details=None,
    *,
    user_id: str | None = None,
    user_name: str | None = None,
    version_id: str | None = None,
) -> dict:
    """Standalone audit write in its own unit of work."""
    _validate_action(action)
    with unit_of_work("audit.record"):
        decision = snapshot_store.lock_decision(decision_id)
        entry = append_entry(
            decision, action, details,
            user_id=user_id, user_name=user_name, version_id=version_id,
        )
    logger.info(
        "Audit entry %s recorded for decision %s", action, decision_id,
        extra={"decision_id": decision_id, "action": action},
    )
    return entry.to_dict()


def _parse_filter(action_filter) -> list[str]:
    if not action_filter:
        return []
    if isinstance(action_filter, str):
        actions = [a.strip() for a in action_filter.split(",") if a.strip()]
    else:
        actions = [str(a).strip() for a in action_filter if str(a).strip()]
    for action in actions:
        _validate_action(action)
    return actions


def _resolve_limit(limit) -> int:
    default = current_app.config.get("AUDIT_DEFAULT_LIMIT", 50)
    upper = current_app.config.get("AUDIT_MAX_LIMIT", 200)
    if limit is None or limit == "":
        return default
    try:
        limit = int(limit)
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError("limit must be an integer", details={"limit": limit}) from exc
    if limit <= 0:
        raise InvalidArgumentError("limit must be positive", details={"limit": limit})
    return min(limit, upper)


def query(decision_id: str, *, limit=None, action_filter=None, offset=0) -> list[dict]:
    """Newest-first audit entries for a decision."""
    snapshot_store.get_decision(decision_id)
    limit = _resolve_limit(limit)
    try:
        offset = int(offset or 0)
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError("offset must be an integer", details={"offset": offset}) from exc
    if offset < 0:
        raise InvalidArgumentError("offset must not be negative", details={"offset": offset})

    stmt = select(AuditLogEntry).where(AuditLogEntry.decision_id == decision_id)
    actions = _parse_filter(action_filter)
    if actions:
        stmt = stmt.where(AuditLogEntry.action.in_(actions))
    stmt = (
        stmt.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.sequence.desc())
        .offset(offset)
        .limit(limit)
    )
    return [e.to_dict() for e in db.session.execute(stmt).scalars()]
