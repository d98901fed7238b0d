"""
Decision Aggregate Façade.

The only entry point other subsystems (blueprints, exports, notifications)
use.  Each mutating function is one unit of work: the mutation and its audit
entry commit together or not at all.  All functions return plain dicts.

Object mutations (add/update/remove/reorder, recommended option) change the
live decision only.  They are NOT versioned automatically; the live state
diverges from the latest snapshot until a caller saves with
``create_version``.

Status transitions:
    submit   draft              → pending
    approve  pending            → approved
    reject   pending            → rejected
    revoke   approved|rejected  → draft
    archive  any non-archived   → archived   (terminal for editing)

Usage:
    from decision_trail.services import decision_service

    d = decision_service.create_decision({"project_id": "p1", "title": "Countertops"})
    v2 = decision_service.create_version(d["id"], {"title": "Countertops Final"})
    diff = decision_service.diff(d["id"], d["current_version_id"], v2["id"])
"""

import logging
import re
from datetime import UTC, datetime

from flask import current_app

from decision_trail.core.exceptions import (
    ConflictError,
    InvalidArgumentError,
    InvalidStateTransitionError,
    NotFoundError,
)
from decision_trail.models import db
from decision_trail.models.decision import (
    DECISION_STATUSES,
    Decision,
    DecisionObject,
    DecisionOption,
)
from decision_trail.services import (
    audit_recorder,
    share_link_service,
    snapshot_store,
    version_diff,
)
from decision_trail.utils.helpers import unit_of_work

logger = logging.getLogger(__name__)


DECISION_TRANSITIONS = {
    "submit": {"from": ["draft"], "to": "pending"},
    "approve": {"from": ["pending"], "to": "approved"},
    "reject": {"from": ["pending"], "to": "rejected"},
    "revoke": {"from": ["approved", "rejected"], "to": "draft"},
    "archive": {"from": ["draft", "pending", "approved", "rejected"], "to": "archived"},
}

OBJECT_FIELDS = ("title", "description", "status", "metadata")

_VERSION_NUMBER_RE = re.compile(r"^-?\d+$")


def _utcnow():
    return datetime.now(UTC)


def _ensure_editable(decision: Decision, action: str) -> None:
    if decision.is_archived:
        raise InvalidStateTransitionError(
            decision.status, action, "archived decisions are read-only"
        )


def _log(message, decision_id, action, *args):
    logger.info(message, *args, extra={"decision_id": decision_id, "action": action})


# ── Objects / options construction ───────────────────────────────────────────

def _require_title(data: dict, label: str) -> str:
    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        raise InvalidArgumentError(f"{label} title is required", details={"title": "required"})
    return title.strip()


def _optional_str(data: dict, field: str):
    value = data.get(field)
    if value is not None and not isinstance(value, str):
        raise InvalidArgumentError(f"{field} must be a string or null",
                                   details={field: type(value).__name__})
    return value


def _build_option(data: dict, order_index: int) -> DecisionOption:
    if not isinstance(data, dict):
        raise InvalidArgumentError("option must be an object")
    label = data.get("label")
    if not isinstance(label, str) or not label.strip():
        raise InvalidArgumentError("option label is required", details={"label": "required"})
    cost = data.get("cost")
    if cost is not None and (isinstance(cost, bool) or not isinstance(cost, (int, float, str))):
        raise InvalidArgumentError("option cost must be a number, string or null",
                                   details={"cost": repr(cost)})
    dependencies = data.get("dependencies") or {}
    if not isinstance(dependencies, dict):
        raise InvalidArgumentError("option dependencies must be an object",
                                   details={"dependencies": repr(dependencies)})
    return DecisionOption(
        label=label.strip(),
        media_url=_optional_str(data, "media_url"),
        cost=cost,
        dependencies=dependencies,
        order_index=order_index,
        is_recommended=bool(data.get("is_recommended", False)),
    )


def _build_object(data: dict, order_index: int) -> DecisionObject:
    if not isinstance(data, dict):
        raise InvalidArgumentError("decision object must be an object")
    title = _require_title(data, "Decision object")
    status = data.get("status", "draft")
    if status not in DECISION_STATUSES:
        raise InvalidArgumentError(f"Invalid object status: {status!r}", details={"status": status})
    meta = data.get("metadata") or {}
    if not isinstance(meta, dict):
        raise InvalidArgumentError("metadata must be an object", details={"metadata": "invalid"})
    options = data.get("options") or []
    if not isinstance(options, list):
        raise InvalidArgumentError("options must be a list", details={"options": "invalid"})
    obj = DecisionObject(
        title=title,
        description=_optional_str(data, "description"),
        order_index=order_index,
        status=status,
        meta=meta,
    )
    obj.options = [_build_option(o, i) for i, o in enumerate(options)]
    return obj


def _reindex(objects) -> None:
    for index, obj in enumerate(objects):
        obj.order_index = index


def _ordered_objects(decision: Decision) -> list[DecisionObject]:
    return sorted(decision.objects, key=lambda o: o.order_index)


def _get_object(decision: Decision, object_id: str) -> DecisionObject:
    for obj in decision.objects:
        if obj.id == object_id:
            return obj
    raise NotFoundError("DecisionObject", object_id)


# ═════════════════════════════════════════════════════════════════════════════
# Decision lifecycle
# ═════════════════════════════════════════════════════════════════════════════

def create_decision(data: dict, *, user_id: str | None = None, user_name: str | None = None) -> dict:
    """Create a decision with version 1 and a ``created`` audit entry."""
    if not isinstance(data, dict):
        raise InvalidArgumentError("Request body must be an object")
    project_id = data.get("project_id")
    if not isinstance(project_id, str) or not project_id.strip():
        raise InvalidArgumentError("project_id is required", details={"project_id": "required"})
    _require_title(data, "Decision")
    objects = data.get("decision_objects") or []
    if not isinstance(objects, list):
        raise InvalidArgumentError("decision_objects must be a list")

    _optional_str(data, "note")
    scalars = {k: data[k] for k in snapshot_store.OVERLAY_FIELDS if k in data}
    with unit_of_work("decision.create"):
        decision = Decision(
            project_id=project_id.strip(),
            owner_id=user_id,
            status="draft",
            tags=[],
            meta={},
            audit_sequence=0,
            current_version_number=0,
        )
        snapshot_store.apply_scalar_fields(decision, scalars)
        decision.objects = [_build_object(o, i) for i, o in enumerate(objects)]
        db.session.add(decision)
        db.session.flush()

        version = snapshot_store.append_version(
            decision.id,
            note=data.get("note") or "Initial version",
            author_id=user_id,
            author_name=user_name,
        )
        audit_recorder.append_entry(
            decision, "created",
            {"title": decision.title, "version_number": version.version_number},
            user_id=user_id, user_name=user_name, version_id=version.id,
        )
        decision_id = decision.id

    _log("Decision %s created", decision_id, "created", decision_id)
    return get_current(decision_id)


def get_current(decision_id: str) -> dict:
    """Decision with its live objects and the embedded current version."""
    decision = snapshot_store.get_decision(decision_id)
    data = decision.to_dict()
    data["current_version"] = None
    if decision.current_version_id:
        version = snapshot_store.get_version(decision_id, decision.current_version_id)
        data["current_version"] = version.to_dict()
    return data


def update_decision(
    decision_id: str, data: dict, *, user_id: str | None = None, user_name: str | None = None
) -> dict:
    """Edit the live decision fields in place.  No version is created."""
    if not isinstance(data, dict) or not data:
        raise InvalidArgumentError("No fields to update")
    unknown = sorted(set(data) - set(snapshot_store.OVERLAY_FIELDS))
    if unknown:
        raise InvalidArgumentError(
            "Unknown decision fields: " + ", ".join(unknown),
            details={k: "unknown field" for k in unknown},
        )

    with unit_of_work("decision.update"):
        decision = snapshot_store.lock_decision(decision_id)
        _ensure_editable(decision, "update")
        changed = snapshot_store.apply_scalar_fields(decision, data)
        if changed:
            audit_recorder.append_entry(
                decision, "updated", {"fields": changed},
                user_id=user_id, user_name=user_name,
            )

    if changed:
        _log("Decision %s updated: %s", decision_id, "updated", decision_id, ", ".join(changed))
    return get_current(decision_id)


def transition_status(
    decision_id: str,
    action: str,
    *,
    note: str | None = None,
    user_id: str | None = None,
    user_name: str | None = None,
) -> dict:
    """Apply a status-machine action and record ``status_changed``."""
    with unit_of_work("decision.transition"):
        decision = snapshot_store.lock_decision(decision_id)
        result = _apply_transition(
            decision, action, {"note": note}, user_id=user_id, user_name=user_name,
        )

    _log("Decision %s %s → %s", decision_id, "status_changed",
         decision_id, result["from"], result["to"])
    return get_current(decision_id)


def _apply_transition(decision: Decision, action: str, details: dict, *, user_id, user_name) -> dict:
    result = validate_transition(decision, action)
    if not result["valid"]:
        raise InvalidStateTransitionError(decision.status, action, result["reason"])

    decision.status = result["to"]
    decision.updated_at = _utcnow()
    audit_recorder.append_entry(
        decision, "status_changed",
        {"from": result["from"], "to": result["to"], "action": action, **details},
        user_id=user_id, user_name=user_name,
    )
    return result


def validate_transition(decision: Decision, action: str) -> dict:
    """Check whether ``action`` is allowed from the decision's status."""
    rule = DECISION_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": decision.status, "to": None,
                "reason": f"Unknown action: {action}"}
    if decision.status not in rule["from"]:
        return {"valid": False, "from": decision.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{decision.status}'"}
    return {"valid": True, "from": decision.status, "to": rule["to"], "reason": None}


# ═════════════════════════════════════════════════════════════════════════════
# Versions / diffs
# ═════════════════════════════════════════════════════════════════════════════

def _create_version_once(decision_id, snapshot, note, user_id, user_name):
    with unit_of_work("create_version"):
        decision = snapshot_store.lock_decision(decision_id)
        _ensure_editable(decision, "create_version")
        version = snapshot_store.append_version(
            decision_id, snapshot, note=note, author_id=user_id, author_name=user_name,
        )
        audit_recorder.append_entry(
            decision, "version_created",
            {"version_number": version.version_number, "note": note},
            user_id=user_id, user_name=user_name, version_id=version.id,
        )
    return version


def create_version(
    decision_id: str,
    snapshot: dict | None = None,
    note: str | None = None,
    *,
    user_id: str | None = None,
    user_name: str | None = None,
) -> dict:
    """Save the live decision (plus optional scalar overlay) as version N+1.

    A version-number collision rolls back everything and the whole
    operation is retried; after ``VERSION_CREATE_MAX_ATTEMPTS`` the
    ConflictError reaches the caller.
    """
    _optional_str({"note": note}, "note")
    attempts = current_app.config.get("VERSION_CREATE_MAX_ATTEMPTS", 5)
    for attempt in range(1, attempts + 1):
        try:
            version = _create_version_once(decision_id, snapshot, note, user_id, user_name)
        except ConflictError:
            logger.warning(
                "Version number conflict on decision %s (attempt %d/%d)",
                decision_id, attempt, attempts,
                extra={"decision_id": decision_id, "action": "version_created"},
            )
            continue
        _log("Decision %s saved as version %d", decision_id, "version_created",
             decision_id, version.version_number)
        return version.to_dict()

    raise ConflictError("DecisionVersion", "version_number", decision_id)


def list_versions(decision_id: str) -> list[dict]:
    return [v.to_dict(include_snapshot=False) for v in snapshot_store.list_versions(decision_id)]


def _resolve_version(decision_id: str, ref):
    if isinstance(ref, int) and not isinstance(ref, bool):
        return snapshot_store.get_version_by_number(decision_id, ref)
    ref = str(ref).strip()
    if _VERSION_NUMBER_RE.match(ref):
        return snapshot_store.get_version_by_number(decision_id, int(ref))
    return snapshot_store.get_version(decision_id, ref)


def get_version(decision_id: str, ref) -> dict:
    """Fetch a version by id or by positive version number."""
    snapshot_store.get_decision(decision_id)
    return _resolve_version(decision_id, ref).to_dict()


def diff(decision_id: str, from_ref, to_ref) -> dict:
    """VersionDiff between two versions (ids or numbers) of one decision."""
    if from_ref in (None, "") or to_ref in (None, ""):
        raise InvalidArgumentError(
            "Both 'from' and 'to' versions are required",
            details={"from": from_ref, "to": to_ref},
        )
    snapshot_store.get_decision(decision_id)
    old = _resolve_version(decision_id, from_ref)
    new = _resolve_version(decision_id, to_ref)
    return version_diff.diff_versions(decision_id, old.id, new.id)


# ═════════════════════════════════════════════════════════════════════════════
# Audit
# ═════════════════════════════════════════════════════════════════════════════

def list_audit(decision_id: str, params: dict | None = None) -> list[dict]:
    params = params or {}
    return audit_recorder.query(
        decision_id,
        limit=params.get("limit"),
        action_filter=params.get("filter") or params.get("action"),
        offset=params.get("offset") or 0,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Share links
# ═════════════════════════════════════════════════════════════════════════════

def reissue_share(
    decision_id: str,
    params: dict | None = None,
    *,
    user_id: str | None = None,
    user_name: str | None = None,
) -> dict:
    params = params or {}
    return share_link_service.issue(
        decision_id,
        access_scope=params.get("access_scope", "read"),
        expires_at=params.get("expires_at"),
        max_usage=params.get("max_usage"),
        created_by=user_id,
        created_by_name=user_name,
    )


def revoke_share(share_link_id: str, *, user_id: str | None = None, user_name: str | None = None) -> dict:
    return share_link_service.revoke(share_link_id, user_id=user_id, user_name=user_name)


def extend_share(
    share_link_id: str, expires_at, *, user_id: str | None = None, user_name: str | None = None
) -> dict:
    return share_link_service.extend(share_link_id, expires_at, user_id=user_id, user_name=user_name)


def list_share_links(decision_id: str, *, active_only: bool = False) -> list[dict]:
    return share_link_service.list_links(decision_id, active_only=active_only)


# ═════════════════════════════════════════════════════════════════════════════
# Client portal (token-gated)
# ═════════════════════════════════════════════════════════════════════════════

# portal action → status-machine action
PORTAL_ACTIONS = {
    "approve": "approve",
    "request_changes": "reject",
}


def portal_action(
    token: str,
    action: str,
    *,
    note: str | None = None,
    client_name: str | None = None,
) -> dict:
    """Drive a status transition from a share link.

    The link's scope must allow ``action`` (ScopeDeniedError otherwise) and
    the use is counted in the same unit of work as the transition, so a
    refused transition does not burn a use.
    """
    transition = PORTAL_ACTIONS.get(action)
    if transition is None:
        raise InvalidArgumentError(
            f"Unknown portal action: {action!r}",
            details={"action": action, "allowed": sorted(PORTAL_ACTIONS)},
        )
    _optional_str({"note": note}, "note")
    _optional_str({"client_name": client_name}, "client_name")

    with unit_of_work(f"portal.{action}"):
        decision = snapshot_store.lock_decision(share_link_service.find_usable(token).decision_id)
        link = share_link_service.claim(token, action)
        result = _apply_transition(
            decision, transition,
            {"note": note, "share_link_id": link.id, "via": "portal"},
            user_id=None, user_name=client_name,
        )
        decision_id = decision.id

    _log("Decision %s %s via share link → %s", decision_id, "status_changed",
         decision_id, action, result["to"])
    return share_link_service.portal_view(decision_id)


# ═════════════════════════════════════════════════════════════════════════════
# Decision objects
# ═════════════════════════════════════════════════════════════════════════════

def add_object(
    decision_id: str, data: dict, *, user_id: str | None = None, user_name: str | None = None
) -> dict:
    """Insert an object (at ``order_index`` or at the end)."""
    with unit_of_work("object.add"):
        decision = snapshot_store.lock_decision(decision_id)
        _ensure_editable(decision, "add_object")
        ordered = _ordered_objects(decision)

        position = data.get("order_index", len(ordered)) if isinstance(data, dict) else len(ordered)
        if isinstance(position, bool) or not isinstance(position, int) or not 0 <= position <= len(ordered):
            raise InvalidArgumentError(
                f"order_index must be between 0 and {len(ordered)}",
                details={"order_index": position},
            )
        obj = _build_object(data, position)
        ordered.insert(position, obj)
        decision.objects.append(obj)
        _reindex(ordered)
        decision.updated_at = _utcnow()
        db.session.flush()

        audit_recorder.append_entry(
            decision, "object_added",
            {"object_id": obj.id, "title": obj.title, "order_index": obj.order_index},
            user_id=user_id, user_name=user_name,
        )
        result = obj.to_dict()

    _log("Object %s added to decision %s", decision_id, "object_added", result["id"], decision_id)
    return result


def update_object(
    decision_id: str,
    object_id: str,
    data: dict,
    *,
    user_id: str | None = None,
    user_name: str | None = None,
) -> dict:
    """Edit title/description/status/metadata of one object in place."""
    if not isinstance(data, dict) or not data:
        raise InvalidArgumentError("No fields to update")
    unknown = sorted(set(data) - set(OBJECT_FIELDS))
    if unknown:
        raise InvalidArgumentError(
            "Unknown object fields: " + ", ".join(unknown),
            details={k: "unknown field" for k in unknown},
        )

    with unit_of_work("object.update"):
        decision = snapshot_store.lock_decision(decision_id)
        _ensure_editable(decision, "update_object")
        obj = _get_object(decision, object_id)

        changes = {}
        if "title" in data:
            changes["title"] = _require_title(data, "Decision object")
        if "description" in data:
            changes["description"] = _optional_str(data, "description")
        if "status" in data:
            if data["status"] not in DECISION_STATUSES:
                raise InvalidArgumentError(f"Invalid object status: {data['status']!r}",
                                           details={"status": data["status"]})
            changes["status"] = data["status"]
        if "metadata" in data:
            if not isinstance(data["metadata"], dict):
                raise InvalidArgumentError("metadata must be an object",
                                           details={"metadata": "invalid"})
            changes["metadata"] = dict(data["metadata"])

        changed = []
        for field, value in changes.items():
            attr = "meta" if field == "metadata" else field
            if getattr(obj, attr) != value:
                setattr(obj, attr, value)
                changed.append(field)

        if changed:
            obj.updated_at = _utcnow()
            decision.updated_at = _utcnow()
            audit_recorder.append_entry(
                decision, "updated", {"object_id": obj.id, "fields": changed},
                user_id=user_id, user_name=user_name,
            )
        result = obj.to_dict()

    if changed:
        _log("Object %s updated: %s", decision_id, "updated", object_id, ", ".join(changed))
    return result


def remove_object(
    decision_id: str, object_id: str, *, user_id: str | None = None, user_name: str | None = None
) -> dict:
    """Delete an object; remaining objects are re-indexed densely."""
    with unit_of_work("object.remove"):
        decision = snapshot_store.lock_decision(decision_id)
        _ensure_editable(decision, "remove_object")
        obj = _get_object(decision, object_id)
        removed = {"object_id": obj.id, "title": obj.title, "order_index": obj.order_index}

        decision.objects.remove(obj)
        _reindex(_ordered_objects(decision))
        decision.updated_at = _utcnow()
        db.session.flush()

        audit_recorder.append_entry(
            decision, "object_removed", removed,
            user_id=user_id, user_name=user_name,
        )

    _log("Object %s removed from decision %s", decision_id, "object_removed", object_id, decision_id)
    return get_current(decision_id)


def reorder_objects(
    decision_id: str, object_ids: list, *, user_id: str | None = None, user_name: str | None = None
) -> dict:
    """Reorder objects; ``object_ids`` must be an exact permutation of the current ids."""
    if not isinstance(object_ids, list) or not all(isinstance(oid, str) for oid in object_ids):
        raise InvalidArgumentError("object_ids must be a list of ids", details={"object_ids": "invalid"})

    with unit_of_work("object.reorder"):
        decision = snapshot_store.lock_decision(decision_id)
        _ensure_editable(decision, "reorder_objects")
        ordered = _ordered_objects(decision)
        previous = [o.id for o in ordered]
        if len(object_ids) != len(previous) or set(object_ids) != set(previous):
            raise InvalidArgumentError(
                "object_ids must be a permutation of the decision's object ids",
                details={"expected": sorted(previous), "received": object_ids},
            )

        by_id = {o.id: o for o in ordered}
        _reindex([by_id[oid] for oid in object_ids])
        decision.updated_at = _utcnow()
        audit_recorder.append_entry(
            decision, "objects_reordered",
            {"previous": previous, "order": list(object_ids)},
            user_id=user_id, user_name=user_name,
        )

    _log("Objects reordered on decision %s", decision_id, "objects_reordered", decision_id)
    return get_current(decision_id)


def set_recommended_option(
    decision_id: str,
    object_id: str,
    option_id: str,
    is_recommended: bool = True,
    *,
    user_id: str | None = None,
    user_name: str | None = None,
) -> dict:
    """Flag (or unflag) an option as recommended; one recommended option per object."""
    if not isinstance(is_recommended, bool):
        raise InvalidArgumentError("is_recommended must be a boolean",
                                   details={"is_recommended": is_recommended})

    with unit_of_work("option.recommend"):
        decision = snapshot_store.lock_decision(decision_id)
        _ensure_editable(decision, "set_recommended_option")
        obj = _get_object(decision, object_id)
        option = next((o for o in obj.options if o.id == option_id), None)
        if option is None:
            raise NotFoundError("DecisionOption", option_id)

        cleared = []
        if is_recommended:
            for sibling in obj.options:
                if sibling.id != option.id and sibling.is_recommended:
                    sibling.is_recommended = False
                    cleared.append(sibling.id)
        option.is_recommended = is_recommended
        obj.updated_at = _utcnow()
        decision.updated_at = _utcnow()
        audit_recorder.append_entry(
            decision, "updated",
            {
                "object_id": obj.id,
                "option_id": option.id,
                "fields": ["is_recommended"],
                "is_recommended": is_recommended,
                "cleared": cleared,
            },
            user_id=user_id, user_name=user_name,
        )
        result = obj.to_dict()

    _log("Option %s recommended=%s", decision_id, "updated", option_id, is_recommended)
    return result
