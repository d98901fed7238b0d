"""Decision API blueprint.

REST surface over the decision façade.  The service layer owns all
business logic and commits; views only parse requests and serialize.

Endpoint groups:
  Decisions        POST  /api/v1/decisions
                   GET   /api/v1/decisions/<id>
                   PATCH /api/v1/decisions/<id>
  Status           POST  /api/v1/decisions/<id>/status           {action, note?}
                   POST  /api/v1/decisions/<id>/admin/revoke-approval
  Versions         GET/POST /api/v1/decisions/<id>/versions
                   GET   /api/v1/decisions/<id>/versions/<ref>   (id or number)
  Diffs            GET   /api/v1/decisions/<id>/diffs?from=&to=
  Audit            GET   /api/v1/decisions/<id>/audit?limit=&filter=&offset=
  Share links      POST  /api/v1/decisions/<id>/share
                   GET   /api/v1/decisions/<id>/share-links
                   POST  /api/v1/share-links/<id>/revoke
                   POST  /api/v1/share-links/<id>/extend
  Objects          POST  /api/v1/decisions/<id>/objects
                   PUT/DELETE /api/v1/decisions/<id>/objects/<oid>
                   POST  /api/v1/decisions/<id>/objects/reorder
                   PATCH /api/v1/decisions/<id>/objects/<oid>/options/<opt>

Caller identity comes from X-User-Id / X-User-Name, set by the upstream
auth layer.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from decision_trail.services import decision_service as svc
from decision_trail.utils.errors import E, api_error, register_error_handlers
from decision_trail.utils.helpers import request_actor

logger = logging.getLogger(__name__)

decision_bp = Blueprint("decision", __name__, url_prefix="/api/v1")

register_error_handlers(decision_bp)


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _actor() -> dict:
    user_id, user_name = request_actor()
    return {"user_id": user_id, "user_name": user_name}


# ═════════════════════════════════════════════════════════════════════════
# Decisions
# ═════════════════════════════════════════════════════════════════════════


@decision_bp.route("/decisions", methods=["POST"])
def create_decision():
    """Create a decision (version 1 is saved implicitly)."""
    return jsonify(svc.create_decision(_body(), **_actor())), 201


@decision_bp.route("/decisions/<decision_id>", methods=["GET"])
def get_decision(decision_id):
    return jsonify(svc.get_current(decision_id))


@decision_bp.route("/decisions/<decision_id>", methods=["PATCH"])
def update_decision(decision_id):
    """Edit live fields in place; does not create a version."""
    return jsonify(svc.update_decision(decision_id, _body(), **_actor()))


@decision_bp.route("/decisions/<decision_id>/status", methods=["POST"])
def transition_status(decision_id):
    data = _body()
    action = data.get("action")
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")
    return jsonify(svc.transition_status(decision_id, action, note=data.get("note"), **_actor()))


@decision_bp.route("/decisions/<decision_id>/admin/revoke-approval", methods=["POST"])
def revoke_approval(decision_id):
    """Send an approved or rejected decision back to draft."""
    data = _body()
    return jsonify(svc.transition_status(decision_id, "revoke", note=data.get("reason"), **_actor()))


# ═════════════════════════════════════════════════════════════════════════
# Versions / diffs
# ═════════════════════════════════════════════════════════════════════════


@decision_bp.route("/decisions/<decision_id>/versions", methods=["GET"])
def list_versions(decision_id):
    """List versions (oldest first, snapshots omitted)."""
    return jsonify(svc.list_versions(decision_id))


@decision_bp.route("/decisions/<decision_id>/versions", methods=["POST"])
def create_version(decision_id):
    """Save the live decision as a new version, optionally overlaying scalar fields."""
    data = _body()
    version = svc.create_version(
        decision_id,
        snapshot=data.get("snapshot"),
        note=data.get("note"),
        **_actor(),
    )
    return jsonify(version), 201


@decision_bp.route("/decisions/<decision_id>/versions/<ref>", methods=["GET"])
def get_version(decision_id, ref):
    return jsonify(svc.get_version(decision_id, ref))


@decision_bp.route("/decisions/<decision_id>/diffs", methods=["GET"])
def diff_versions(decision_id):
    """Field-level diff between two versions (ids or numbers)."""
    from_ref = request.args.get("from")
    to_ref = request.args.get("to")
    if not from_ref or not to_ref:
        return api_error(E.VALIDATION_REQUIRED, "from and to query params are required")
    return jsonify(svc.diff(decision_id, from_ref, to_ref))


# ═════════════════════════════════════════════════════════════════════════
# Audit
# ═════════════════════════════════════════════════════════════════════════


@decision_bp.route("/decisions/<decision_id>/audit", methods=["GET"])
def list_audit(decision_id):
    params = {
        "limit": request.args.get("limit"),
        "filter": request.args.get("filter"),
        "offset": request.args.get("offset"),
    }
    return jsonify(svc.list_audit(decision_id, params))


# ═════════════════════════════════════════════════════════════════════════
# Share links
# ═════════════════════════════════════════════════════════════════════════


@decision_bp.route("/decisions/<decision_id>/share", methods=["POST"])
def reissue_share(decision_id):
    """Issue a share link; any active link of the same scope is deactivated."""
    return jsonify(svc.reissue_share(decision_id, _body(), **_actor())), 201


@decision_bp.route("/decisions/<decision_id>/share-links", methods=["GET"])
def list_share_links(decision_id):
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    return jsonify(svc.list_share_links(decision_id, active_only=active_only))


@decision_bp.route("/share-links/<link_id>/revoke", methods=["POST"])
def revoke_share(link_id):
    return jsonify(svc.revoke_share(link_id, **_actor()))


@decision_bp.route("/share-links/<link_id>/extend", methods=["POST"])
def extend_share(link_id):
    data = _body()
    if "expires_at" not in data:
        return api_error(E.VALIDATION_REQUIRED, "expires_at is required")
    return jsonify(svc.extend_share(link_id, data["expires_at"], **_actor()))


# ═════════════════════════════════════════════════════════════════════════
# Decision objects
# ═════════════════════════════════════════════════════════════════════════


@decision_bp.route("/decisions/<decision_id>/objects", methods=["POST"])
def add_object(decision_id):
    return jsonify(svc.add_object(decision_id, _body(), **_actor())), 201


@decision_bp.route("/decisions/<decision_id>/objects/reorder", methods=["POST"])
def reorder_objects(decision_id):
    data = _body()
    if "object_ids" not in data:
        return api_error(E.VALIDATION_REQUIRED, "object_ids is required")
    return jsonify(svc.reorder_objects(decision_id, data["object_ids"], **_actor()))


@decision_bp.route("/decisions/<decision_id>/objects/<object_id>", methods=["PUT"])
def update_object(decision_id, object_id):
    return jsonify(svc.update_object(decision_id, object_id, _body(), **_actor()))


@decision_bp.route("/decisions/<decision_id>/objects/<object_id>", methods=["DELETE"])
def remove_object(decision_id, object_id):
    return jsonify(svc.remove_object(decision_id, object_id, **_actor()))


@decision_bp.route(
    "/decisions/<decision_id>/objects/<object_id>/options/<option_id>", methods=["PATCH"]
)
def update_option(decision_id, object_id, option_id):
    """Toggle the recommended flag of an option."""
    data = _body()
    if "is_recommended" not in data:
        return api_error(E.VALIDATION_REQUIRED, "is_recommended is required")
    return jsonify(svc.set_recommended_option(
        decision_id, object_id, option_id, data["is_recommended"], **_actor(),
    ))
