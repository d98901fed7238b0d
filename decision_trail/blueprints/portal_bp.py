"""Public share-link portal blueprint.

Token-gated, unauthenticated access for external clients.  Rate-limited
per remote address (see middleware/rate_limiter.py).

    GET  /api/v1/links/<token>/verify            check a token without using it
    POST /api/v1/links/<token>/consume           use a token; returns the scoped view
    POST /api/v1/links/<token>/approve           approve scope only   {note?, client_name?}
    POST /api/v1/links/<token>/request-changes   approve scope only   {note?, client_name?}
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from decision_trail.services import decision_service, share_link_service
from decision_trail.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

portal_bp = Blueprint("portal", __name__, url_prefix="/api/v1/links")

register_error_handlers(portal_bp)


@portal_bp.route("/<token>/verify", methods=["GET"])
def verify(token):
    return jsonify(share_link_service.verify(token))


@portal_bp.route("/<token>/consume", methods=["POST"])
def consume(token):
    return jsonify(share_link_service.consume(token))


def _client_action(token, action):
    data = request.get_json(silent=True) or {}
    return jsonify(decision_service.portal_action(
        token, action, note=data.get("note"), client_name=data.get("client_name"),
    ))


@portal_bp.route("/<token>/approve", methods=["POST"])
def approve(token):
    """Client approval of a pending decision."""
    return _client_action(token, "approve")


@portal_bp.route("/<token>/request-changes", methods=["POST"])
def request_changes(token):
    """Client sends a pending decision back (status → rejected)."""
    return _client_action(token, "request_changes")
