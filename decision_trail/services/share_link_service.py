"""
Share Link Issuer: scoped, expiring, token-based external access.

At most one active link exists per (decision, access_scope).  ``issue``
serializes on the decision row lock, deactivates the previous active link
of the same scope (auditing each one), flushes, and only then inserts the
new link.  The partial unique index on share_links catches anything that
slips past the lock; that surfaces as ConflictError and is retried.

Tokens come from ``secrets.token_urlsafe`` and are never derived from the
decision id or the clock.
"""

import logging
import secrets
from datetime import UTC, datetime

from flask import current_app
from sqlalchemy import or_, select, update

from decision_trail.core.exceptions import (
    ConflictError,
    InvalidArgumentError,
    InvalidStateTransitionError,
    NotFoundError,
    ScopeDeniedError,
)
from decision_trail.models import db
from decision_trail.models.share_link import ACCESS_SCOPES, SCOPE_ACTIONS, ShareLink
from decision_trail.services import audit_recorder, snapshot_store
from decision_trail.utils.helpers import parse_datetime, unit_of_work

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(UTC)


# ── Token generation (stateless) ─────────────────────────────────────────────

def generate_token() -> str:
    nbytes = current_app.config.get("SHARE_TOKEN_BYTES", 32)
    return secrets.token_urlsafe(max(int(nbytes), 16))


def build_url(token: str) -> str:
    base = current_app.config.get("SHARE_LINK_BASE_URL", "http://localhost:5000/share")
    return f"{base.rstrip('/')}/{token}"


# ── Validation ───────────────────────────────────────────────────────────────

def _validate_scope(scope) -> str:
    if scope not in ACCESS_SCOPES:
        raise InvalidArgumentError(
            f"Invalid access_scope: {scope!r}",
            details={"access_scope": scope, "allowed": list(ACCESS_SCOPES)},
        )
    return scope


def _validate_expiry(expires_at):
    parsed = parse_datetime(expires_at)
    if parsed is not None and parsed <= _utcnow():
        raise InvalidArgumentError(
            "expires_at must be in the future", details={"expires_at": parsed.isoformat()}
        )
    return parsed


def _validate_max_usage(max_usage):
    if max_usage is None:
        return None
    if isinstance(max_usage, bool) or not isinstance(max_usage, int) or max_usage <= 0:
        raise InvalidArgumentError(
            "max_usage must be a positive integer", details={"max_usage": max_usage}
        )
    return max_usage


def _get_link(share_link_id: str) -> ShareLink:
    link = db.session.get(ShareLink, share_link_id)
    if link is None:
        raise NotFoundError("ShareLink", share_link_id)
    return link


def _lock_link(share_link_id: str) -> ShareLink:
    """Re-read a link under ``FOR UPDATE`` once its decision row is locked.

    ``populate_existing`` discards whatever an earlier unlocked read left in
    the identity map, so ``is_active`` reflects the last committed writer.
    """
    stmt = (
        select(ShareLink)
        .where(ShareLink.id == share_link_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    link = db.session.execute(stmt).scalar_one_or_none()
    if link is None:
        raise NotFoundError("ShareLink", share_link_id)
    return link


def _find_by_token(token: str) -> ShareLink | None:
    if not token:
        return None
    return db.session.execute(
        select(ShareLink).where(ShareLink.token == token)
    ).scalar_one_or_none()


# ── Issue / reissue ──────────────────────────────────────────────────────────

def _issue_once(decision_id, scope, expires, max_usage, created_by, created_by_name) -> ShareLink:
    with unit_of_work("share_link.issue"):
        decision = snapshot_store.lock_decision(decision_id)
        if decision.is_archived:
            raise InvalidStateTransitionError(
                decision.status, "issue_share_link", "archived decisions cannot be shared"
            )

        active = db.session.execute(
            select(ShareLink).where(
                ShareLink.decision_id == decision_id,
                ShareLink.access_scope == scope,
                ShareLink.is_active.is_(True),
            ).order_by(ShareLink.created_at)
        ).scalars().all()
        now = _utcnow()
        for prior in active:
            prior.is_active = False
            prior.revoked_at = now
            audit_recorder.append_entry(
                decision, "share_link_revoked",
                {"share_link_id": prior.id, "access_scope": scope, "reason": "reissued"},
                user_id=created_by, user_name=created_by_name,
            )
        # deactivations must hit the partial index before the new row
        db.session.flush()

        token = generate_token()
        link = ShareLink(
            decision_id=decision_id,
            token=token,
            url=build_url(token),
            access_scope=scope,
            expires_at=expires,
            max_usage=max_usage,
            created_by=created_by,
            is_active=True,
        )
        db.session.add(link)
        db.session.flush()

        audit_recorder.append_entry(
            decision, "share_link_issued",
            {
                "share_link_id": link.id,
                "access_scope": scope,
                "expires_at": expires.isoformat() if expires else None,
                "replaced": [p.id for p in active],
            },
            user_id=created_by, user_name=created_by_name,
        )
    return link


def issue(
    decision_id: str,
    *,
    access_scope: str = "read",
    expires_at=None,
    created_by: str | None = None,
    created_by_name: str | None = None,
    max_usage: int | None = None,
) -> dict:
    """Issue a new active link, deactivating the previous one of the same scope."""
    scope = _validate_scope(access_scope)
    expires = _validate_expiry(expires_at)
    max_usage = _validate_max_usage(max_usage)

    attempts = current_app.config.get("SHARE_ISSUE_MAX_ATTEMPTS", 3)
    for attempt in range(1, attempts + 1):
        try:
            link = _issue_once(decision_id, scope, expires, max_usage, created_by, created_by_name)
        except ConflictError:
            logger.warning(
                "Share link issue conflict (attempt %d/%d)", attempt, attempts,
                extra={"decision_id": decision_id, "action": "share_link_issued"},
            )
            continue
        logger.info(
            "Share link %s issued (%s)", link.id, scope,
            extra={"decision_id": decision_id, "action": "share_link_issued"},
        )
        return link.to_dict()

    raise ConflictError("ShareLink", "decision_id,access_scope", f"{decision_id}:{scope}")


# ── Revoke / extend ──────────────────────────────────────────────────────────

def revoke(share_link_id: str, *, user_id: str | None = None, user_name: str | None = None) -> dict:
    """Deactivate a link.  Revoking an inactive link is a no-op."""
    with unit_of_work("share_link.revoke"):
        decision = snapshot_store.lock_decision(_get_link(share_link_id).decision_id)
        link = _lock_link(share_link_id)
        if not link.is_active:
            return link.to_dict()
        link.is_active = False
        link.revoked_at = _utcnow()
        audit_recorder.append_entry(
            decision, "share_link_revoked",
            {"share_link_id": link.id, "access_scope": link.access_scope, "reason": "revoked"},
            user_id=user_id, user_name=user_name,
        )
    logger.info(
        "Share link %s revoked", share_link_id,
        extra={"decision_id": link.decision_id, "action": "share_link_revoked"},
    )
    return link.to_dict()


def extend(
    share_link_id: str,
    expires_at,
    *,
    user_id: str | None = None,
    user_name: str | None = None,
) -> dict:
    """Change the expiry of an active link (``None`` makes it non-expiring)."""
    expires = _validate_expiry(expires_at)
    with unit_of_work("share_link.extend"):
        decision = snapshot_store.lock_decision(_get_link(share_link_id).decision_id)
        link = _lock_link(share_link_id)
        if not link.is_active:
            raise InvalidArgumentError(
                "Only active share links can be extended",
                details={"share_link_id": share_link_id, "is_active": False},
            )
        if decision.is_archived:
            raise InvalidStateTransitionError(decision.status, "extend_share_link")
        old = link.to_dict()["expires_at"]
        link.expires_at = expires
        audit_recorder.append_entry(
            decision, "updated",
            {
                "share_link_id": link.id,
                "expires_at": {"old": old, "new": expires.isoformat() if expires else None},
            },
            user_id=user_id, user_name=user_name,
        )
    logger.info(
        "Share link %s extended", share_link_id,
        extra={"decision_id": link.decision_id, "action": "updated"},
    )
    return link.to_dict()


def list_links(decision_id: str, *, active_only: bool = False) -> list[dict]:
    snapshot_store.get_decision(decision_id)
    stmt = select(ShareLink).where(ShareLink.decision_id == decision_id)
    if active_only:
        stmt = stmt.where(ShareLink.is_active.is_(True))
    stmt = stmt.order_by(ShareLink.created_at.asc())
    return [link.to_dict() for link in db.session.execute(stmt).scalars()]


# ── Token access (portal) ────────────────────────────────────────────────────

def verify(token: str) -> dict:
    """Check a token without consuming it.  Never raises for bad tokens."""
    link = _find_by_token(token)
    if link is None:
        return {"valid": False, "reason": "not_found"}

    if not link.is_active:
        reason = "revoked"
    elif link.is_expired():
        reason = "expired"
    elif link.is_exhausted():
        reason = "exhausted"
    else:
        reason = None

    data = link.to_dict()
    result = {
        "valid": reason is None,
        "decision_id": link.decision_id,
        "access_scope": link.access_scope,
        "allowed_actions": list(SCOPE_ACTIONS[link.access_scope]) if reason is None else [],
        "expires_at": data["expires_at"],
        "usage_count": data["usage_count"],
        "max_usage": data["max_usage"],
    }
    if reason:
        result["reason"] = reason
    return result


def find_usable(token: str) -> ShareLink:
    """Active, unexpired, not exhausted link for ``token`` or NotFoundError."""
    link = _find_by_token(token)
    if link is None or not link.is_usable():
        raise NotFoundError("ShareLink", "token")
    return link


def claim(token: str, action: str = "view") -> ShareLink:
    """Count one use of ``token`` for ``action`` (flush-only).

    The increment is a single guarded UPDATE, so two racing uses of a link
    with one use left cannot both succeed: the loser matches no row and
    gets NotFoundError.
    """
    link = find_usable(token)
    if action not in SCOPE_ACTIONS[link.access_scope]:
        raise ScopeDeniedError(link.access_scope, action)

    result = db.session.execute(
        update(ShareLink)
        .where(
            ShareLink.id == link.id,
            ShareLink.is_active.is_(True),
            or_(ShareLink.max_usage.is_(None), ShareLink.usage_count < ShareLink.max_usage),
        )
        .values(usage_count=ShareLink.usage_count + 1, last_used_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError("ShareLink", "token")
    db.session.refresh(link)
    return link


def _portal_view(decision) -> dict:
    view = decision.to_dict()
    view.pop("owner_id", None)
    return view


def portal_view(decision_id: str) -> dict:
    """Decision as an external client sees it (no owner, no audit data)."""
    return _portal_view(snapshot_store.get_decision(decision_id))


def consume(token: str) -> dict:
    """Use a token once and return the scoped decision view."""
    with unit_of_work("share_link.consume"):
        link = claim(token, "view")
        decision = snapshot_store.get_decision(link.decision_id)
        view = _portal_view(decision)
        data = link.to_dict()
    logger.info(
        "Share link %s consumed", data["id"],
        extra={"decision_id": data["decision_id"]},
    )
    return {
        "access_scope": data["access_scope"],
        "allowed_actions": list(SCOPE_ACTIONS[data["access_scope"]]),
        "expires_at": data["expires_at"],
        "usage_count": data["usage_count"],
        "max_usage": data["max_usage"],
        "decision": view,
    }
