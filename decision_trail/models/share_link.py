"""
Decision Trail
Share link model.

A ShareLink grants external, token-based access to a decision's current
state.  At most one link per (decision, access_scope) is active at a time;
the partial unique index below is the storage-level backstop for the
decision row lock taken during reissue.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import text

from decision_trail.models import aware_utc, db, iso_utc

ACCESS_SCOPES = ("read", "comment", "approve")

# Portal actions each scope unlocks.  Comment threads live outside the
# engine, so a comment link only grants the view here.
SCOPE_ACTIONS = {
    "read": ("view",),
    "comment": ("view",),
    "approve": ("view", "approve", "request_changes"),
}


def _utcnow():
    return datetime.now(UTC)


class ShareLink(db.Model):
    __tablename__ = "share_links"
    __table_args__ = (
        db.Index(
            "uq_share_links_active_scope",
            "decision_id",
            "access_scope",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active IS TRUE"),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    decision_id = db.Column(
        db.String(36),
        db.ForeignKey("decisions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token = db.Column(db.String(128), nullable=False, unique=True)
    url = db.Column(db.String(1024), nullable=False)
    access_scope = db.Column(
        db.String(20), nullable=False, default="read",
        comment="read | comment | approve",
    )
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    max_usage = db.Column(db.Integer, nullable=True)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return aware_utc(self.expires_at) <= (now or _utcnow())

    def is_exhausted(self) -> bool:
        return self.max_usage is not None and (self.usage_count or 0) >= self.max_usage

    def is_usable(self, now: datetime | None = None) -> bool:
        return bool(self.is_active) and not self.is_expired(now) and not self.is_exhausted()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "decision_id": self.decision_id,
            "url": self.url,
            "expires_at": iso_utc(self.expires_at),
            "access_scope": self.access_scope,
            "created_by": self.created_by,
            "is_active": bool(self.is_active),
            "created_at": iso_utc(self.created_at),
            "revoked_at": iso_utc(self.revoked_at),
            "usage_count": self.usage_count or 0,
            "max_usage": self.max_usage,
            "last_used_at": iso_utc(self.last_used_at),
        }

    def __repr__(self):
        state = "active" if self.is_active else "inactive"
        return f"<ShareLink {self.id} {self.access_scope} [{state}]>"
