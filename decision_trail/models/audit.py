"""
Decision Trail
Audit domain model.

Models:
    - AuditLogEntry: immutable, append-only trail of decision lifecycle events.
"""

import hashlib
import json
import uuid
from datetime import UTC, datetime

from sqlalchemy import event, inspect

from decision_trail.core.exceptions import ImmutableRecordError
from decision_trail.models import db, iso_utc

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = (
    "created",
    "updated",
    "version_created",
    "object_added",
    "object_removed",
    "objects_reordered",
    "share_link_issued",
    "share_link_revoked",
    "status_changed",
)


class AuditLogEntry(db.Model):
    """
    Immutable audit trail entry for a decision.

    One row per action.  ``sequence`` is handed out from
    ``Decision.audit_sequence`` in the writing transaction, so entries that
    share a timestamp still have a total order.  ``version_id`` ties the
    entry to the snapshot it produced, when there is one.
    """

    __tablename__ = "decision_audit_log"
    __table_args__ = (
        db.UniqueConstraint("decision_id", "sequence", name="uq_audit_decision_sequence"),
        db.Index("idx_audit_decision_ts", "decision_id", "timestamp"),
        db.Index("idx_audit_action", "action"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    decision_id = db.Column(
        db.String(36),
        db.ForeignKey("decisions.id", ondelete="CASCADE"),
        nullable=False,
    )
    version_id = db.Column(
        db.String(36),
        db.ForeignKey("decision_versions.id", ondelete="SET NULL"),
        nullable=True,
    )

    # What happened
    action = db.Column(
        db.String(40), nullable=False,
        comment="created | updated | version_created | share_link_issued | …",
    )
    user_id = db.Column(db.String(36), nullable=True)
    user_name = db.Column(db.String(255), nullable=True)
    details = db.Column(db.JSON, nullable=False, default=dict)
    sequence = db.Column(db.Integer, nullable=False)

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def immutable_hash(self) -> str:
        """SHA-256 over this entry's own content. Display only; not chained."""
        payload = {
            "id": self.id,
            "decision_id": self.decision_id,
            "version_id": self.version_id,
            "action": self.action,
            "user_id": self.user_id,
            "timestamp": iso_utc(self.timestamp),
            "details": self.details,
            "sequence": self.sequence,
        }
        raw = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "decision_id": self.decision_id,
            "version_id": self.version_id,
            "action": self.action,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "timestamp": iso_utc(self.timestamp),
            "details": self.details or {},
            "sequence": self.sequence,
            "immutable_hash": self.immutable_hash,
        }

    def __repr__(self):
        return f"<AuditLogEntry {self.decision_id}#{self.sequence}: {self.action}>"


@event.listens_for(AuditLogEntry, "before_update", propagate=True)
def _audit_entry_prevent_updates(mapper, connection, target) -> None:
    state = inspect(target)
    if not state.persistent:
        return
    if any(a.history.has_changes() for a in state.attrs):
        raise ImmutableRecordError("AuditLogEntry is append-only; updates are forbidden.")
