"""
Decision Trail
Decision domain models.

Models:
    - Decision: the live, editable root record.
    - DecisionObject: ordered sub-item of a decision ("Countertop Material").
    - DecisionOption: a selectable option inside a DecisionObject.
    - DecisionVersion: immutable, numbered snapshot of a decision.

Object/option rows are mutated in place; their state is only preserved
historically when a caller explicitly saves a new DecisionVersion.
"""

import copy
import uuid
from datetime import datetime, timezone

from sqlalchemy import event, inspect

from decision_trail.core.exceptions import ImmutableRecordError
from decision_trail.models import db, iso_utc


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

DECISION_STATUSES = ("draft", "pending", "approved", "rejected", "archived")

# Scalar snapshot keys, in the fixed order the diff engine reports them.
SNAPSHOT_SCALAR_FIELDS = ("title", "description", "category", "owner_id", "due_date", "tags")


# ═════════════════════════════════════════════════════════════════════════════
# Decision
# ═════════════════════════════════════════════════════════════════════════════

class Decision(db.Model):
    """
    Live decision record.

    ``current_version_id`` always points at the highest-numbered version.
    Decisions are never physically deleted by the engine; ``archived`` is
    the soft-delete state and is terminal for editing.
    """

    __tablename__ = "decisions"
    __table_args__ = (
        db.Index("idx_decision_project", "project_id"),
        db.Index("idx_decision_status", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(db.String(36), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(100), nullable=True)
    owner_id = db.Column(db.String(36), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | pending | approved | rejected | archived",
    )
    due_date = db.Column(db.Date, nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)
    # "metadata" is reserved on declarative classes
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)

    current_version_id = db.Column(
        db.String(36), nullable=True,
        comment="Highest-numbered DecisionVersion.id (no FK: versions reference decisions)",
    )
    current_version_number = db.Column(db.Integer, nullable=False, default=0)
    audit_sequence = db.Column(
        db.Integer, nullable=False, default=0,
        comment="Last audit sequence number handed out for this decision",
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    objects = db.relationship(
        "DecisionObject",
        back_populates="decision",
        order_by="DecisionObject.order_index",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    versions = db.relationship(
        "DecisionVersion",
        back_populates="decision",
        order_by="DecisionVersion.version_number",
        passive_deletes=True,
        lazy="select",
    )

    @property
    def is_archived(self) -> bool:
        return self.status == "archived"

    def to_dict(self, include_objects: bool = True) -> dict:
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "owner_id": self.owner_id,
            "status": self.status,
            "due_date": iso_utc(self.due_date),
            "tags": list(self.tags or []),
            "metadata": copy.deepcopy(self.meta or {}),
            "current_version_id": self.current_version_id,
            "current_version_number": self.current_version_number or None,
            "created_at": iso_utc(self.created_at),
            "updated_at": iso_utc(self.updated_at),
        }
        if include_objects:
            d["decision_objects"] = [o.to_dict() for o in self.objects]
        return d

    def __repr__(self):
        return f"<Decision {self.id}: {self.title!r} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# DecisionObject / DecisionOption
# ═════════════════════════════════════════════════════════════════════════════

class DecisionObject(db.Model):
    """Ordered sub-item of a decision. ``order_index`` is dense and zero-based."""

    __tablename__ = "decision_objects"
    __table_args__ = (
        db.Index("idx_dobj_decision_order", "decision_id", "order_index"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    decision_id = db.Column(
        db.String(36),
        db.ForeignKey("decisions.id", ondelete="CASCADE"),
        nullable=False,
    )
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default="draft")
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    decision = db.relationship("Decision", back_populates="objects")
    options = db.relationship(
        "DecisionOption",
        back_populates="decision_object",
        order_by="DecisionOption.order_index",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "decision_id": self.decision_id,
            "title": self.title,
            "description": self.description,
            "order_index": self.order_index,
            "status": self.status,
            "metadata": copy.deepcopy(self.meta or {}),
            "options": [o.to_dict() for o in self.options],
            "created_at": iso_utc(self.created_at),
            "updated_at": iso_utc(self.updated_at),
        }

    def __repr__(self):
        return f"<DecisionObject {self.id}: {self.title!r} #{self.order_index}>"


class DecisionOption(db.Model):
    """A selectable option (label, cost, media, dependencies) of a DecisionObject."""

    __tablename__ = "decision_options"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    decision_object_id = db.Column(
        db.String(36),
        db.ForeignKey("decision_objects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    label = db.Column(db.String(255), nullable=False)
    media_url = db.Column(db.String(1024), nullable=True)
    cost = db.Column(db.JSON, nullable=True, comment="Number or display string, e.g. '$2,500'")
    dependencies = db.Column(db.JSON, nullable=False, default=dict)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    is_recommended = db.Column(db.Boolean, nullable=False, default=False)

    decision_object = db.relationship("DecisionObject", back_populates="options")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "decision_object_id": self.decision_object_id,
            "label": self.label,
            "media_url": self.media_url,
            "cost": self.cost,
            "dependencies": copy.deepcopy(self.dependencies or {}),
            "order_index": self.order_index,
            "is_recommended": bool(self.is_recommended),
        }


# ═════════════════════════════════════════════════════════════════════════════
# DecisionVersion
# ═════════════════════════════════════════════════════════════════════════════

class DecisionVersion(db.Model):
    """
    Immutable snapshot of a decision.

    Business rules:
    - (decision_id, version_number) is unique; numbers start at 1, no gaps.
    - snapshot / version_number never change after insert (ORM guard below).
    - Rows disappear only through the DB-level cascade on decisions.id.
    """

    __tablename__ = "decision_versions"
    __table_args__ = (
        db.UniqueConstraint("decision_id", "version_number", name="uq_decision_version_number"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    decision_id = db.Column(
        db.String(36),
        db.ForeignKey("decisions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version_number = db.Column(db.Integer, nullable=False)
    snapshot = db.Column(db.JSON, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    author_id = db.Column(db.String(36), nullable=True)
    author_name = db.Column(db.String(255), nullable=True)
    note = db.Column(db.Text, nullable=True)

    decision = db.relationship("Decision", back_populates="versions")

    def to_dict(self, include_snapshot: bool = True) -> dict:
        d = {
            "id": self.id,
            "decision_id": self.decision_id,
            "version_number": self.version_number,
            "created_at": iso_utc(self.created_at),
            "author_id": self.author_id,
            "author_name": self.author_name,
            "note": self.note,
        }
        if include_snapshot:
            d["snapshot"] = copy.deepcopy(self.snapshot)
        return d

    def __repr__(self):
        return f"<DecisionVersion {self.decision_id} v{self.version_number}>"


@event.listens_for(DecisionVersion, "before_update", propagate=True)
def _decision_version_prevent_updates(mapper, connection, target) -> None:
    state = inspect(target)
    if not state.persistent:
        return
    changed = [a.key for a in state.attrs if a.history.has_changes()]
    if changed:
        raise ImmutableRecordError(
            "DecisionVersion is immutable; updates are forbidden (changed: "
            + ", ".join(sorted(changed))
            + "). Save a new version instead."
        )
