"""
Decision Process Engine
Decision process domain models.

Models:
    - ProcessTemplate:       stored decision schema definition (phases, rules, settings schemas)
    - ProcessInstance:       one running decision process with its own phase dates/settings
    - ScheduledTransition:   "when phase A ends at T, move the instance to phase B"
    - Proposal:              proposal submitted into a process instance

Architecture:
    ProcessTemplate ──1:N──▶ ProcessInstance ──1:N──▶ ScheduledTransition
                                            ──1:N──▶ Proposal

Lifecycle states:
    ProcessInstance:  draft → published → completed | cancelled
    Proposal:         draft → submitted → shortlisted | rejected | selected

The instance phase list, current phase mirror, process config and proposal
template live in ``ProcessInstance.instance_data`` (JSON). ``current_phase_id``
is kept as a real column so due-transition queries and listings do not need to
unpack JSON.
"""

import uuid
from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

PROCESS_STATUSES = {"draft", "published", "completed", "cancelled"}

PROPOSAL_STATUSES = {"draft", "submitted", "shortlisted", "rejected", "selected"}

ADVANCEMENT_METHODS = {"date", "manual"}


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class ProcessTemplate(db.Model):
    """
    Admin-saved decision schema definition.

    Built-in definitions ship in ``app.services.schema_registry``; rows in this
    table take precedence over a built-in with the same id.
    """

    __tablename__ = "decision_process_templates"

    id = db.Column(db.String(100), primary_key=True,
                   comment="Stable template key, e.g. 'simple'")
    version = db.Column(db.String(30), default="1.0.0")
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    definition = db.Column(db.JSON, nullable=False,
                           comment="Full DecisionSchemaDefinition document")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "version": self.version,
            "name": self.name,
            "description": self.description,
            "definition": self.definition,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ProcessTemplate {self.id} v{self.version}>"


class ProcessInstance(db.Model):
    """
    A concrete, running decision process.

    ``current_phase_id`` must always equal the ``phaseId`` of exactly one
    entry in ``instance_data["phases"]``; ``instance_data["currentPhaseId"]``
    mirrors it and both are written together.
    """

    __tablename__ = "process_instances"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    process_template_id = db.Column(db.String(100), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    current_phase_id = db.Column(db.String(100), nullable=False)
    instance_data = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(20), nullable=False, default="draft",
                       comment="draft, published, completed, cancelled")
    profile_id = db.Column(db.String(36), nullable=True, index=True)
    owner_profile_id = db.Column(db.String(36), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    transitions = db.relationship(
        "ScheduledTransition", backref="process_instance", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    proposals = db.relationship(
        "Proposal", backref="process_instance", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def phases(self) -> list[dict]:
        return list((self.instance_data or {}).get("phases") or [])

    @property
    def config(self) -> dict:
        return dict((self.instance_data or {}).get("config") or {})

    @property
    def proposal_template(self) -> dict | None:
        return (self.instance_data or {}).get("proposalTemplate")

    def phase_index(self, phase_id: str) -> int:
        """Position of ``phase_id`` in the phase list, or -1."""
        for index, phase in enumerate(self.phases):
            if phase.get("phaseId") == phase_id:
                return index
        return -1

    def set_current_phase(self, phase_id: str) -> None:
        """Move the pointer and its embedded mirror together."""
        data = dict(self.instance_data or {})
        data["currentPhaseId"] = phase_id
        self.instance_data = data
        self.current_phase_id = phase_id

    def to_dict(self):
        return {
            "id": self.id,
            "process_template_id": self.process_template_id,
            "name": self.name,
            "description": self.description,
            "current_phase_id": self.current_phase_id,
            "instance_data": self.instance_data,
            "status": self.status,
            "profile_id": self.profile_id,
            "owner_profile_id": self.owner_profile_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ProcessInstance {self.id} @{self.current_phase_id} [{self.status}]>"


class ScheduledTransition(db.Model):
    """
    Date-triggered phase transition.

    Identity within an instance is the (from_phase_id, to_phase_id) pair.
    Once ``completed_at`` is set the row is historical fact: the scheduler
    never moves or deletes it.
    """

    __tablename__ = "decision_process_transitions"
    __table_args__ = (
        db.UniqueConstraint(
            "process_instance_id", "from_phase_id", "to_phase_id",
            name="uq_transition_instance_pair",
        ),
        db.Index("ix_transition_instance_scheduled", "process_instance_id", "scheduled_date"),
        db.Index(
            "ix_transition_due_uncompleted",
            "scheduled_date",
            postgresql_where=db.text("completed_at IS NULL"),
            sqlite_where=db.text("completed_at IS NULL"),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    process_instance_id = db.Column(
        db.String(36),
        db.ForeignKey("process_instances.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_phase_id = db.Column(db.String(100), nullable=False)
    to_phase_id = db.Column(db.String(100), nullable=False)
    scheduled_date = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def key(self) -> tuple[str, str]:
        return self.from_phase_id, self.to_phase_id

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def to_dict(self):
        return {
            "id": self.id,
            "process_instance_id": self.process_instance_id,
            "from_phase_id": self.from_phase_id,
            "to_phase_id": self.to_phase_id,
            "scheduled_date": _iso(self.scheduled_date),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        state = "done" if self.completed_at else "pending"
        return f"<ScheduledTransition {self.from_phase_id}→{self.to_phase_id} [{state}]>"


class Proposal(db.Model):
    """
    Proposal submitted into a decision process.

    Content is either local flat ``proposal_data`` or, when
    ``collaboration_doc_id`` is set, per-field fragments in the collaborative
    document store.
    """

    __tablename__ = "proposals"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    process_instance_id = db.Column(
        db.String(36),
        db.ForeignKey("process_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    proposal_data = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(20), nullable=False, default="draft",
                       comment="draft, submitted, shortlisted, rejected, selected")
    collaboration_doc_id = db.Column(db.String(255), nullable=True)
    profile_id = db.Column(db.String(36), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "process_instance_id": self.process_instance_id,
            "proposal_data": self.proposal_data,
            "status": self.status,
            "collaboration_doc_id": self.collaboration_doc_id,
            "profile_id": self.profile_id,
            "submitted_at": _iso(self.submitted_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Proposal {self.id} [{self.status}]>"
