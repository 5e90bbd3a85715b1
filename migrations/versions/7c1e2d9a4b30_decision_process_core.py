"""decision_process_core

Creates the decision process tables:
  - decision_process_templates    — admin-saved template definitions
  - process_instances             — running decision processes (phase list in JSON)
  - decision_process_transitions  — date-triggered phase transitions
  - proposals                     — proposals submitted into an instance
  - scheduled_jobs                — background job registry / last-run record

Tables are created conditionally (IF NOT EXISTS semantics) so the migration
is idempotent against databases bootstrapped with db.create_all().

Revision ID: 7c1e2d9a4b30
Revises:
Create Date: 2026-10-19 09:12:44.518301
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1e2d9a4b30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── ProcessTemplate ───────────────────────────────────────────────────
    if "decision_process_templates" not in existing:
        op.create_table(
            "decision_process_templates",
            sa.Column("id", sa.String(length=100), nullable=False,
                      comment="Stable template key, e.g. 'simple'"),
            sa.Column("version", sa.String(length=30), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("definition", sa.JSON(), nullable=False,
                      comment="Full DecisionSchemaDefinition document"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    # ── ProcessInstance ───────────────────────────────────────────────────
    if "process_instances" not in existing:
        op.create_table(
            "process_instances",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("process_template_id", sa.String(length=100), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("current_phase_id", sa.String(length=100), nullable=False),
            sa.Column("instance_data", sa.JSON(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False,
                      server_default="draft",
                      comment="draft, published, completed, cancelled"),
            sa.Column("profile_id", sa.String(length=36), nullable=True),
            sa.Column("owner_profile_id", sa.String(length=36), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_process_instances_process_template_id", "process_instances",
                        ["process_template_id"])
        op.create_index("ix_process_instances_profile_id", "process_instances", ["profile_id"])
        op.create_index("ix_process_instances_owner_profile_id", "process_instances",
                        ["owner_profile_id"])

    # ── ScheduledTransition ───────────────────────────────────────────────
    if "decision_process_transitions" not in existing:
        op.create_table(
            "decision_process_transitions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("process_instance_id", sa.String(length=36), nullable=False),
            sa.Column("from_phase_id", sa.String(length=100), nullable=False),
            sa.Column("to_phase_id", sa.String(length=100), nullable=False),
            sa.Column("scheduled_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["process_instance_id"], ["process_instances.id"],
                                    ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("process_instance_id", "from_phase_id", "to_phase_id",
                                name="uq_transition_instance_pair"),
        )
        op.create_index("ix_transition_instance_scheduled", "decision_process_transitions",
                        ["process_instance_id", "scheduled_date"])
        op.create_index(
            "ix_transition_due_uncompleted", "decision_process_transitions",
            ["scheduled_date"],
            postgresql_where=sa.text("completed_at IS NULL"),
            sqlite_where=sa.text("completed_at IS NULL"),
        )

    # ── Proposal ──────────────────────────────────────────────────────────
    if "proposals" not in existing:
        op.create_table(
            "proposals",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("process_instance_id", sa.String(length=36), nullable=False),
            sa.Column("proposal_data", sa.JSON(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False,
                      server_default="draft",
                      comment="draft, submitted, shortlisted, rejected, selected"),
            sa.Column("collaboration_doc_id", sa.String(length=255), nullable=True),
            sa.Column("profile_id", sa.String(length=36), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["process_instance_id"], ["process_instances.id"],
                                    ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_proposals_process_instance_id", "proposals",
                        ["process_instance_id"])

    # ── ScheduledJob ──────────────────────────────────────────────────────
    if "scheduled_jobs" not in existing:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    op.drop_table("scheduled_jobs")
    op.drop_index("ix_proposals_process_instance_id", table_name="proposals")
    op.drop_table("proposals")
    op.drop_index("ix_transition_due_uncompleted", table_name="decision_process_transitions")
    op.drop_index("ix_transition_instance_scheduled", table_name="decision_process_transitions")
    op.drop_table("decision_process_transitions")
    op.drop_index("ix_process_instances_owner_profile_id", table_name="process_instances")
    op.drop_index("ix_process_instances_profile_id", table_name="process_instances")
    op.drop_index("ix_process_instances_process_template_id", table_name="process_instances")
    op.drop_table("process_instances")
    op.drop_table("decision_process_templates")
