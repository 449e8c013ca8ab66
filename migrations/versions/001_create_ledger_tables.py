"""Create run ledger tables

Revision ID: 001_ledger
Revises:
Create Date: 2026-10-19

"""
import sqlalchemy as sa
from alembic import op

# revision identifiers
revision = "001_ledger"
down_revision = None
branch_labels = None
depends_on = None

audit_run_status = sa.Enum(
    "queued", "running", "completed", "failed", name="audit_run_status"
)


def upgrade() -> None:
    op.create_table(
        "connections",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(256), nullable=False, index=True),
        sa.Column("encrypted_credential", sa.Text, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "audit_runs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "connection_id",
            sa.String(36),
            sa.ForeignKey("connections.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("status", audit_run_status, nullable=False, index=True),
        sa.Column("progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "parent_run_id",
            sa.String(36),
            sa.ForeignKey("audit_runs.id"),
            nullable=True,
            index=True,
        ),
        sa.Column("problem_statement", sa.Text, nullable=True),
        sa.Column("logs", sa.JSON, nullable=False),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_audit_runs_status_created", "audit_runs", ["status", "created_at"]
    )

    op.create_table(
        "audit_results",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "run_id",
            sa.String(36),
            sa.ForeignKey("audit_runs.id"),
            nullable=False,
            unique=True,
            index=True,
        ),
        sa.Column("snapshot", sa.JSON, nullable=False),
        sa.Column("inferred_model", sa.JSON, nullable=False),
        sa.Column("issues", sa.JSON, nullable=False),
        sa.Column("fix_plan", sa.JSON, nullable=False),
        sa.Column("investigation_log", sa.JSON, nullable=True),
        sa.Column("verification", sa.JSON, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("audit_results")
    op.drop_index("ix_audit_runs_status_created", table_name="audit_runs")
    op.drop_table("audit_runs")
    op.drop_table("connections")
    audit_run_status.drop(op.get_bind(), checkfirst=True)
