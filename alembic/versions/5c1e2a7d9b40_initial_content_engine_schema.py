"""Create tenant, job, ledger and queue tables.

Revision ID: 5c1e2a7d9b40
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from app.core.migration_guards import guarded_create_index, guarded_create_table, guarded_drop_index, guarded_drop_table
from sqlalchemy.dialects import postgresql

revision = "5c1e2a7d9b40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  guarded_create_table(
    "tenants",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("api_key", sa.String(), nullable=False),
    sa.Column("api_secret", sa.String(), nullable=False),
    sa.Column("plan_code", sa.String(), nullable=True),
    sa.Column("monthly_quota_aej", sa.Integer(), nullable=True),
    sa.Column("aej_balance", sa.BigInteger(), server_default="0", nullable=False),
    sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  guarded_create_index(op.f("ix_tenants_api_key"), "tenants", ["api_key"], unique=True)

  guarded_create_table(
    "jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("tenant_id", sa.String(), nullable=False),
    sa.Column("mode", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("progress", sa.Integer(), server_default="0", nullable=False),
    sa.Column("request_json", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("result_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("aej_estimated", sa.Integer(), nullable=False),
    sa.Column("aej_final", sa.Integer(), nullable=True),
    sa.Column("error_text", sa.Text(), nullable=True),
    sa.Column("idempotency_key", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
    sa.PrimaryKeyConstraint("job_id"),
  )
  guarded_create_index(op.f("ix_jobs_tenant_id"), "jobs", ["tenant_id"], unique=False)
  guarded_create_index(op.f("ix_jobs_mode"), "jobs", ["mode"], unique=False)
  guarded_create_index(op.f("ix_jobs_status"), "jobs", ["status"], unique=False)
  guarded_create_index("ix_jobs_tenant_created", "jobs", ["tenant_id", "created_at"], unique=False)

  guarded_create_table(
    "quota_holds",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("tenant_id", sa.String(), nullable=False),
    sa.Column("aej_estimated", sa.Integer(), nullable=False),
    sa.Column("status", sa.String(), server_default="held", nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
    sa.ForeignKeyConstraint(["job_id"], ["jobs.job_id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("job_id"),
  )
  guarded_create_index(op.f("ix_quota_holds_tenant_id"), "quota_holds", ["tenant_id"], unique=False)
  guarded_create_index("ix_quota_holds_tenant_open", "quota_holds", ["tenant_id"], unique=False, postgresql_where=sa.text("status = 'held'"))

  guarded_create_table(
    "usage_ledger",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("tenant_id", sa.String(), nullable=False),
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("stage", sa.String(), nullable=False),
    sa.Column("aej_used", sa.Integer(), nullable=False),
    sa.Column("tokens_used", sa.Integer(), nullable=True),
    sa.Column("model_used", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("tenant_id", "job_id", "stage", name="ux_usage_ledger_tenant_job_stage"),
  )
  guarded_create_index(op.f("ix_usage_ledger_job_id"), "usage_ledger", ["job_id"], unique=False)
  guarded_create_index("ix_usage_ledger_tenant_created", "usage_ledger", ["tenant_id", "created_at"], unique=False)

  guarded_create_table(
    "idempotency_keys",
    sa.Column("tenant_id", sa.String(), nullable=False),
    sa.Column("idem_key", sa.String(), nullable=False),
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["job_id"], ["jobs.job_id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("tenant_id", "idem_key"),
  )
  guarded_create_index(op.f("ix_idempotency_keys_job_id"), "idempotency_keys", ["job_id"], unique=False)

  guarded_create_table(
    "decision_log",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("tenant_id", sa.String(), nullable=False),
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("content_source", sa.String(), nullable=False),
    sa.Column("content_type", sa.String(), nullable=False),
    sa.Column("content_id", sa.String(), nullable=False),
    sa.Column("decision_type", sa.String(), nullable=False),
    sa.Column("decision_reason", sa.Text(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["job_id"], ["jobs.job_id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("tenant_id", "job_id", "decision_type", name="ux_decision_log_tenant_job_type"),
  )
  guarded_create_index(op.f("ix_decision_log_tenant_id"), "decision_log", ["tenant_id"], unique=False)
  guarded_create_index(op.f("ix_decision_log_job_id"), "decision_log", ["job_id"], unique=False)

  guarded_create_table(
    "job_events",
    sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("tenant_id", sa.String(), nullable=True),
    sa.Column("event_type", sa.String(), nullable=False),
    sa.Column("message", sa.Text(), nullable=True),
    sa.Column("meta_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  guarded_create_index(op.f("ix_job_events_job_id"), "job_events", ["job_id"], unique=False)
  guarded_create_index(op.f("ix_job_events_tenant_id"), "job_events", ["tenant_id"], unique=False)
  guarded_create_index(op.f("ix_job_events_event_type"), "job_events", ["event_type"], unique=False)

  guarded_create_table(
    "admin_flags",
    sa.Column("key", sa.String(), nullable=False),
    sa.Column("value", sa.String(), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("key"),
  )

  guarded_create_table(
    "dispatch_queue",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("status", sa.String(), server_default="pending", nullable=False),
    sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
    sa.Column("max_attempts", sa.Integer(), server_default="3", nullable=False),
    sa.Column("available_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("lease_token", sa.String(), nullable=True),
    sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("last_error", sa.Text(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("job_id"),
  )
  guarded_create_index("ix_dispatch_queue_claim", "dispatch_queue", ["status", "available_at"], unique=False, postgresql_where=sa.text("status IN ('pending', 'inflight')"))


def downgrade() -> None:
  """Downgrade schema."""
  guarded_drop_index("ix_dispatch_queue_claim", table_name="dispatch_queue")
  guarded_drop_table("dispatch_queue")
  guarded_drop_table("admin_flags")
  guarded_drop_table("job_events")
  guarded_drop_table("decision_log")
  guarded_drop_table("idempotency_keys")
  guarded_drop_table("usage_ledger")
  guarded_drop_table("quota_holds")
  guarded_drop_table("jobs")
  guarded_drop_table("tenants")
