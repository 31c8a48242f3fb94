"""tenant bindings, soft-delete ledger, documents and audit events

Revision ID: 0001_init
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Connection parameters per tenant; the engine column selects the handle variant.
    op.create_table(
        "tenant_bindings",
        sa.Column("tenant_key", sa.String(), primary_key=True, nullable=False),
        sa.Column("tenant_type", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("backend_kind", sa.String(), nullable=False),
        sa.Column("engine", sa.String(), nullable=False),
        sa.Column("connection_string", sa.String(), nullable=True),
        sa.Column("database_name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_tenant_bindings_tenant_id", "tenant_bindings", ["tenant_id"], unique=False)

    op.create_table(
        "soft_deleted_entities",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("entity_data", postgresql.JSONB(), nullable=False),
        sa.Column("parent_entity_id", sa.String(), nullable=True),
        sa.Column("parent_entity_type", sa.String(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_by", sa.String(), nullable=False),
        sa.Column("deleted_by_email", sa.String(), nullable=False, server_default=""),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("recovery_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claimed_by", sa.String(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_soft_deleted_entities_entity_id", "soft_deleted_entities", ["entity_id"], unique=False)
    op.create_index(
        "ix_soft_deleted_entities_recovery_deadline",
        "soft_deleted_entities",
        ["recovery_deadline"],
        unique=False,
    )
    op.create_index(
        "ix_soft_deleted_parent",
        "soft_deleted_entities",
        ["parent_entity_type", "parent_entity_id"],
        unique=False,
    )
    op.create_index(
        "ix_soft_deleted_type_deleted_at",
        "soft_deleted_entities",
        ["entity_type", "deleted_at"],
        unique=False,
    )

    # Documents for tenants bound to the SQL document engine.
    op.create_table(
        "tf_documents",
        sa.Column("collection", sa.String(), primary_key=True, nullable=False),
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("data", postgresql.JSONB(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("tenant_key", sa.String(), nullable=True),
        sa.Column("actor_type", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"], unique=False)
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"], unique=False)
    op.create_index("ix_audit_events_tenant_key", "audit_events", ["tenant_key"], unique=False)
    op.create_index("ix_audit_events_request_id", "audit_events", ["request_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_events_request_id", table_name="audit_events")
    op.drop_index("ix_audit_events_tenant_key", table_name="audit_events")
    op.drop_index("ix_audit_events_event_type", table_name="audit_events")
    op.drop_index("ix_audit_events_occurred_at", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("tf_documents")
    op.drop_index("ix_soft_deleted_type_deleted_at", table_name="soft_deleted_entities")
    op.drop_index("ix_soft_deleted_parent", table_name="soft_deleted_entities")
    op.drop_index("ix_soft_deleted_entities_recovery_deadline", table_name="soft_deleted_entities")
    op.drop_index("ix_soft_deleted_entities_entity_id", table_name="soft_deleted_entities")
    op.drop_table("soft_deleted_entities")
    op.drop_index("ix_tenant_bindings_tenant_id", table_name="tenant_bindings")
    op.drop_table("tenant_bindings")
