from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on PostgreSQL, plain JSON on SQLite test databases.
JsonType = JSONB().with_variant(JSON(), "sqlite")
# SQLite has no BIGINT autoincrement; fall back to INTEGER there.
BigIntId = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


class TenantBinding(Base):
    __tablename__ = "tenant_bindings"

    # "shared", "org:<id>" or "user:<id>"; doubles as the connection cache key.
    tenant_key: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_type: Mapped[str] = mapped_column(String)
    tenant_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    # shared_admin / per_user / per_org_hosted.
    backend_kind: Mapped[str] = mapped_column(String)
    # Stored discriminator for the handle variant; fixed when the binding is written.
    engine: Mapped[str] = mapped_column(String)
    # Null connection string means the tenant inherits the shared backend.
    connection_string: Mapped[str | None] = mapped_column(String, nullable=True)
    database_name: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class SoftDeletedRecord(Base):
    __tablename__ = "soft_deleted_entities"
    __table_args__ = (
        Index("ix_soft_deleted_parent", "parent_entity_type", "parent_entity_id"),
        Index("ix_soft_deleted_type_deleted_at", "entity_type", "deleted_at"),
    )

    # Ledger-assigned id, distinct from the original entity id.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    entity_type: Mapped[str] = mapped_column(String)
    entity_id: Mapped[str] = mapped_column(String, index=True)
    # Full snapshot; recovery reconstructs the document from this alone.
    entity_data: Mapped[dict[str, Any]] = mapped_column(JsonType)
    parent_entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
    parent_entity_type: Mapped[str | None] = mapped_column(String, nullable=True)
    deleted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    deleted_by: Mapped[str] = mapped_column(String)
    deleted_by_email: Mapped[str] = mapped_column(String, default="")
    reason: Mapped[str | None] = mapped_column(String, nullable=True)
    # Always deleted_at + RECOVERY_WINDOW; never extended.
    recovery_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    # Short recovery lease; not part of the record's content.
    claimed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class StoredDocument(Base):
    __tablename__ = "tf_documents"

    # Collection-scoped documents for SQL-backed tenant stores.
    collection: Mapped[str] = mapped_column(String, primary_key=True)
    id: Mapped[str] = mapped_column(String, primary_key=True)
    data: Mapped[dict[str, Any]] = mapped_column(JsonType)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class AuditEvent(Base):
    __tablename__ = "audit_events"

    # Use a monotonic numeric id for efficient pagination and ordering.
    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    # Organization or user tenant key the event belongs to, when known.
    tenant_key: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    actor_type: Mapped[str] = mapped_column(String)
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    outcome: Mapped[str] = mapped_column(String)
    resource_type: Mapped[str | None] = mapped_column(String, nullable=True)
    resource_id: Mapped[str | None] = mapped_column(String, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JsonType, default=dict)
    error_code: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
