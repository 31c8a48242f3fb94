from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskflow.domain.models import AuditEvent


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["connection_string", "password", "secret", "token", "authorization"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub credentials (tenant connection strings in particular) before persisting.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


async def record_event(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    event_type: str,
    outcome: str,
    actor_type: str = "user",
    actor_id: str | None = None,
    tenant_key: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    request_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
    occurred_at: datetime | None = None,
) -> None:
    # Best-effort: an audit write failure is logged and never breaks the calling flow.
    event = AuditEvent(
        occurred_at=occurred_at or datetime.now(timezone.utc),
        tenant_key=tenant_key,
        actor_type=actor_type,
        actor_id=actor_id,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=request_id,
        metadata_json=sanitize_metadata(metadata or {}),
        error_code=error_code,
    )
    async with session_factory() as session:
        try:
            session.add(event)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning(
                "audit_event_write_failed event_type=%s resource_id=%s",
                event_type,
                resource_id,
                exc_info=exc,
            )
