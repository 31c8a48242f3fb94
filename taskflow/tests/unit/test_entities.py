from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from taskflow.core.errors import (
    BackendUnavailableError,
    ExpiredError,
    NotFoundError,
    ResolutionError,
    TooManyItemsError,
    error_code_for,
)
from taskflow.domain.entities import (
    BulkActionResult,
    BulkActionSummary,
    SoftDeletedEntity,
    ensure_utc,
    placement_for,
)
from taskflow.tests.utils.fakes import T0


def _entity(deadline: datetime) -> SoftDeletedEntity:
    return SoftDeletedEntity(
        id="rec-1",
        entity_type="task",
        entity_id="T1",
        entity_data={"id": "T1"},
        deleted_at=deadline - timedelta(hours=24),
        deleted_by="u-1",
        deleted_by_email="",
        recovery_deadline=deadline,
    )


def test_status_is_derived_from_the_clock() -> None:
    entity = _entity(T0)
    assert entity.status(T0 - timedelta(seconds=1)) == "recoverable"
    assert entity.status(T0) == "recoverable"
    assert entity.status(T0 + timedelta(seconds=1)) == "expired"


def test_placements_separate_canonical_and_tenant_records() -> None:
    assert placement_for("project").scope == "shared"
    assert placement_for("organization").scope == "shared"
    assert placement_for("task").collection == "tasks"
    assert placement_for("team_member").parent_field == "organizationId"
    with pytest.raises(ValueError):
        placement_for("comment")


def test_naive_timestamps_are_read_as_utc() -> None:
    naive = datetime(2026, 3, 2, 9, 0)
    assert ensure_utc(naive) == T0
    shifted = datetime(2026, 3, 2, 10, 0, tzinfo=timezone(timedelta(hours=1)))
    assert ensure_utc(shifted) == T0


def test_error_codes_are_stable() -> None:
    assert error_code_for(ResolutionError("T1", ["shared"])) == "RESOLUTION_FAILED"
    assert error_code_for(ExpiredError("rec-1", T0)) == "RECOVERY_EXPIRED"
    assert error_code_for(NotFoundError("task", "T1")) == "NOT_FOUND"
    assert error_code_for(TooManyItemsError("delete", 51, 50)) == "TOO_MANY_ITEMS"
    assert error_code_for(BackendUnavailableError("down")) == "BACKEND_UNAVAILABLE"
    assert error_code_for(RuntimeError("boom")) == "INTERNAL_ERROR"


def test_bulk_summary_counts_results() -> None:
    results = [
        BulkActionResult.ok("a"),
        BulkActionResult.failure("b", NotFoundError("task", "b")),
        BulkActionResult.failure("c", RuntimeError()),
    ]

    summary = BulkActionSummary.from_results(results)

    assert (summary.total, summary.succeeded, summary.failed) == (3, 1, 2)
    assert summary.results[1].error == "task b not found"
    assert summary.results[2].error == "RuntimeError"
    assert summary.results[2].error_code == "INTERNAL_ERROR"
