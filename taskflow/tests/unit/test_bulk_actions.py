from __future__ import annotations

import pytest

from taskflow.core.config import Settings
from taskflow.core.errors import BulkActionValidationError, NotFoundError, TooManyItemsError
from taskflow.domain.entities import Actor, DeletedItemFilters
from taskflow.persistence.repos import audit as audit_repo
from taskflow.services.bulk_actions import BulkAction, batch_limit, validate_action
from taskflow.tests.utils.fakes import FakeBackends, host_organization, seed_board


ACTOR = Actor(id="u-1", email="ada@example.com")


def _action(action_type: str, ids: list[str], **kwargs) -> BulkAction:
    kwargs.setdefault("organization_id", "org-1")
    kwargs.setdefault("project_id", "P1")
    return BulkAction(type=action_type, target_ids=ids, **kwargs)


@pytest.fixture
async def board(services, backends: FakeBackends):
    await host_organization(services.resolver)
    return seed_board(backends, task_count=7)


def test_batch_limits_depend_on_action_weight() -> None:
    settings = Settings()
    assert batch_limit("delete", settings) == 50
    assert batch_limit("recover", settings) == 50
    assert batch_limit("permanent_delete", settings) == 50
    assert batch_limit("update_status", settings) == 100
    assert batch_limit("move", settings) == 100


@pytest.mark.asyncio
async def test_oversized_delete_is_rejected_before_any_work(services, board) -> None:
    ids = [f"T{index}" for index in range(1, 52)]

    with pytest.raises(TooManyItemsError) as excinfo:
        await services.bulk_actions.execute(_action("delete", ids), ACTOR)

    assert excinfo.value.limit == 50
    assert excinfo.value.count == 51
    assert len(board.documents("tasks")) == 7
    assert await services.soft_delete.list_deleted(DeletedItemFilters(include_expired=True)) == []


def test_oversized_light_action_is_rejected() -> None:
    ids = [f"T{index}" for index in range(101)]
    with pytest.raises(TooManyItemsError):
        validate_action(_action("update_status", ids, status="done"), Settings())
    validate_action(_action("update_status", ids[:100], status="done"), Settings())


@pytest.mark.parametrize(
    ("action", "message"),
    [
        (_action("delete", []), "empty"),
        (_action("delete", ["T1", ""]), "empty ids"),
        (_action("delete", ["T1", "T1"]), "duplicates"),
        (_action("move", ["T1"]), "column_id"),
        (_action("assign", ["T1"]), "assignee_id"),
        (_action("update_status", ["T1"]), "status"),
        (_action("change_role", ["m-1"], entity_type="team_member"), "role"),
        (_action("change_role", ["T1"], role="admin"), "team members only"),
        (_action("move", ["col-todo"], entity_type="column", column_id="col-done"), "tasks only"),
    ],
)
def test_inconsistent_actions_are_rejected(action: BulkAction, message: str) -> None:
    with pytest.raises(BulkActionValidationError) as excinfo:
        validate_action(action, Settings())
    assert message in str(excinfo.value)


@pytest.mark.asyncio
async def test_partial_failure_reports_each_item_in_input_order(services, board, session_factory) -> None:
    ids = ["T1", "X1", "T2", "T3", "X2", "T4", "T5", "X3", "T6", "T7"]

    summary = await services.bulk_actions.execute(_action("delete", ids, reason="cleanup"), ACTOR)

    assert (summary.total, summary.succeeded, summary.failed) == (10, 7, 3)
    assert [result.id for result in summary.results] == ids
    assert [result.id for result in summary.results if not result.success] == ["X1", "X2", "X3"]
    assert all(result.error_code == "NOT_FOUND" for result in summary.results if not result.success)
    assert board.documents("tasks") == {}
    deleted = await services.soft_delete.list_deleted()
    assert len(deleted) == 7
    assert {item.reason for item in deleted} == {"cleanup"}

    async with session_factory() as session:
        events = await audit_repo.list_events(session, event_type="bulk_action.executed")
    assert events[0].outcome == "partial"
    assert events[0].metadata_json["failed_ids"] == ["X1", "X2", "X3"]


@pytest.mark.asyncio
async def test_update_status_sets_field_on_every_task(services, board) -> None:
    summary = await services.bulk_actions.execute(_action("update_status", ["T1", "T2"], status="done"), ACTOR)

    assert summary.succeeded == 2
    tasks = board.documents("tasks")
    assert tasks["T1"]["status"] == "done"
    assert tasks["T2"]["status"] == "done"
    assert tasks["T3"]["status"] == "todo"


@pytest.mark.asyncio
async def test_assign_reports_missing_tasks(services, board) -> None:
    summary = await services.bulk_actions.execute(_action("assign", ["T1", "T99"], assignee_id="u-2"), ACTOR)

    assert [result.success for result in summary.results] == [True, False]
    assert board.documents("tasks")["T1"]["assigneeId"] == "u-2"


@pytest.mark.asyncio
async def test_move_checks_target_column_once(services, board) -> None:
    summary = await services.bulk_actions.execute(_action("move", ["T1", "T2"], column_id="col-done"), ACTOR)

    assert summary.succeeded == 2
    assert board.documents("tasks")["T1"]["columnId"] == "col-done"


@pytest.mark.asyncio
async def test_move_to_missing_column_fails_whole_batch(services, board) -> None:
    with pytest.raises(NotFoundError):
        await services.bulk_actions.execute(_action("move", ["T1", "T2"], column_id="col-gone"), ACTOR)
    assert board.documents("tasks")["T1"]["columnId"] == "col-todo"


@pytest.mark.asyncio
async def test_move_to_column_of_other_project_is_rejected(services, board) -> None:
    board.load({"columns": {"col-x": {"id": "col-x", "name": "Elsewhere", "order": 0, "projectId": "P9"}}})

    with pytest.raises(BulkActionValidationError):
        await services.bulk_actions.execute(_action("move", ["T1"], column_id="col-x"), ACTOR)
    assert board.documents("tasks")["T1"]["columnId"] == "col-todo"


@pytest.mark.asyncio
async def test_change_role_updates_team_members(services, board) -> None:
    action = _action("change_role", ["m-1"], entity_type="team_member", role="admin", project_id=None)

    summary = await services.bulk_actions.execute(action, ACTOR)

    assert summary.succeeded == 1
    assert board.documents("team_members")["m-1"]["role"] == "admin"


@pytest.mark.asyncio
async def test_bulk_recover_and_permanent_delete(services, board) -> None:
    await services.bulk_actions.execute(_action("delete", ["T1", "T2", "T3"]), ACTOR)
    records = {item.entity_id: item.id for item in await services.soft_delete.list_deleted()}

    recovered = await services.bulk_actions.execute(_action("recover", [records["T1"], records["T2"]]), ACTOR)
    purged = await services.bulk_actions.execute(_action("permanent_delete", [records["T3"]]), ACTOR)

    assert recovered.succeeded == 2
    assert purged.succeeded == 1
    assert set(board.documents("tasks")) == {"T1", "T2", "T4", "T5", "T6", "T7"}
    assert await services.soft_delete.list_deleted(DeletedItemFilters(include_expired=True)) == []
