from __future__ import annotations

import pytest

from taskflow.services.column_matching import (
    AliasGroupStrategy,
    Column,
    ExactNameStrategy,
    FirstColumnFallback,
    load_project_columns,
    match_columns,
)
from taskflow.tests.utils.fakes import FakeBackends, host_organization, seed_board


TARGETS = [
    Column(id="t-backlog", name="Backlog", order=0),
    Column(id="t-wip", name="Doing", order=1),
    Column(id="t-qa", name="QA", order=2),
    Column(id="t-shipped", name="Completed", order=3),
]


def test_exact_name_wins_over_aliases() -> None:
    targets = TARGETS + [Column(id="t-todo", name="To Do", order=4)]
    mapping = match_columns([Column(id="s1", name="to do")], targets)
    assert mapping == {"s1": "t-todo"}


def test_alias_groups_match_related_names() -> None:
    source = [
        Column(id="s-todo", name="To Do"),
        Column(id="s-progress", name="In Progress"),
        Column(id="s-review", name="Code Review"),
        Column(id="s-done", name="Done"),
    ]

    mapping = match_columns(source, TARGETS)

    assert mapping == {
        "s-todo": "t-backlog",
        "s-progress": "t-wip",
        "s-review": "t-qa",
        "s-done": "t-shipped",
    }


def test_unknown_names_fall_back_to_first_column() -> None:
    mapping = match_columns([Column(id="s-x", name="Icebox")], list(reversed(TARGETS)))
    assert mapping == {"s-x": "t-backlog"}


def test_source_columns_may_share_a_target() -> None:
    mapping = match_columns([Column(id="a", name="Done"), Column(id="b", name="Closed")], TARGETS)
    assert mapping == {"a": "t-shipped", "b": "t-shipped"}


def test_without_fallback_unmatched_columns_are_left_out() -> None:
    mapping = match_columns(
        [Column(id="s-x", name="Icebox"), Column(id="s-done", name="finished")],
        TARGETS,
        strategies=[ExactNameStrategy(), AliasGroupStrategy()],
    )
    assert mapping == {"s-done": "t-shipped"}


def test_fallback_with_no_targets_matches_nothing() -> None:
    assert FirstColumnFallback().match(Column(id="s", name="Todo"), []) is None
    assert match_columns([Column(id="s", name="Todo")], []) == {}


@pytest.mark.asyncio
async def test_load_project_columns_reads_target_board(services, backends: FakeBackends) -> None:
    await host_organization(services.resolver)
    seed_board(backends)

    columns = await load_project_columns(services.resolver, "P1", organization_id="org-1", user_id="u-1")

    assert [column.id for column in columns] == ["col-todo", "col-doing", "col-done"]
    mapping = match_columns([Column(id="src", name="Doing")], columns)
    assert mapping == {"src": "col-doing"}
