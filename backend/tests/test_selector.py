"""Tests for file-diverse citation selection."""

from agent_sources.citations.selector import group_by_file, select_diverse, sort_pages_by_relevance
from agent_sources.models.entities import SearchResultUnit


def _unit(file_id: str, relevance: float, page: int | None = None) -> SearchResultUnit:
    return SearchResultUnit(file_id=file_id, file_name=f"{file_id}.pdf", relevance=relevance, page=page)


def test_every_file_gets_a_slot_before_any_file_gets_two() -> None:
    units = [_unit("f1", 0.9, 1), _unit("f1", 0.85, 2), _unit("f1", 0.8, 3), _unit("f2", 0.3, 1), _unit("f3", 0.2, 1)]
    selected = select_diverse(units, max_results=3)
    assert [unit.file_id for unit in selected] == ["f1", "f2", "f3"]


def test_remaining_slots_filled_by_relevance_without_duplicates() -> None:
    units = [_unit("f1", 0.9, 2), _unit("f1", 0.6, 5), _unit("f2", 0.8, 1), _unit("f1", 0.9, 2)]
    selected = select_diverse(units, max_results=10)
    assert [(unit.file_id, unit.page) for unit in selected] == [("f1", 2), ("f2", 1), ("f1", 5)]


def test_max_results_caps_representatives() -> None:
    units = [_unit("f1", 0.9, 2), _unit("f1", 0.6, 5), _unit("f2", 0.8, 1)]
    selected = select_diverse(units, max_results=2)
    assert [(unit.file_id, unit.page) for unit in selected] == [("f1", 2), ("f2", 1)]
    assert select_diverse(units, max_results=0) == []
    assert select_diverse([], max_results=5) == []


def test_group_by_file_preserves_first_seen_order() -> None:
    groups = group_by_file([_unit("b", 0.1), _unit("a", 0.2), _unit("b", 0.3)])
    assert list(groups) == ["b", "a"]
    assert [unit.relevance for unit in groups["b"]] == [0.1, 0.3]


def test_sort_pages_by_relevance() -> None:
    assert sort_pages_by_relevance([1, 2, 5], {1: 0.2, 2: 0.9, 5: 0.6}) == [2, 5, 1]
    assert sort_pages_by_relevance([3, 1], None) == [3, 1]
