"""File-diverse selection of search results to surface as citations."""

from __future__ import annotations

from typing import Mapping, Sequence

from agent_sources.models.entities import SearchResultUnit

RELEVANCE_EPSILON = 1e-4


def group_by_file(units: Sequence[SearchResultUnit]) -> dict[str, list[SearchResultUnit]]:
    """Group units by file id, preserving first-encounter order of files and hits."""
    groups: dict[str, list[SearchResultUnit]] = {}
    for unit in units:
        groups.setdefault(unit.file_id, []).append(unit)
    return groups


def select_diverse(units: Sequence[SearchResultUnit], max_results: int = 10) -> list[SearchResultUnit]:
    """Pick at most `max_results` units, giving every file one slot before any file gets two.

    Each file's best hit (its representative) comes first, ordered by relevance.
    Remaining slots are filled from all hits by relevance, skipping hits that
    duplicate an already selected (file, page, relevance) triple.
    """
    if max_results <= 0 or not units:
        return []

    representatives = [max(group, key=lambda unit: unit.relevance) for group in group_by_file(units).values()]
    representatives.sort(key=lambda unit: unit.relevance, reverse=True)
    selected = representatives[:max_results]

    if len(selected) < max_results:
        for unit in sorted(units, key=lambda item: item.relevance, reverse=True):
            if len(selected) >= max_results:
                break
            if not any(_same_hit(unit, chosen) for chosen in selected):
                selected.append(unit)
    return selected


def _same_hit(left: SearchResultUnit, right: SearchResultUnit) -> bool:
    return (
        left.file_id == right.file_id
        and left.page == right.page
        and abs(left.relevance - right.relevance) < RELEVANCE_EPSILON
    )


def sort_pages_by_relevance(pages: Sequence[int], page_relevance: Mapping[int, float] | None) -> list[int]:
    """Order pages by their relevance, highest first. Display only; selection ignores it."""
    if not page_relevance:
        return list(pages)
    return sorted(pages, key=lambda page: page_relevance.get(page, 0.0), reverse=True)


__all__ = ["RELEVANCE_EPSILON", "group_by_file", "select_diverse", "sort_pages_by_relevance"]
