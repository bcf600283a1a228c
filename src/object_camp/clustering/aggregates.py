"""Derived entity statistics.

An entity's ``average_confidence`` and ``cover_subject_id`` are functions
of its live membership. Every operation that changes membership calls
``AggregateMaintainer.refresh`` on each entity it touched, before commit.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from object_camp.models.entity import Entity
    from object_camp.models.subject import Subject
    from object_camp.services.graph_store import GraphStore


def average_confidence(confidences: Iterable[float]) -> float:
    """Arithmetic mean of member confidences, 0.0 for an empty membership."""
    values = list(confidences)
    if not values:
        return 0.0
    return sum(values) / len(values)


def choose_cover(
    members: Sequence[Subject],
    *,
    preferred: UUID | None = None,
    current: UUID | None = None,
) -> UUID | None:
    """Pick the cover subject among ``members``.

    The preferred subject wins if it is a member, then the current cover
    if it still is, then the first member. None for an empty entity.
    """
    member_ids = {s.subject_id for s in members}
    for candidate in (preferred, current):
        if candidate is not None and candidate in member_ids:
            return candidate
    return members[0].subject_id if members else None


class AggregateMaintainer:
    """Recomputes derived statistics of entities from their members."""

    def __init__(self, store: GraphStore) -> None:
        self._store = store

    async def refresh(self, entity: Entity, *, preferred_cover: UUID | None = None) -> list[Subject]:
        """Recompute ``entity``'s aggregate and return its current members."""
        members = await self._store.members(entity.entity_id)
        self._store.update_aggregate(
            entity,
            average_confidence=average_confidence(s.confidence for s in members),
            cover_subject_id=choose_cover(
                members, preferred=preferred_cover, current=entity.cover_subject_id
            ),
        )
        return members
