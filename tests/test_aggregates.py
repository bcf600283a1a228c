"""Tests for entity aggregate maintenance."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from object_camp.clustering.aggregates import AggregateMaintainer, average_confidence, choose_cover
from object_camp.models import TargetSpec
from object_camp.services.graph_store import GraphStore

if TYPE_CHECKING:
    from conftest import MakeSubject, SeedEntity


class TestAverageConfidence:
    def test_mean(self) -> None:
        assert average_confidence([0.9, 0.8, 0.3]) == pytest.approx(2.0 / 3.0)

    def test_empty(self) -> None:
        assert average_confidence([]) == 0.0

    def test_generator(self) -> None:
        assert average_confidence(c for c in (0.5, 1.0)) == pytest.approx(0.75)


class TestChooseCover:
    def test_preferred_member_wins(self, make_subject: MakeSubject) -> None:
        a, b, c = make_subject(), make_subject(), make_subject()
        cover = choose_cover([a, b, c], preferred=c.subject_id, current=b.subject_id)
        assert cover == c.subject_id

    def test_current_kept_when_still_member(self, make_subject: MakeSubject) -> None:
        a, b = make_subject(), make_subject()
        assert choose_cover([a, b], current=b.subject_id) == b.subject_id

    def test_falls_back_to_first_member(self, make_subject: MakeSubject) -> None:
        a, b = make_subject(), make_subject()
        cover = choose_cover([a, b], preferred=uuid4(), current=uuid4())
        assert cover == a.subject_id

    def test_empty_membership(self) -> None:
        assert choose_cover([], preferred=uuid4()) is None


class TestAggregateMaintainer:
    async def test_refresh_recomputes_after_member_leaves(
        self,
        db_session: AsyncSession,
        doll_spec: TargetSpec,
        seed_entity: SeedEntity,
    ) -> None:
        entity, subjects = await seed_entity([0.9, 0.6, 0.3])
        subjects[0].entity_id = None  # cover leaves

        store = GraphStore(db_session)
        members = await AggregateMaintainer(store).refresh(entity)

        assert [s.subject_id for s in members] == [s.subject_id for s in subjects[1:]]
        assert entity.average_confidence == pytest.approx(0.45)
        assert entity.cover_subject_id == subjects[1].subject_id

    async def test_refresh_keeps_current_cover(
        self,
        db_session: AsyncSession,
        doll_spec: TargetSpec,
        seed_entity: SeedEntity,
    ) -> None:
        entity, subjects = await seed_entity([0.9, 0.6])
        entity.cover_subject_id = subjects[1].subject_id

        await AggregateMaintainer(GraphStore(db_session)).refresh(entity)

        assert entity.cover_subject_id == subjects[1].subject_id

    async def test_refresh_empty_entity(
        self,
        db_session: AsyncSession,
        doll_spec: TargetSpec,
        seed_entity: SeedEntity,
    ) -> None:
        entity, subjects = await seed_entity([0.5])
        subjects[0].entity_id = None

        members = await AggregateMaintainer(GraphStore(db_session)).refresh(entity)

        assert members == []
        assert entity.average_confidence == 0.0
        assert entity.cover_subject_id is None
