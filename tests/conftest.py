"""Shared pytest fixtures for ObjectCamp tests."""

from __future__ import annotations

import itertools
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from object_camp.clustering.aggregates import average_confidence
from object_camp.db import create_schema
from object_camp.models import Entity, ExtractionMethod, Subject, TargetSpec

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


# In-memory SQLite shared by every connection of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh in-memory database with all tables for one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for one test. Services under test commit through it."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def doll_spec(db_session: AsyncSession) -> TargetSpec:
    spec = TargetSpec(spec_id="doll", display_name="Doll", target_description="toy doll")
    db_session.add(spec)
    await db_session.commit()
    return spec


@pytest.fixture
async def car_spec(db_session: AsyncSession) -> TargetSpec:
    spec = TargetSpec(spec_id="car", display_name="Car", target_description="toy car")
    db_session.add(spec)
    await db_session.commit()
    return spec


# Type aliases for factory fixtures
MakeSubject = Callable[..., Subject]
SeedEntity = Callable[..., Awaitable[tuple[Entity, list[Subject]]]]
CheckGraph = Callable[[], Awaitable[None]]


@pytest.fixture
def make_subject() -> MakeSubject:
    """Factory fixture for creating Subject instances.

    Each subject is extracted one second after the previous one, so pool
    order equals creation order.
    """
    base = datetime(2024, 1, 1, tzinfo=UTC)
    counter = itertools.count()

    def _make(
        *,
        spec_id: str = "doll",
        confidence: float = 0.9,
        feature_vector: Sequence[float] | None = (1.0, 0.0, 0.0),
        entity_id: UUID | None = None,
        is_marked_as_non_target: bool = False,
        extraction_method: ExtractionMethod = ExtractionMethod.AUTOMATIC,
        subject_id: UUID | None = None,
    ) -> Subject:
        n = next(counter)
        sid = subject_id or uuid4()
        return Subject(
            subject_id=sid,
            target_spec_id=spec_id,
            source_image_id=f"asset-{n}",
            sticker_path=f"{spec_id}/subjects/{sid}.png",
            thumbnail_path=f"{spec_id}/thumbnails/{sid}.png",
            bounding_box={"x": 0.0, "y": 0.0, "width": 10.0, "height": 10.0},
            confidence=confidence,
            feature_vector=list(feature_vector) if feature_vector is not None else None,
            entity_id=entity_id,
            is_marked_as_non_target=is_marked_as_non_target,
            extraction_method=extraction_method,
            needs_review=False,
            extracted_at=base + timedelta(seconds=n),
        )

    return _make


@pytest.fixture
def seed_entity(db_session: AsyncSession, make_subject: MakeSubject) -> SeedEntity:
    """Create and commit an entity whose members have the given confidences."""

    async def _seed(
        confidences: Sequence[float],
        *,
        spec_id: str = "doll",
        is_manually_created: bool = False,
    ) -> tuple[Entity, list[Subject]]:
        entity = Entity(
            entity_id=uuid4(),
            target_spec_id=spec_id,
            is_manually_created=is_manually_created,
            average_confidence=0.0,
        )
        db_session.add(entity)
        await db_session.flush()

        subjects = [
            make_subject(spec_id=spec_id, confidence=c, entity_id=entity.entity_id)
            for c in confidences
        ]
        db_session.add_all(subjects)
        entity.average_confidence = average_confidence(confidences)
        entity.cover_subject_id = subjects[0].subject_id if subjects else None
        await db_session.commit()
        return entity, subjects

    return _seed


@pytest.fixture
def check_graph(db_session: AsyncSession) -> CheckGraph:
    """Assert the partition invariants over everything in the database.

    - every subject points at nothing or at one live entity
    - non-target subjects point at nothing
    - every entity has at least one member
    - average confidence is the member mean, the cover is a member
    """

    async def _check() -> None:
        subjects = list((await db_session.execute(select(Subject))).scalars().all())
        entities = list((await db_session.execute(select(Entity))).scalars().all())
        entity_ids = {e.entity_id for e in entities}

        members: dict[UUID, list[Subject]] = {eid: [] for eid in entity_ids}
        for s in subjects:
            if s.entity_id is None:
                continue
            assert s.entity_id in entity_ids, f"{s.subject_id} points at missing entity"
            assert not s.is_marked_as_non_target, f"non-target {s.subject_id} has an entity"
            members[s.entity_id].append(s)

        for e in entities:
            owned = members[e.entity_id]
            assert owned, f"entity {e.entity_id} has no members"
            assert e.average_confidence == pytest.approx(
                sum(s.confidence for s in owned) / len(owned)
            )
            assert e.cover_subject_id in {s.subject_id for s in owned}
            assert {s.target_spec_id for s in owned} == {e.target_spec_id}

    return _check

