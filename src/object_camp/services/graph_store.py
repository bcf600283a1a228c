"""Persistence collaborator for the subject/entity graph.

Every clustering and mutation operation reads and writes the graph through
a ``GraphStore`` bound to one ``AsyncSession``. Writes accumulate in the
session and become visible to other sessions only on ``commit()``, which
is called exactly once per operation. A failed commit rolls the whole
batch back, so no subject can end up pointing at an entity that was never
persisted.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from object_camp.errors import PersistenceError, TargetSpecNotFoundError
from object_camp.models.base import utcnow
from object_camp.models.entity import Entity
from object_camp.models.entity_evolution import EntityEvolution
from object_camp.models.enums import EntityEvolutionKind
from object_camp.models.subject import Subject
from object_camp.models.target_spec import TargetSpec

logger = logging.getLogger(__name__)


class GraphStore:
    """Query and write access to subjects, entities and their audit trail.

    Usage:
        async with async_session_factory() as session:
            store = GraphStore(session)
            pool = await store.fetch_eligible_subjects("doll")
            ...
            await store.commit()
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the store with a database session."""
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    # -------------------------------------------------------------------------
    # Target specs
    # -------------------------------------------------------------------------

    async def get_target_spec(self, spec_id: str) -> TargetSpec | None:
        return await self._session.get(TargetSpec, spec_id)

    async def require_target_spec(self, spec_id: str) -> TargetSpec:
        spec = await self.get_target_spec(spec_id)
        if spec is None:
            raise TargetSpecNotFoundError(spec_id)
        return spec

    async def add_target_spec(self, spec: TargetSpec) -> TargetSpec:
        self._session.add(spec)
        await self.flush()
        return spec

    # -------------------------------------------------------------------------
    # Subjects
    # -------------------------------------------------------------------------

    async def fetch_eligible_subjects(self, target_spec_id: str) -> list[Subject]:
        """Subjects clustering may consider, in extraction order.

        Eligible means: in this spec, not owned by an entity, not marked as
        non-target, and carrying a feature vector.
        """
        stmt = (
            select(Subject)
            .where(Subject.target_spec_id == target_spec_id)
            .where(Subject.entity_id.is_(None))
            .where(Subject.is_marked_as_non_target.is_(False))
            .where(Subject.feature_vector.is_not(None))
            .order_by(Subject.extracted_at, Subject.subject_id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_awaiting_vectors(self, target_spec_id: str) -> int:
        """Unclustered target subjects that cannot be clustered yet for lack of a vector."""
        stmt = (
            select(func.count())
            .select_from(Subject)
            .where(Subject.target_spec_id == target_spec_id)
            .where(Subject.entity_id.is_(None))
            .where(Subject.is_marked_as_non_target.is_(False))
            .where(Subject.feature_vector.is_(None))
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def get_subject(self, subject_id: UUID) -> Subject | None:
        return await self._session.get(Subject, subject_id)

    async def get_subjects(self, subject_ids: Sequence[UUID]) -> list[Subject]:
        """Load subjects, returned in the order of ``subject_ids``. Missing ids are skipped."""
        if not subject_ids:
            return []
        stmt = select(Subject).where(Subject.subject_id.in_(list(subject_ids)))
        result = await self._session.execute(stmt)
        by_id = {s.subject_id: s for s in result.scalars().all()}
        return [by_id[sid] for sid in subject_ids if sid in by_id]

    async def members(self, entity_id: UUID) -> list[Subject]:
        """Current members of an entity, in extraction order."""
        stmt = (
            select(Subject)
            .where(Subject.entity_id == entity_id)
            .order_by(Subject.extracted_at, Subject.subject_id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def unclustered(self, target_spec_id: str) -> list[Subject]:
        """Target subjects with no owning entity, vector or not."""
        stmt = (
            select(Subject)
            .where(Subject.target_spec_id == target_spec_id)
            .where(Subject.entity_id.is_(None))
            .where(Subject.is_marked_as_non_target.is_(False))
            .order_by(Subject.extracted_at, Subject.subject_id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    def add_subject(self, subject: Subject) -> Subject:
        self._session.add(subject)
        return subject

    def assign_entity(self, subject: Subject, entity_id: UUID | None) -> None:
        subject.entity_id = entity_id

    async def delete_subject(self, subject: Subject) -> None:
        subject.entity_id = None
        await self._session.delete(subject)

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    async def create_entity(self, target_spec_id: str, *, is_manually_created: bool) -> Entity:
        """Create an empty entity and flush it so members can reference it."""
        entity = Entity(
            entity_id=uuid4(),
            target_spec_id=target_spec_id,
            is_manually_created=is_manually_created,
            average_confidence=0.0,
        )
        self._session.add(entity)
        await self.flush()
        return entity

    async def get_entity(self, entity_id: UUID) -> Entity | None:
        return await self._session.get(Entity, entity_id)

    async def get_entities(self, entity_ids: Sequence[UUID]) -> list[Entity]:
        """Load entities, returned in the order of ``entity_ids``. Missing ids are skipped."""
        if not entity_ids:
            return []
        stmt = select(Entity).where(Entity.entity_id.in_(list(entity_ids)))
        result = await self._session.execute(stmt)
        by_id = {e.entity_id: e for e in result.scalars().all()}
        return [by_id[eid] for eid in entity_ids if eid in by_id]

    async def list_entities(self, target_spec_id: str) -> list[Entity]:
        stmt = (
            select(Entity)
            .where(Entity.target_spec_id == target_spec_id)
            .order_by(Entity.created_at, Entity.entity_id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def member_counts(self, entity_ids: Iterable[UUID]) -> dict[UUID, int]:
        ids = list(entity_ids)
        if not ids:
            return {}
        stmt = (
            select(Subject.entity_id, func.count())
            .where(Subject.entity_id.in_(ids))
            .group_by(Subject.entity_id)
        )
        result = await self._session.execute(stmt)
        counts: dict[UUID, int] = {eid: 0 for eid in ids}
        for entity_id, count in result.all():
            counts[entity_id] = int(count)
        return counts

    async def delete_entity(self, entity: Entity) -> None:
        await self._session.delete(entity)

    def update_aggregate(
        self,
        entity: Entity,
        *,
        average_confidence: float,
        cover_subject_id: UUID | None,
    ) -> None:
        entity.average_confidence = average_confidence
        entity.cover_subject_id = cover_subject_id
        entity.updated_at = utcnow()

    # -------------------------------------------------------------------------
    # Audit trail
    # -------------------------------------------------------------------------

    def record_evolution(
        self,
        *,
        kind: EntityEvolutionKind,
        target_spec_id: str,
        entity_id: UUID,
        algorithm_version: str,
        other_entity_id: UUID | None = None,
        subject_ids: Iterable[UUID] = (),
        threshold_used: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> EntityEvolution:
        evolution = EntityEvolution(
            evolution_id=uuid4(),
            target_spec_id=target_spec_id,
            kind=kind,
            entity_id=entity_id,
            other_entity_id=other_entity_id,
            subject_ids=[str(s) for s in subject_ids],
            algorithm_version=algorithm_version,
            threshold_used=threshold_used,
            details=details or {},
        )
        self._session.add(evolution)
        return evolution

    async def evolutions(self, entity_id: UUID) -> list[EntityEvolution]:
        stmt = (
            select(EntityEvolution)
            .where(
                (EntityEvolution.entity_id == entity_id)
                | (EntityEvolution.other_entity_id == entity_id)
            )
            .order_by(EntityEvolution.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Transaction boundary
    # -------------------------------------------------------------------------

    async def flush(self) -> None:
        """Write pending changes inside the open transaction.

        Raises:
            PersistenceError: The flush failed and the session was rolled back.
        """
        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            logger.error("[STORE] Flush failed, rolling back: %s", e)
            await self._session.rollback()
            raise PersistenceError(str(e)) from e

    async def commit(self) -> None:
        """Commit the pending batch, or roll all of it back.

        Raises:
            PersistenceError: The commit failed. The session has been rolled
                back and nothing from the batch is persisted.
        """
        try:
            await self._session.commit()
        except SQLAlchemyError as e:
            logger.error("[STORE] Commit failed, rolling back: %s", e)
            await self._session.rollback()
            raise PersistenceError(str(e)) from e
