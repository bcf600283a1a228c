"""User-driven structural edits of the entity graph.

Merge, split and move reassign subjects between entities of one target
spec. Delete, exclude, set-cover and rename cover the remaining edits the
entity library offers. Every operation follows the same discipline:

1. Validate all inputs. An ``InputError`` means nothing was written.
2. Reassign memberships and flush them before any entity is deleted, so
   no subject is ever owned by two entities or by a deleted one.
3. Refresh the aggregates of every entity that gained or lost members.
4. Delete entities left without members.
5. Commit once. A ``PersistenceError`` means nothing was persisted.

All operations record an ``EntityEvolution`` row for the audit trail.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from uuid import UUID

from object_camp.clustering.aggregates import AggregateMaintainer
from object_camp.errors import (
    CrossSpecError,
    EmptySelectionError,
    EntityNotFoundError,
    InputError,
    InsufficientEntitiesError,
    MembershipError,
    SubjectNotFoundError,
)
from object_camp.models.base import utcnow
from object_camp.models.entity import Entity
from object_camp.models.enums import EntityEvolutionKind
from object_camp.models.subject import Subject
from object_camp.services.graph_store import GraphStore

logger = logging.getLogger(__name__)

# Algorithm version for audit trail
ALGORITHM_VERSION = "entity-mutation-v1.0"


@dataclass
class MergeResult:
    """Result of a merge operation."""

    entity: Entity
    """The surviving entity."""

    absorbed_entity_ids: list[UUID]
    subjects_moved: int = 0
    member_count: int = 0


@dataclass
class SplitResult:
    """Result of a split operation."""

    source_entity_id: UUID
    new_entity: Entity
    subjects_moved: int = 0
    source_deleted: bool = False
    """True when every member was extracted and the source was deleted."""


@dataclass
class MoveResult:
    """Result of a move operation."""

    source_entity_id: UUID
    target_entity: Entity
    created_target: bool = False
    subjects_moved: int = 0
    source_deleted: bool = False


@dataclass
class DeleteSubjectResult:
    """Result of deleting a subject."""

    subject_id: UUID
    entity_id: UUID | None = None
    entity_deleted: bool = False
    released_paths: list[str] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    """Sticker/thumbnail blob keys the caller may now remove."""


@dataclass
class DeleteEntitiesResult:
    """Result of deleting entities."""

    deleted_entity_ids: list[UUID]
    excluded_subject_ids: list[UUID]
    """Former members, now marked as non-target."""


@dataclass
class ExcludeResult:
    """Result of marking subjects as non-target."""

    excluded_subject_ids: list[UUID]
    refreshed_entity_ids: list[UUID] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    deleted_entity_ids: list[UUID] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]


def _unique(ids: Sequence[UUID]) -> list[UUID]:
    """Drop repeated ids, keeping first-seen order."""
    return list(dict.fromkeys(ids))


class EntityMutationService:
    """Merge, split, move and delete operations on entities.

    Usage:
        async with async_session_factory() as session:
            service = EntityMutationService(GraphStore(session))
            result = await service.merge([entity_a.entity_id, entity_b.entity_id])
    """

    def __init__(self, store: GraphStore) -> None:
        """Initialize with a graph store."""
        self._store = store
        self._aggregates = AggregateMaintainer(store)

    # -------------------------------------------------------------------------
    # MERGE
    # -------------------------------------------------------------------------

    async def merge(self, entity_ids: Sequence[UUID]) -> MergeResult:
        """Fold several entities into the first one.

        Every subject of the other entities is reassigned to the survivor,
        then the other entities are deleted. The survivor is marked as
        manually created and its aggregate recomputed.

        Raises:
            InsufficientEntitiesError: Fewer than two distinct entities.
            EntityNotFoundError: An id does not exist.
            CrossSpecError: The entities belong to different target specs.
            PersistenceError: The commit failed.
        """
        ids = _unique(entity_ids)
        if len(ids) < 2:
            raise InsufficientEntitiesError(len(ids))

        entities = await self._require_entities(ids)
        self._require_same_spec(entities)
        survivor, absorbed = entities[0], entities[1:]
        absorbed_ids = [e.entity_id for e in absorbed]

        moved_by_entity: dict[UUID, list[UUID]] = {}
        for other in absorbed:
            members = await self._store.members(other.entity_id)
            for subject in members:
                self._store.assign_entity(subject, survivor.entity_id)
            moved_by_entity[other.entity_id] = [s.subject_id for s in members]

        # Reassignment lands before any deletion
        await self._store.flush()

        for other in absorbed:
            self._store.record_evolution(
                kind=EntityEvolutionKind.MERGE,
                target_spec_id=survivor.target_spec_id,
                entity_id=survivor.entity_id,
                other_entity_id=other.entity_id,
                subject_ids=moved_by_entity[other.entity_id],
                algorithm_version=ALGORITHM_VERSION,
            )
            await self._store.delete_entity(other)

        survivor.is_manually_created = True
        members = await self._aggregates.refresh(survivor)

        await self._store.commit()

        moved = sum(len(v) for v in moved_by_entity.values())
        logger.info(
            "[MERGE] %d entities into %s: %d subject(s) moved, %d member(s) now",
            len(absorbed), survivor.entity_id, moved, len(members),
        )
        return MergeResult(
            entity=survivor,
            absorbed_entity_ids=absorbed_ids,
            subjects_moved=moved,
            member_count=len(members),
        )

    # -------------------------------------------------------------------------
    # SPLIT
    # -------------------------------------------------------------------------

    async def split(self, entity_id: UUID, subject_ids: Sequence[UUID]) -> SplitResult:
        """Extract some members of an entity into a new entity.

        The new entity is manually created, lives in the same target spec
        and uses the first extracted subject as its cover. Extracting every
        member leaves the source empty, so it is deleted.

        Raises:
            EmptySelectionError: No subjects given.
            EntityNotFoundError: The entity does not exist.
            SubjectNotFoundError: A subject id does not exist.
            MembershipError: A subject is not a member of the entity.
            PersistenceError: The commit failed.
        """
        ids = _unique(subject_ids)
        if not ids:
            raise EmptySelectionError("Split needs at least one subject to extract")

        source = await self._require_entity(entity_id)
        subjects = await self._require_members(source, ids)

        new_entity = await self._store.create_entity(
            source.target_spec_id, is_manually_created=True
        )
        for subject in subjects:
            self._store.assign_entity(subject, new_entity.entity_id)

        await self._aggregates.refresh(new_entity, preferred_cover=subjects[0].subject_id)
        self._store.record_evolution(
            kind=EntityEvolutionKind.SPLIT,
            target_spec_id=source.target_spec_id,
            entity_id=new_entity.entity_id,
            other_entity_id=source.entity_id,
            subject_ids=ids,
            algorithm_version=ALGORITHM_VERSION,
        )
        source_deleted = await self._refresh_or_delete(source)

        await self._store.commit()

        logger.info(
            "[SPLIT] %d subject(s) from %s into new entity %s%s",
            len(subjects), entity_id, new_entity.entity_id,
            " (source emptied and deleted)" if source_deleted else "",
        )
        return SplitResult(
            source_entity_id=entity_id,
            new_entity=new_entity,
            subjects_moved=len(subjects),
            source_deleted=source_deleted,
        )

    # -------------------------------------------------------------------------
    # MOVE
    # -------------------------------------------------------------------------

    async def move_subjects(
        self,
        subject_ids: Sequence[UUID],
        source_entity_id: UUID,
        target_entity_id: UUID | None = None,
    ) -> MoveResult:
        """Move subjects from one entity to another, or to a new entity.

        With ``target_entity_id=None`` a manually created entity is made in
        the source's target spec, with the first moved subject as cover.
        The source is deleted if the move empties it.

        Raises:
            EmptySelectionError: No subjects given.
            InputError: Source and target are the same entity.
            EntityNotFoundError: Source or target does not exist.
            CrossSpecError: Target is in another target spec.
            SubjectNotFoundError / MembershipError: A subject is not a
                member of the source.
            PersistenceError: The commit failed.
        """
        ids = _unique(subject_ids)
        if not ids:
            raise EmptySelectionError("Move needs at least one subject")
        if target_entity_id is not None and target_entity_id == source_entity_id:
            raise InputError("Source and target entity are the same")

        source = await self._require_entity(source_entity_id)
        subjects = await self._require_members(source, ids)

        preferred_cover: UUID | None = None
        if target_entity_id is None:
            target = await self._store.create_entity(
                source.target_spec_id, is_manually_created=True
            )
            preferred_cover = subjects[0].subject_id
        else:
            target = await self._require_entity(target_entity_id)
            self._require_same_spec([source, target])

        for subject in subjects:
            self._store.assign_entity(subject, target.entity_id)

        await self._aggregates.refresh(target, preferred_cover=preferred_cover)
        self._store.record_evolution(
            kind=EntityEvolutionKind.MOVE,
            target_spec_id=source.target_spec_id,
            entity_id=target.entity_id,
            other_entity_id=source.entity_id,
            subject_ids=ids,
            algorithm_version=ALGORITHM_VERSION,
            details={"created_target": target_entity_id is None},
        )
        source_deleted = await self._refresh_or_delete(source)

        await self._store.commit()

        logger.info(
            "[MOVE] %d subject(s) from %s to %s%s",
            len(subjects), source_entity_id, target.entity_id,
            " (source emptied and deleted)" if source_deleted else "",
        )
        return MoveResult(
            source_entity_id=source_entity_id,
            target_entity=target,
            created_target=target_entity_id is None,
            subjects_moved=len(subjects),
            source_deleted=source_deleted,
        )

    # -------------------------------------------------------------------------
    # DELETE / EXCLUDE
    # -------------------------------------------------------------------------

    async def delete_subject(self, subject_id: UUID) -> DeleteSubjectResult:
        """Delete a subject, detaching it from its entity first.

        The former entity is refreshed, or deleted if this was its last
        member. Blob cleanup is left to the caller via ``released_paths``.
        """
        subject = await self._store.get_subject(subject_id)
        if subject is None:
            raise SubjectNotFoundError(subject_id)

        entity_id = subject.entity_id
        released = [p for p in (subject.sticker_path, subject.thumbnail_path) if p]
        await self._store.delete_subject(subject)

        entity_deleted = False
        if entity_id is not None:
            entity = await self._store.get_entity(entity_id)
            if entity is not None:
                entity_deleted = await self._refresh_or_delete(entity)

        await self._store.commit()

        logger.info("[DELETE] Subject %s removed", subject_id)
        return DeleteSubjectResult(
            subject_id=subject_id,
            entity_id=entity_id,
            entity_deleted=entity_deleted,
            released_paths=released,
        )

    async def delete_entities(self, entity_ids: Sequence[UUID]) -> DeleteEntitiesResult:
        """Delete entities. Their members are marked as non-target.

        A user deleting an entity is saying "this is not what I am
        collecting", so former members must not be re-clustered.
        """
        ids = _unique(entity_ids)
        if not ids:
            raise EmptySelectionError("Delete needs at least one entity")

        entities = await self._require_entities(ids)
        excluded: list[UUID] = []
        for entity in entities:
            members = await self._store.members(entity.entity_id)
            for subject in members:
                subject.is_marked_as_non_target = True
                self._store.assign_entity(subject, None)
            excluded.extend(s.subject_id for s in members)

        await self._store.flush()

        for entity in entities:
            self._store.record_evolution(
                kind=EntityEvolutionKind.DELETE,
                target_spec_id=entity.target_spec_id,
                entity_id=entity.entity_id,
                algorithm_version=ALGORITHM_VERSION,
                details={"reason": "user_deleted"},
            )
            await self._store.delete_entity(entity)

        await self._store.commit()

        logger.info(
            "[DELETE] %d entit%s removed, %d subject(s) marked non-target",
            len(entities), "y" if len(entities) == 1 else "ies", len(excluded),
        )
        return DeleteEntitiesResult(deleted_entity_ids=ids, excluded_subject_ids=excluded)

    async def exclude_subjects(self, subject_ids: Sequence[UUID]) -> ExcludeResult:
        """Mark subjects as non-target and take them out of their entities."""
        ids = _unique(subject_ids)
        if not ids:
            raise EmptySelectionError("Exclude needs at least one subject")

        subjects = await self._require_subjects(ids)
        affected: list[UUID] = []
        for subject in subjects:
            if subject.entity_id is not None and subject.entity_id not in affected:
                affected.append(subject.entity_id)
            subject.is_marked_as_non_target = True
            self._store.assign_entity(subject, None)

        refreshed: list[UUID] = []
        deleted: list[UUID] = []
        for entity in await self._store.get_entities(affected):
            if await self._refresh_or_delete(entity):
                deleted.append(entity.entity_id)
            else:
                refreshed.append(entity.entity_id)

        await self._store.commit()

        logger.info("[EXCLUDE] %d subject(s) marked non-target", len(subjects))
        return ExcludeResult(
            excluded_subject_ids=ids,
            refreshed_entity_ids=refreshed,
            deleted_entity_ids=deleted,
        )

    # -------------------------------------------------------------------------
    # PROFILE EDITS
    # -------------------------------------------------------------------------

    async def set_cover_subject(self, entity_id: UUID, subject_id: UUID) -> Entity:
        entity = await self._require_entity(entity_id)
        subjects = await self._require_members(entity, [subject_id])
        entity.cover_subject_id = subjects[0].subject_id
        entity.updated_at = utcnow()
        await self._store.commit()
        return entity

    async def rename_entity(self, entity_id: UUID, name: str | None) -> Entity:
        """Set the display name. Blank names clear it."""
        entity = await self._require_entity(entity_id)
        cleaned = (name or "").strip()
        entity.custom_name = cleaned or None
        entity.updated_at = utcnow()
        await self._store.commit()
        return entity

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _refresh_or_delete(self, entity: Entity) -> bool:
        """Refresh an entity's aggregate, deleting it if it has no members left.

        Returns:
            True if the entity was deleted.
        """
        members = await self._aggregates.refresh(entity)
        if members:
            return False

        self._store.record_evolution(
            kind=EntityEvolutionKind.DELETE,
            target_spec_id=entity.target_spec_id,
            entity_id=entity.entity_id,
            algorithm_version=ALGORITHM_VERSION,
            details={"reason": "emptied"},
        )
        await self._store.delete_entity(entity)
        logger.debug("Entity %s emptied and deleted", entity.entity_id)
        return True

    async def _require_entity(self, entity_id: UUID) -> Entity:
        entity = await self._store.get_entity(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity

    async def _require_entities(self, entity_ids: Sequence[UUID]) -> list[Entity]:
        entities = await self._store.get_entities(entity_ids)
        if len(entities) != len(entity_ids):
            found = {e.entity_id for e in entities}
            missing = next(eid for eid in entity_ids if eid not in found)
            raise EntityNotFoundError(missing)
        return entities

    async def _require_subjects(self, subject_ids: Sequence[UUID]) -> list[Subject]:
        subjects = await self._store.get_subjects(subject_ids)
        if len(subjects) != len(subject_ids):
            found = {s.subject_id for s in subjects}
            missing = next(sid for sid in subject_ids if sid not in found)
            raise SubjectNotFoundError(missing)
        return subjects

    async def _require_members(self, entity: Entity, subject_ids: Sequence[UUID]) -> list[Subject]:
        """Load subjects in the given order, checking each belongs to ``entity``."""
        subjects = await self._require_subjects(subject_ids)
        outsiders = [s.subject_id for s in subjects if s.entity_id != entity.entity_id]
        if outsiders:
            raise MembershipError(entity.entity_id, outsiders)
        return subjects

    @staticmethod
    def _require_same_spec(entities: Sequence[Entity]) -> None:
        specs = {e.target_spec_id for e in entities}
        if len(specs) > 1:
            raise CrossSpecError(
                f"Entities span target specs {sorted(specs)}; operations stay within one spec"
            )
