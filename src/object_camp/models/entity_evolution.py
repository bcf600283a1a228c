"""EntityEvolution model: audit trail of structural changes."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import DateTime, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from object_camp.models.base import Base, JSONType, utcnow
from object_camp.models.enums import EntityEvolutionKind


class EntityEvolution(Base):
    """Records every cluster, merge, split, move and delete decision.

    Entity ids are stored without foreign keys so the trail outlives the
    entities it describes (merged-away and emptied entities are deleted).
    """

    __tablename__ = "entity_evolutions"

    evolution_id: Mapped[UUID] = mapped_column(primary_key=True)
    target_spec_id: Mapped[str] = mapped_column(String(128), index=True)

    kind: Mapped[EntityEvolutionKind] = mapped_column(index=True)

    entity_id: Mapped[UUID] = mapped_column(index=True)
    """The entity this record is about (the survivor, the new entity, the target)."""

    other_entity_id: Mapped[UUID | None] = mapped_column(index=True)
    """For MERGE/SPLIT/MOVE: the other entity involved."""

    subject_ids: Mapped[list[str]] = mapped_column(JSONType, default=list)
    """Subjects whose membership changed."""

    algorithm_version: Mapped[str] = mapped_column(String(64))

    threshold_used: Mapped[float | None] = mapped_column(Float)
    """For CLUSTER: the similarity threshold of the pass."""

    details: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
