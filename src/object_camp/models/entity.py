"""Entity model: a group of subjects depicting one real-world object."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from object_camp.models.base import Base, utcnow


class Entity(Base):
    """A persistent group of subjects believed to show the same object.

    Entities do not hold their members. Membership is the set of subjects
    whose ``entity_id`` points here and is always queried, never stored.
    ``average_confidence`` is derived from that membership and must be
    refreshed whenever it changes.
    """

    __tablename__ = "entities"

    entity_id: Mapped[UUID] = mapped_column(primary_key=True)
    target_spec_id: Mapped[str] = mapped_column(
        ForeignKey("target_specs.spec_id", ondelete="CASCADE"), index=True
    )
    custom_name: Mapped[str | None] = mapped_column(String(255))
    cover_subject_id: Mapped[UUID | None] = mapped_column()
    average_confidence: Mapped[float] = mapped_column(Float, default=0.0)
    is_manually_created: Mapped[bool] = mapped_column(default=False)
    """True for entities produced by merge, split or move; False for clustering."""

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
