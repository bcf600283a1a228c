"""Subject model for extracted visual instances."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import DateTime, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from object_camp.models.base import Base, FeatureVectorType, JSONType, utcnow
from object_camp.models.enums import ExtractionMethod


class Subject(Base):
    """A single subject cut out of one photo.

    A subject belongs to at most one entity, expressed through the
    ``entity_id`` back-reference. ``entity_id is None`` means unclustered.
    Subjects marked as non-target are never members of an entity and are
    never offered to clustering.
    """

    __tablename__ = "subjects"

    subject_id: Mapped[UUID] = mapped_column(primary_key=True)
    target_spec_id: Mapped[str] = mapped_column(
        ForeignKey("target_specs.spec_id", ondelete="CASCADE"), index=True
    )
    source_image_id: Mapped[str] = mapped_column(String(1024), index=True)
    sticker_path: Mapped[str] = mapped_column(String(1024))
    thumbnail_path: Mapped[str | None] = mapped_column(String(1024))

    bounding_box: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    """Rectangle in source-image coordinates: {x, y, width, height}."""

    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    """Extraction confidence in [0, 1]."""

    feature_vector: Mapped[list[float] | None] = mapped_column(FeatureVectorType)
    """Appearance embedding. None until extraction produces one."""

    entity_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("entities.entity_id", ondelete="SET NULL"), index=True
    )
    is_marked_as_non_target: Mapped[bool] = mapped_column(default=False)
    extraction_method: Mapped[ExtractionMethod] = mapped_column(default=ExtractionMethod.AUTOMATIC)
    needs_review: Mapped[bool] = mapped_column(default=False)
    last_adjusted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    extracted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )

    @property
    def is_cluster_eligible(self) -> bool:
        return (
            self.entity_id is None
            and not self.is_marked_as_non_target
            and self.feature_vector is not None
        )
