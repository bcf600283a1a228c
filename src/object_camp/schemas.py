"""Pydantic schemas for the HTTP API.

Request bodies validate input shape; domain rules (membership, spec
scoping, minimum entity counts) are enforced by the services.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from object_camp.models.enums import ClusterOutcome, ExtractionMethod


class TargetSpecCreate(BaseModel):
    spec_id: str = Field(min_length=1, max_length=128, description="Scope key, e.g. 'doll'")
    display_name: str | None = None
    target_description: str = ""


class SubjectCreate(BaseModel):
    """One subject as produced by on-device segmentation."""

    source_image_id: str
    sticker_path: str
    thumbnail_path: str | None = None
    bounding_box: dict[str, float] | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    feature_vector: list[float] | None = None


class SubjectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subject_id: UUID
    target_spec_id: str
    source_image_id: str
    sticker_path: str
    thumbnail_path: str | None
    bounding_box: dict[str, Any] | None
    confidence: float
    entity_id: UUID | None
    is_marked_as_non_target: bool
    extraction_method: ExtractionMethod
    needs_review: bool
    has_feature_vector: bool = False

    @classmethod
    def from_subject(cls, subject: Any) -> SubjectRead:
        read = cls.model_validate(subject)
        read.has_feature_vector = subject.feature_vector is not None
        return read


class EntityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entity_id: UUID
    target_spec_id: str
    custom_name: str | None
    cover_subject_id: UUID | None
    average_confidence: float
    is_manually_created: bool
    created_at: datetime
    updated_at: datetime
    member_count: int | None = None


class EntityDetail(EntityRead):
    subjects: list[SubjectRead] = Field(default_factory=list)


class ClusterResponse(BaseModel):
    target_spec_id: str
    outcome: ClusterOutcome
    threshold: float
    eligible_count: int
    awaiting_vector_count: int
    entities: list[EntityRead]


class MergeRequest(BaseModel):
    entity_ids: list[UUID] = Field(description="Survivor first, then the entities to absorb")


class SubjectSelection(BaseModel):
    subject_ids: list[UUID]


class MoveRequest(SubjectSelection):
    target_entity_id: UUID | None = Field(
        default=None, description="Existing entity to move into; omit for a new entity"
    )


class EntitySelection(BaseModel):
    entity_ids: list[UUID]


class CoverRequest(BaseModel):
    subject_id: UUID


class RenameRequest(BaseModel):
    name: str | None = None


class SplitResponse(BaseModel):
    new_entity: EntityRead
    source_deleted: bool


class MoveResponse(BaseModel):
    target_entity: EntityRead
    created_target: bool
    source_deleted: bool


class DeleteSubjectResponse(BaseModel):
    subject_id: UUID
    entity_deleted: bool
    released_paths: list[str]
