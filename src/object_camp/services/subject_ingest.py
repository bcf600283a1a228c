"""Recording extracted subjects and attaching their feature vectors.

Segmentation happens on the device; this service receives its output
(one sticker per subject, with a confidence and a bounding box) and
stores it as unclustered subjects. Feature vectors come from a
``FeatureExtractor``. A subject whose extraction fails is kept without a
vector: it is simply not eligible for clustering until a later attempt
succeeds.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from object_camp.clustering.similarity import FeatureVector
from object_camp.config import settings
from object_camp.errors import (
    ExtractionError,
    InvalidConfidenceError,
    InvalidFeatureVectorError,
    SubjectNotFoundError,
)
from object_camp.models.base import utcnow
from object_camp.models.enums import ExtractionMethod
from object_camp.models.subject import Subject
from object_camp.models.target_spec import TargetSpec
from object_camp.services.graph_store import GraphStore

if TYPE_CHECKING:
    from object_camp.clients.embeddings import FeatureExtractor

logger = logging.getLogger(__name__)


def validate_confidence(confidence: float) -> float:
    if not 0.0 <= confidence <= 1.0:
        raise InvalidConfidenceError(f"Confidence must be in [0, 1], got {confidence}")
    return float(confidence)


def validate_feature_vector(
    values: Sequence[float] | FeatureVector, expected_dim: int = 0
) -> list[float]:
    """Check a vector can take part in clustering and return it as a plain list.

    Raises:
        InvalidFeatureVectorError: Empty, unparseable, NaN/inf components, or
            not ``expected_dim`` long (0 skips the length check).
    """
    vector = values if isinstance(values, FeatureVector) else FeatureVector.from_stored(values)
    if vector is None:
        raise InvalidFeatureVectorError("Feature vector is empty or not a list of numbers")
    if not vector.is_finite:
        raise InvalidFeatureVectorError("Feature vector has NaN or inf components")
    if expected_dim and len(vector) != expected_dim:
        raise InvalidFeatureVectorError(
            f"Expected {expected_dim}-dim feature vector, got {len(vector)}"
        )
    return vector.to_list()


class SubjectIngestService:
    """Creates subjects from extraction output and keeps their vectors current.

    Usage:
        async with async_session_factory() as session:
            service = SubjectIngestService(GraphStore(session), extractor=EmbeddingClient())
            subject = await service.record_subject("doll", asset_id, "doll/subjects/a.png", 0.92)
            await service.attach_feature_vector(subject.subject_id, sticker_bytes)
    """

    def __init__(
        self,
        store: GraphStore,
        extractor: FeatureExtractor | None = None,
        expected_dim: int | None = None,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._expected_dim = settings.dim_feature_vector if expected_dim is None else expected_dim

    async def ensure_target_spec(
        self,
        spec_id: str,
        display_name: str | None = None,
        target_description: str = "",
    ) -> tuple[TargetSpec, bool]:
        """Get or create a target spec.

        Returns:
            Tuple of (TargetSpec, created_flag).
        """
        existing = await self._store.get_target_spec(spec_id)
        if existing is not None:
            return existing, False

        spec = TargetSpec(
            spec_id=spec_id,
            display_name=display_name or spec_id,
            target_description=target_description,
            is_enabled=True,
        )
        await self._store.add_target_spec(spec)
        await self._store.commit()
        logger.info("Created target spec '%s'", spec_id)
        return spec, True

    async def record_subject(
        self,
        target_spec_id: str,
        source_image_id: str,
        sticker_path: str,
        confidence: float,
        *,
        thumbnail_path: str | None = None,
        bounding_box: dict[str, Any] | None = None,
        feature_vector: list[float] | None = None,
    ) -> Subject:
        """Store one extracted subject as unclustered and automatic.

        Raises:
            TargetSpecNotFoundError: The spec does not exist.
            InvalidConfidenceError / InvalidFeatureVectorError: Nothing stored.
        """
        await self._store.require_target_spec(target_spec_id)
        confidence = validate_confidence(confidence)
        if feature_vector is not None:
            feature_vector = validate_feature_vector(feature_vector, self._expected_dim)
        subject = Subject(
            subject_id=uuid4(),
            target_spec_id=target_spec_id,
            source_image_id=source_image_id,
            sticker_path=sticker_path,
            thumbnail_path=thumbnail_path,
            bounding_box=bounding_box,
            confidence=confidence,
            feature_vector=feature_vector,
            entity_id=None,
            is_marked_as_non_target=False,
            extraction_method=ExtractionMethod.AUTOMATIC,
            needs_review=False,
            extracted_at=utcnow(),
        )
        self._store.add_subject(subject)
        await self._store.commit()
        logger.debug(
            "[EXTRACT] Subject %s from %s (confidence %.2f, vector: %s)",
            subject.subject_id, source_image_id, subject.confidence,
            "yes" if feature_vector is not None else "no",
        )
        return subject

    async def attach_feature_vector(self, subject_id: UUID, image: bytes) -> bool:
        """Extract and store the subject's feature vector.

        Returns:
            True if a vector was stored. False if extraction failed; the
            subject then stays ineligible for clustering.
        """
        subject = await self._require_subject(subject_id)
        extractor = self._require_extractor()
        try:
            vector = await extractor.extract_feature_vector(image)
            values = validate_feature_vector(vector, self._expected_dim)
        except (ExtractionError, InvalidFeatureVectorError) as e:
            logger.warning("[EXTRACT] No feature vector for subject %s: %s", subject_id, e)
            return False

        subject.feature_vector = values
        await self._store.commit()
        logger.debug("[EXTRACT] Subject %s: %d-dim feature vector", subject_id, len(vector))
        return True

    async def apply_manual_adjustment(
        self,
        subject_id: UUID,
        *,
        sticker_path: str,
        thumbnail_path: str | None,
        image: bytes,
    ) -> Subject:
        """Replace a subject's sticker with a user re-extraction.

        The new image gets a fresh vector. Unlike automatic extraction, a
        failure here propagates: the user is waiting on this result.

        Raises:
            ExtractionError: No vector could be extracted; nothing changed.
            InvalidFeatureVectorError: The extracted vector is unusable; nothing changed.
        """
        subject = await self._require_subject(subject_id)
        vector = await self._require_extractor().extract_feature_vector(image)
        values = validate_feature_vector(vector, self._expected_dim)

        subject.sticker_path = sticker_path
        subject.thumbnail_path = thumbnail_path
        subject.feature_vector = values
        subject.extraction_method = ExtractionMethod.MANUAL
        subject.last_adjusted_at = utcnow()
        subject.needs_review = False
        await self._store.commit()

        logger.info("[EXTRACT] Subject %s manually adjusted", subject_id)
        return subject

    async def flag_for_review(self, subject_id: UUID, needs_review: bool = True) -> Subject:
        subject = await self._require_subject(subject_id)
        subject.needs_review = needs_review
        await self._store.commit()
        return subject

    async def _require_subject(self, subject_id: UUID) -> Subject:
        subject = await self._store.get_subject(subject_id)
        if subject is None:
            raise SubjectNotFoundError(subject_id)
        return subject

    def _require_extractor(self) -> FeatureExtractor:
        if self._extractor is None:
            raise ExtractionError("No feature extractor configured")
        return self._extractor
