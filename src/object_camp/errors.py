"""Exceptions raised by ObjectCamp services.

Input errors are raised before anything is written, so a caller that
catches one can assume the entity graph is untouched. Eligibility gaps
(a subject without a feature vector, a non-target subject) and
degenerate similarities are not errors and never surface here.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID


class ObjectCampError(Exception):
    """Base class for all ObjectCamp errors."""


class InputError(ObjectCampError, ValueError):
    """An operation was called with arguments it cannot act on."""


class InsufficientEntitiesError(InputError):
    """Merge needs at least two distinct entities."""

    def __init__(self, count: int) -> None:
        super().__init__(f"Merge needs at least 2 entities, got {count}")
        self.count = count


class EmptySelectionError(InputError):
    """An operation that moves subjects was given none."""


class MembershipError(InputError):
    """Subjects named in an operation do not belong to the expected entity."""

    def __init__(self, entity_id: UUID, subject_ids: Iterable[UUID]) -> None:
        ids = ", ".join(str(s) for s in subject_ids)
        super().__init__(f"Subjects not members of entity {entity_id}: {ids}")
        self.entity_id = entity_id


class CrossSpecError(InputError):
    """An operation would mix entities from different target specs."""


class EntityNotFoundError(InputError):
    def __init__(self, entity_id: UUID) -> None:
        super().__init__(f"Entity {entity_id} not found")
        self.entity_id = entity_id


class SubjectNotFoundError(InputError):
    def __init__(self, subject_id: UUID) -> None:
        super().__init__(f"Subject {subject_id} not found")
        self.subject_id = subject_id


class TargetSpecNotFoundError(InputError):
    def __init__(self, spec_id: str) -> None:
        super().__init__(f"Target spec '{spec_id}' not found")
        self.spec_id = spec_id


class InvalidThresholdError(InputError):
    """Similarity thresholds must lie in [-1, 1]."""


class InvalidConfidenceError(InputError):
    """Subject confidence must lie in [0, 1]."""


class InvalidFeatureVectorError(InputError):
    """A feature vector is empty, has non-finite components or the wrong length."""


class PersistenceError(ObjectCampError):
    """Committing a batch failed; the session was rolled back."""


class ExtractionError(ObjectCampError):
    """The feature extractor could not produce a vector."""
