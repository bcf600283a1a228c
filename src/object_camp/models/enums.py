"""Enumerations for ObjectCamp data model."""

from enum import Enum


class ExtractionMethod(str, Enum):
    """How a subject's sticker was produced."""

    AUTOMATIC = "automatic"  # Segmentation pass over the photo library
    MANUAL = "manual"  # User re-cropped and re-extracted


class EntityEvolutionKind(str, Enum):
    """What kind of structural change was made to the entity graph."""

    CLUSTER = "cluster"  # Entity formed by a clustering pass
    MERGE = "merge"  # Another entity absorbed into this one
    SPLIT = "split"  # Subjects extracted into a new entity
    MOVE = "move"  # Subjects moved to another entity
    DELETE = "delete"  # Entity removed (emptied or deleted by the user)


class ClusterOutcome(str, Enum):
    """Summary of a clustering pass, for callers that report it to users."""

    NO_ELIGIBLE_SUBJECTS = "no_eligible_subjects"  # Nothing to cluster
    ALL_SINGLETONS = "all_singletons"  # Ran, but no two subjects were similar enough
    GROUPED = "grouped"  # At least one entity has 2+ members
