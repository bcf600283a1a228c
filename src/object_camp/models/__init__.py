"""Database models for ObjectCamp."""

from object_camp.models.base import Base
from object_camp.models.entity import Entity
from object_camp.models.entity_evolution import EntityEvolution
from object_camp.models.enums import ClusterOutcome, EntityEvolutionKind, ExtractionMethod
from object_camp.models.subject import Subject
from object_camp.models.target_spec import TargetSpec

__all__ = [
    "Base",
    "ClusterOutcome",
    "Entity",
    "EntityEvolution",
    "EntityEvolutionKind",
    "ExtractionMethod",
    "Subject",
    "TargetSpec",
]
