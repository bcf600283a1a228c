"""Service layer for ObjectCamp."""

from object_camp.services.graph_store import GraphStore
from object_camp.services.entity_mutation import EntityMutationService
from object_camp.services.locks import SpecLockRegistry
from object_camp.services.subject_ingest import SubjectIngestService

__all__ = [
    "EntityMutationService",
    "GraphStore",
    "SpecLockRegistry",
    "SubjectIngestService",
]
