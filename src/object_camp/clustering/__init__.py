"""Entity clustering for ObjectCamp.

Submodules:
- similarity: FeatureVector value type and cosine similarity
- engine: seed-based grouping of unclustered subjects into entities
- aggregates: derived entity statistics (average confidence, cover)
"""

from object_camp.clustering.aggregates import AggregateMaintainer, average_confidence
from object_camp.clustering.engine import ClusteringEngine, ClusteringResult, group_by_seed
from object_camp.clustering.similarity import FeatureVector, cosine_similarity

__all__ = [
    "AggregateMaintainer",
    "ClusteringEngine",
    "ClusteringResult",
    "FeatureVector",
    "average_confidence",
    "cosine_similarity",
    "group_by_seed",
]
