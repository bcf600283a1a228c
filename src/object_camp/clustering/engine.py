"""Clustering engine: groups unclustered subjects into new entities.

Algorithm (greedy seed grouping with a fixed threshold):
1. Take the eligible pool of one target spec in extraction order.
2. Walk the pool. Each subject not yet placed seeds a new cluster.
3. Every later subject not yet placed joins that cluster when its cosine
   similarity to the *seed* is >= threshold.
4. Each cluster becomes a new entity; members point at it, the average
   confidence is the member mean and the cover is the seed.
5. All entities and assignments are committed together.

Candidates are compared to the seed only, never to members added after
it, so members of a 3+ cluster are each close to the seed but not
necessarily to one another. This keeps clusters from drifting along a
chain of near neighbours.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from object_camp.clustering.aggregates import average_confidence
from object_camp.clustering.similarity import FeatureVector
from object_camp.config import settings
from object_camp.errors import InvalidThresholdError
from object_camp.models.entity import Entity
from object_camp.models.enums import ClusterOutcome, EntityEvolutionKind
from object_camp.models.subject import Subject
from object_camp.services.graph_store import GraphStore

logger = logging.getLogger(__name__)

# Algorithm version for audit trail
ALGORITHM_VERSION = "seed-cluster-v1.0"


def validate_threshold(threshold: float) -> float:
    if not -1.0 <= threshold <= 1.0:
        raise InvalidThresholdError(f"Similarity threshold must be in [-1, 1], got {threshold}")
    return threshold


def group_by_seed(vectors: Sequence[FeatureVector], threshold: float) -> list[list[int]]:
    """Partition pool indices into clusters around seeds.

    Args:
        vectors: Feature vectors in pool order.
        threshold: Minimum similarity to the seed for a candidate to join.

    Returns:
        Clusters as lists of indices into ``vectors``. Clusters appear in
        seed order and members in pool order; the seed is always first.
        Every index appears in exactly one cluster.
    """
    clusters: list[list[int]] = []
    visited: set[int] = set()

    for i, seed in enumerate(vectors):
        if i in visited:
            continue

        cluster = [i]
        visited.add(i)

        for j in range(i + 1, len(vectors)):
            if j in visited:
                continue
            if seed.similarity(vectors[j]) >= threshold:
                cluster.append(j)
                visited.add(j)

        clusters.append(cluster)

    return clusters


def similarity(subject_a: Subject, subject_b: Subject) -> float:
    """Cosine similarity of two subjects' vectors, 0.0 if either has none."""
    vector_a = FeatureVector.from_stored(subject_a.feature_vector)
    vector_b = FeatureVector.from_stored(subject_b.feature_vector)
    if vector_a is None or vector_b is None:
        return 0.0
    return vector_a.similarity(vector_b)


@dataclass
class ClusteringResult:
    """Result of one clustering pass over a target spec."""

    target_spec_id: str
    outcome: ClusterOutcome
    entities: list[Entity] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    """Entities created by this pass, in seed order."""

    eligible_count: int = 0
    """Subjects that went into the pool."""

    awaiting_vector_count: int = 0
    """Unclustered subjects left out because they have no feature vector yet."""

    threshold: float = 0.0

    memberships: list[list[Subject]] = field(default_factory=list)  # pyright: ignore[reportUnknownVariableType]
    """Members of each created entity, parallel to ``entities``."""

    @property
    def cluster_sizes(self) -> list[int]:
        return [len(members) for members in self.memberships]


class ClusteringEngine:
    """Turns the eligible subjects of a target spec into new entities.

    Usage:
        async with async_session_factory() as session:
            engine = ClusteringEngine(GraphStore(session))
            result = await engine.cluster_subjects("doll")
    """

    def __init__(self, store: GraphStore, *, threshold: float | None = None) -> None:
        """Initialize the engine.

        Args:
            store: Graph store bound to the session the pass runs in.
            threshold: Similarity threshold (default from config).
        """
        self._store = store
        self._threshold = validate_threshold(
            threshold if threshold is not None else settings.cluster_similarity_threshold
        )

    @property
    def threshold(self) -> float:
        return self._threshold

    async def cluster_subjects(self, target_spec_id: str) -> ClusteringResult:
        """Cluster every eligible subject of ``target_spec_id``.

        An empty pool is a no-op: nothing is written and nothing committed.

        Raises:
            PersistenceError: The batch could not be committed. Nothing from
                the pass is persisted.
        """
        logger.info("[CLUSTER] Starting pass for spec '%s'", target_spec_id)

        subjects = await self._store.fetch_eligible_subjects(target_spec_id)
        awaiting = await self._store.count_awaiting_vectors(target_spec_id)
        if awaiting:
            logger.warning(
                "[CLUSTER] %d subject(s) in '%s' have no feature vector yet and are skipped",
                awaiting, target_spec_id,
            )

        pool: list[tuple[Subject, FeatureVector]] = []
        for subject in subjects:
            vector = FeatureVector.from_stored(subject.feature_vector)
            if vector is None:
                logger.warning("[CLUSTER] Subject %s has an unreadable feature vector", subject.subject_id)
                continue
            pool.append((subject, vector))

        if not pool:
            logger.info("[CLUSTER] No subjects to cluster for spec '%s'", target_spec_id)
            return ClusteringResult(
                target_spec_id=target_spec_id,
                outcome=ClusterOutcome.NO_ELIGIBLE_SUBJECTS,
                awaiting_vector_count=awaiting,
                threshold=self._threshold,
            )

        clusters = group_by_seed([vector for _, vector in pool], self._threshold)
        logger.info(
            "[CLUSTER] %d eligible subject(s) formed %d cluster(s)", len(pool), len(clusters)
        )

        entities: list[Entity] = []
        memberships: list[list[Subject]] = []
        for cluster in clusters:
            members = [pool[index][0] for index in cluster]
            entity = await self._store.create_entity(target_spec_id, is_manually_created=False)

            for subject in members:
                self._store.assign_entity(subject, entity.entity_id)

            self._store.update_aggregate(
                entity,
                average_confidence=average_confidence(s.confidence for s in members),
                cover_subject_id=members[0].subject_id,
            )
            self._store.record_evolution(
                kind=EntityEvolutionKind.CLUSTER,
                target_spec_id=target_spec_id,
                entity_id=entity.entity_id,
                subject_ids=[s.subject_id for s in members],
                algorithm_version=ALGORITHM_VERSION,
                threshold_used=self._threshold,
                details={"cluster_size": len(members)},
            )
            logger.debug(
                "[CLUSTER] Entity %s: %d member(s), avg confidence %.3f",
                entity.entity_id, len(members), entity.average_confidence,
            )
            entities.append(entity)
            memberships.append(members)

        await self._store.commit()

        outcome = (
            ClusterOutcome.GROUPED
            if any(len(members) > 1 for members in memberships)
            else ClusterOutcome.ALL_SINGLETONS
        )
        logger.info(
            "[CLUSTER] Saved %d entit%s for spec '%s' (%s)",
            len(entities), "y" if len(entities) == 1 else "ies", target_spec_id, outcome.value,
        )
        return ClusteringResult(
            target_spec_id=target_spec_id,
            outcome=outcome,
            entities=entities,
            memberships=memberships,
            eligible_count=len(pool),
            awaiting_vector_count=awaiting,
            threshold=self._threshold,
        )
