"""Async client for the image feature-vector endpoint."""

import base64
import logging
import time
from collections.abc import Sequence
from typing import Protocol

from openai import AsyncOpenAI, OpenAIError

from object_camp.clustering.similarity import FeatureVector
from object_camp.config import settings
from object_camp.errors import ExtractionError

logger = logging.getLogger(__name__)


class FeatureExtractor(Protocol):
    """Anything that turns a subject image into a feature vector."""

    async def extract_feature_vector(self, image: bytes) -> FeatureVector: ...


class EmbeddingClient:
    """Generates subject feature vectors via an OpenAI-compatible gateway.

    The model (CLIP by default) embeds the cut-out sticker image; the
    resulting vector is what clustering compares.
    """

    # Maximum items per batch request
    DEFAULT_BATCH_SIZE = 32

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        expected_dim: int | None = None,
    ) -> None:
        self._client = AsyncOpenAI(
            base_url=base_url or settings.embedding_base_url,
            api_key=api_key or settings.embedding_api_key,
        )
        self._batch_size = batch_size
        self._expected_dim = settings.dim_feature_vector if expected_dim is None else expected_dim

    async def embed_images(self, images: Sequence[bytes | str]) -> list[FeatureVector]:
        """Generate feature vectors for a batch of images.

        Args:
            images: Raw image bytes, or strings that are already URLs/base64.

        Raises:
            ExtractionError: The gateway failed or returned unusable vectors.
        """
        if not images:
            return []

        start_time = time.time()
        vectors: list[FeatureVector] = []

        for batch in self._batches(list(images)):
            try:
                response = await self._client.embeddings.create(
                    model=settings.model_image_embedding,
                    input=self._to_image_input(batch),  # type: ignore[arg-type]
                )
            except OpenAIError as e:
                raise ExtractionError(f"Feature extraction request failed: {e}") from e

            if len(response.data) != len(batch):
                raise ExtractionError(
                    f"Expected {len(batch)} vectors, gateway returned {len(response.data)}"
                )
            for item in response.data:
                vectors.append(self._validate(item.embedding))

        if settings.log_api_calls:
            elapsed = (time.time() - start_time) * 1000  # ms
            logger.info(
                "[EMBED] %s (%d images) → %d-dim (%.0fms)",
                settings.model_image_embedding, len(images), len(vectors[0]), elapsed,
            )

        return vectors

    async def extract_feature_vector(self, image: bytes) -> FeatureVector:
        """Feature vector of a single subject image."""
        vectors = await self.embed_images([image])
        return vectors[0]

    def _validate(self, embedding: Sequence[float]) -> FeatureVector:
        vector = FeatureVector.from_stored(list(embedding))
        if vector is None:
            raise ExtractionError("Gateway returned an empty feature vector")
        if not vector.is_finite:
            raise ExtractionError("Gateway returned a feature vector with NaN or inf components")
        if self._expected_dim and len(vector) != self._expected_dim:
            raise ExtractionError(
                f"Expected {self._expected_dim}-dim vector, got {len(vector)}"
            )
        if vector.norm == 0:
            raise ExtractionError("Gateway returned a zero-magnitude feature vector")
        return vector

    def _to_image_input(self, images: list[bytes | str]) -> list[dict[str, str]]:
        """Convert images to the structured format CLIP endpoints expect."""
        result: list[dict[str, str]] = []

        for img in images:
            if isinstance(img, bytes):
                b64 = base64.b64encode(img).decode("utf-8")
                result.append({"image": b64})
            else:
                result.append({"image": img})

        return result

    def _batches(self, items: list[bytes | str]) -> list[list[bytes | str]]:
        """Split items into batches."""
        return [items[i : i + self._batch_size] for i in range(0, len(items), self._batch_size)]
