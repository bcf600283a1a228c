"""Tests for the embedding client."""

import base64
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from openai import APIConnectionError

from object_camp.clients.embeddings import EmbeddingClient
from object_camp.errors import ExtractionError


class MockEmbeddingData:
    """Mock for openai embedding response data item."""

    def __init__(self, embedding: list[float]) -> None:
        self.embedding = embedding


class MockEmbeddingResponse:
    """Mock for openai embedding response."""

    def __init__(self, embeddings: list[list[float]]) -> None:
        self.data = [MockEmbeddingData(e) for e in embeddings]


def mocked_client(
    *responses: MockEmbeddingResponse, batch_size: int = 32, expected_dim: int = 768
) -> EmbeddingClient:
    with patch.object(EmbeddingClient, "__init__", lambda self, **kwargs: None):
        client = EmbeddingClient()
    client._batch_size = batch_size
    client._expected_dim = expected_dim
    client._client = MagicMock()
    client._client.embeddings = MagicMock()
    client._client.embeddings.create = AsyncMock(side_effect=list(responses))
    return client


class TestEmbeddingClient:
    """Unit tests for EmbeddingClient with mocked OpenAI client."""

    async def test_embed_images_empty(self) -> None:
        client = EmbeddingClient()
        result = await client.embed_images([])
        assert result == []

    async def test_extract_single(self) -> None:
        client = mocked_client(MockEmbeddingResponse([[0.2] * 768]))

        vector = await client.extract_feature_vector(b"sticker")

        assert len(vector) == 768
        client._client.embeddings.create.assert_called_once()

    async def test_bytes_sent_as_base64(self) -> None:
        client = mocked_client(MockEmbeddingResponse([[0.2] * 768]))
        image_bytes = b"fake image data"

        await client.embed_images([image_bytes])

        input_arg = client._client.embeddings.create.call_args.kwargs["input"]
        assert input_arg == [{"image": base64.b64encode(image_bytes).decode("utf-8")}]

    async def test_url_passthrough(self) -> None:
        client = mocked_client(MockEmbeddingResponse([[0.2] * 768]))
        image_url = "https://example.com/sticker.png"

        await client.embed_images([image_url])

        input_arg = client._client.embeddings.create.call_args.kwargs["input"]
        assert input_arg[0]["image"] == image_url

    async def test_batching(self) -> None:
        """5 images with batch size 2 make 3 requests."""
        vector = [0.1] * 768
        client = mocked_client(
            MockEmbeddingResponse([vector] * 2),
            MockEmbeddingResponse([vector] * 2),
            MockEmbeddingResponse([vector]),
            batch_size=2,
        )

        result = await client.embed_images([b"img%d" % i for i in range(5)])

        assert len(result) == 5
        assert client._client.embeddings.create.call_count == 3

    async def test_gateway_error_becomes_extraction_error(self) -> None:
        client = mocked_client()
        client._client.embeddings.create = AsyncMock(
            side_effect=APIConnectionError(request=MagicMock())
        )

        with pytest.raises(ExtractionError):
            await client.extract_feature_vector(b"sticker")

    async def test_short_response_rejected(self) -> None:
        client = mocked_client(MockEmbeddingResponse([[0.1] * 768]))
        with pytest.raises(ExtractionError, match="Expected 2 vectors"):
            await client.embed_images([b"a", b"b"])

    @pytest.mark.parametrize(
        ("embedding", "message"),
        [
            ([], "empty"),
            ([0.1] * 512, "768-dim"),
            ([0.0] * 768, "zero-magnitude"),
            ([float("nan")] + [0.1] * 767, "NaN"),
            ([0.1] * 767 + [float("inf")], "NaN or inf"),
        ],
    )
    async def test_unusable_vectors_rejected(self, embedding: list[float], message: str) -> None:
        client = mocked_client(MockEmbeddingResponse([embedding]))
        with pytest.raises(ExtractionError, match=message):
            await client.extract_feature_vector(b"sticker")

    async def test_dimension_check_disabled(self) -> None:
        client = mocked_client(MockEmbeddingResponse([[0.1] * 4]), expected_dim=0)
        vector = await client.extract_feature_vector(b"sticker")
        assert len(vector) == 4

    def test_to_image_input_bytes(self) -> None:
        client = EmbeddingClient()
        image_bytes = b"test data"

        result = client._to_image_input([image_bytes])

        assert result == [{"image": base64.b64encode(image_bytes).decode("utf-8")}]

    def test_batches_with_remainder(self) -> None:
        client = EmbeddingClient(batch_size=3)
        assert client._batches([b"1", b"2", b"3", b"4", b"5"]) == [
            [b"1", b"2", b"3"],
            [b"4", b"5"],
        ]

    def test_batches_single_batch(self) -> None:
        client = EmbeddingClient(batch_size=10)
        assert client._batches([b"1", b"2"]) == [[b"1", b"2"]]


@pytest.mark.integration
class TestEmbeddingClientIntegration:
    """Integration tests that require a running embedding gateway.

    Run with: pytest -m integration
    Skip with: pytest -m "not integration"
    """

    @pytest.fixture
    def client(self) -> EmbeddingClient:
        return EmbeddingClient()

    async def test_extract_real(self, client: EmbeddingClient) -> None:
        png = base64.b64decode(
            "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQDwAEhQGAhKmMIQAAAABJRU5ErkJggg=="
        )
        vector = await client.extract_feature_vector(png)
        assert len(vector) == 768
        assert vector.norm > 0
