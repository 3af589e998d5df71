"""
Service for generating text embeddings for vector search
"""
import hashlib
import math
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from bankguard.core.config import Settings
from bankguard.core.errors import UpstreamModelFailure
from bankguard.core.llm_client import LLMClient
from bankguard.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

_TOKEN = re.compile(r"[a-z0-9]+(?:[.'][a-z0-9]+)*")


class EmbeddingProvider(ABC):
    """Text -> raw vector"""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        ...


class HashEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic feature-hashing embedding.

    Unigrams and bigrams of the lower-cased text are hashed into
    ``dimension`` signed buckets, so texts sharing vocabulary land close to
    each other. No model is involved: the same text always maps to the same
    vector, on any machine.
    """

    def __init__(self, dimension: int):
        self.dimension = dimension

    def _features(self, text: str) -> List[str]:
        tokens = _TOKEN.findall(text.lower())
        return tokens + [f"{a} {b}" for a, b in zip(tokens, tokens[1:])]

    async def embed(self, text: str) -> List[float]:
        return self.embed_sync(text)

    def embed_sync(self, text: str) -> List[float]:
        vector = [0.0] * self.dimension
        for feature in self._features(text):
            digest = hashlib.sha256(feature.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        return vector


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Embeddings from the model server's ``/api/embeddings`` endpoint"""

    def __init__(self, client: LLMClient):
        self.client = client

    async def embed(self, text: str) -> List[float]:
        return await self.client.embed(text)


class EmbeddingService:
    """
    Service for generating fixed-dimension, L2-normalized embeddings.

    Supports:
    - Deterministic output for a given provider and text
    - Embedding caching
    - Vector normalization and pad/truncate to the configured dimension
    """

    def __init__(self, settings: Settings, provider: Optional[EmbeddingProvider] = None,
                 llm_client: Optional[LLMClient] = None):
        self.dimension = settings.embedding_dimension
        if provider is None:
            if settings.embedding_provider == "ollama":
                provider = OllamaEmbeddingProvider(llm_client or LLMClient(settings))
            else:
                provider = HashEmbeddingProvider(self.dimension)
        self.provider = provider
        self._embedding_cache: Dict[str, List[float]] = {}
        self._cache_size_limit = 1000

    async def generate_embedding(self, text: str, use_cache: bool = True) -> List[float]:
        """
        Generate embedding for given text.

        Args:
            text: Text to generate embedding for
            use_cache: Whether to use cached embeddings

        Returns:
            Unit-length vector of ``self.dimension`` floats (zero vector for empty text)

        Raises:
            UpstreamModelFailure: when the provider cannot produce a vector
        """
        if not text or not text.strip():
            logger.warning("Empty text provided for embedding generation")
            return [0.0] * self.dimension

        key = hashlib.sha256(text.encode("utf-8")).hexdigest()
        if use_cache and key in self._embedding_cache:
            return list(self._embedding_cache[key])

        try:
            raw = await self.provider.embed(text)
        except UpstreamModelFailure:
            raise
        except Exception as e:
            raise UpstreamModelFailure(f"Embedding generation failed: {e}") from e

        vector = self._fit_dimension(self._normalize_vector(raw))

        if use_cache:
            self._cache_embedding(key, vector)

        logger.debug(
            "Generated embedding",
            extra={"text_length": len(text), "dimension": len(vector)}
        )
        return list(vector)

    def _fit_dimension(self, vector: List[float]) -> List[float]:
        if len(vector) < self.dimension:
            vector = vector + [0.0] * (self.dimension - len(vector))
        elif len(vector) > self.dimension:
            vector = self._normalize_vector(vector[: self.dimension])
        return vector

    @staticmethod
    def _normalize_vector(vector: List[float]) -> List[float]:
        norm = math.sqrt(sum(x * x for x in vector))
        if norm == 0:
            return [float(x) for x in vector]
        return [x / norm for x in vector]

    def _cache_embedding(self, key: str, embedding: List[float]):
        if len(self._embedding_cache) >= self._cache_size_limit:
            # Drop the oldest entry (dicts keep insertion order)
            self._embedding_cache.pop(next(iter(self._embedding_cache)))
        self._embedding_cache[key] = embedding

    def clear_cache(self):
        self._embedding_cache.clear()


def l2_distance(a: List[float], b: List[float]) -> float:
    """Euclidean distance between two vectors of equal length"""
    if len(a) != len(b):
        raise ValueError(f"Dimension mismatch: {len(a)} != {len(b)}")
    return math.sqrt(sum((x - y) ** 2 for x, y in zip(a, b)))
