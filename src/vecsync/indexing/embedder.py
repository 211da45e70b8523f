"""
Embedding providers and the provider-selecting gateway.

Provides:
- Abstract base class for embedding providers
- Ollama provider (local server, default)
- OpenAI provider (cloud fallback)
- Gateway that picks the first reachable provider and caches the choice
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import aiohttp
import numpy as np
import structlog
from openai import AsyncOpenAI

from vecsync.config import EmbeddingProviderName
from vecsync.errors import EmbeddingError, EmbeddingUnavailableError

if TYPE_CHECKING:
    from vecsync.config import EmbeddingConfig

logger = structlog.get_logger(__name__)


def _to_vector(values: Any) -> np.ndarray:
    return np.asarray(values, dtype=np.float32)


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    name: str = "unknown"

    @abstractmethod
    async def embed(self, text: str) -> np.ndarray:
        """
        Generate embedding for a single text.

        Args:
            text: Input text.

        Returns:
            Embedding vector as numpy array.
        """
        pass

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of input texts.

        Returns:
            List of embedding vectors, in input order.
        """
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """Return True if the provider is reachable and usable."""
        pass

    async def close(self) -> None:
        """Cleanup resources."""
        pass


class OllamaProvider(EmbeddingProvider):
    """
    Local Ollama embedding provider.

    Talks to the Ollama HTTP API; pulls the model on first use when it is
    missing and auto_pull_model is enabled.
    """

    name = "ollama"

    def __init__(
        self,
        config: "EmbeddingConfig",
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = config.ollama_url.rstrip("/")
        self.model = config.ollama_model
        self.auto_pull = config.auto_pull_model
        self.timeout = aiohttp.ClientTimeout(total=config.timeout_seconds)

        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def _list_models(self) -> list[str]:
        session = self._get_session()
        async with session.get(f"{self.base_url}/api/tags") as response:
            response.raise_for_status()
            data = await response.json()
        return [m.get("name", "") for m in data.get("models", [])]

    def _has_model(self, models: list[str]) -> bool:
        # Ollama reports "name:tag"; a bare model name means ":latest"
        return any(
            m == self.model or m.split(":", 1)[0] == self.model for m in models
        )

    async def _pull_model(self) -> None:
        logger.info("Pulling Ollama model", model=self.model)
        session = self._get_session()
        async with session.post(
            f"{self.base_url}/api/pull",
            json={"name": self.model, "stream": False},
        ) as response:
            response.raise_for_status()
            await response.read()
        logger.info("Pulled Ollama model", model=self.model)

    async def test_connection(self) -> bool:
        """Check the server is up and the model is available."""
        try:
            models = await self._list_models()
            if not self._has_model(models):
                if not self.auto_pull:
                    logger.warning(
                        "Ollama model not available",
                        model=self.model,
                        available=models,
                    )
                    return False
                await self._pull_model()
            return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug("Ollama not reachable", url=self.base_url, error=str(e))
            return False

    async def embed(self, text: str) -> np.ndarray:
        """Generate embedding for a single text."""
        session = self._get_session()
        try:
            async with session.post(
                f"{self.base_url}/api/embeddings",
                json={"model": self.model, "prompt": text},
            ) as response:
                response.raise_for_status()
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise EmbeddingError(f"Ollama embedding request failed: {e}") from e

        embedding = data.get("embedding")
        if not embedding:
            raise EmbeddingError("Ollama returned no embedding")
        return _to_vector(embedding)

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Embed texts one request at a time; Ollama has no batch endpoint."""
        results = []
        for text in texts:
            results.append(await self.embed(text))
        return results

    async def close(self) -> None:
        """Close the HTTP session if this provider created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


class OpenAIProvider(EmbeddingProvider):
    """OpenAI embeddings API provider."""

    name = "openai"

    def __init__(
        self,
        config: "EmbeddingConfig",
        client: AsyncOpenAI | None = None,
    ) -> None:
        """
        Initialize the OpenAI provider.

        Args:
            config: Embedding configuration.
            client: Pre-built client; created from config if not provided.
        """
        self.model = config.openai_model
        self.batch_size = config.batch_size
        self.dimensions = config.openai_dimensions

        if client is None:
            client = AsyncOpenAI(
                api_key=config.openai_api_key,
                base_url=config.openai_base_url,
                timeout=config.timeout_seconds,
            )
        self._client = client

    async def test_connection(self) -> bool:
        try:
            await self.embed("test")
            return True
        except EmbeddingError as e:
            logger.debug("OpenAI not reachable", error=str(e))
            return False

    async def embed(self, text: str) -> np.ndarray:
        results = await self.embed_batch([text])
        return results[0]

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Generate embeddings using the OpenAI API, batch_size at a time."""
        all_embeddings: list[np.ndarray] = []

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]

            request: dict[str, Any] = {"input": batch, "model": self.model}
            if self.dimensions is not None:
                request["dimensions"] = self.dimensions

            try:
                response = await self._client.embeddings.create(**request)
            except Exception as e:
                raise EmbeddingError(f"OpenAI embedding request failed: {e}") from e

            for item in sorted(response.data, key=lambda d: d.index):
                all_embeddings.append(_to_vector(item.embedding))

        return all_embeddings

    async def close(self) -> None:
        await self._client.close()


def create_provider(
    name: EmbeddingProviderName,
    config: "EmbeddingConfig",
) -> EmbeddingProvider | None:
    """
    Build a provider by name.

    Returns:
        The provider, or None if it cannot be configured (OpenAI without a key).
    """
    if name == EmbeddingProviderName.OLLAMA:
        return OllamaProvider(config)
    if name == EmbeddingProviderName.OPENAI:
        if not config.openai_api_key:
            return None
        return OpenAIProvider(config)
    return None


class EmbeddingGateway:
    """
    Selects and caches a reachable embedding provider.

    Candidates are tried in order (primary, then fallback). The first one
    that passes its connection test is used for the life of the gateway,
    until reset() is called.
    """

    def __init__(
        self,
        config: "EmbeddingConfig",
        providers: list[EmbeddingProvider] | None = None,
    ) -> None:
        """
        Initialize the gateway.

        Args:
            config: Embedding configuration.
            providers: Candidate providers in priority order; built from
                config if not provided.
        """
        self.config = config

        if providers is None:
            providers = []
            names = [config.provider]
            if config.fallback_provider and config.fallback_provider != config.provider:
                names.append(config.fallback_provider)
            for name in names:
                provider = create_provider(name, config)
                if provider is not None:
                    providers.append(provider)

        self._candidates = providers
        self._provider: EmbeddingProvider | None = None
        self._lock = asyncio.Lock()

    @property
    def active_provider(self) -> EmbeddingProvider | None:
        """The confirmed provider, if one has been selected."""
        return self._provider

    async def get_provider(self) -> EmbeddingProvider:
        """
        Return the confirmed provider, probing candidates on first use.

        Raises:
            EmbeddingUnavailableError: If no candidate is reachable.
        """
        if self._provider is not None:
            return self._provider

        async with self._lock:
            if self._provider is not None:
                return self._provider

            tried = []
            for candidate in self._candidates:
                tried.append(candidate.name)
                if await candidate.test_connection():
                    self._provider = candidate
                    logger.info("Using embedding provider", provider=candidate.name)
                    return candidate
                logger.warning("Embedding provider unavailable", provider=candidate.name)

            raise EmbeddingUnavailableError(
                "No embedding provider available "
                f"(tried: {', '.join(tried) or 'none configured'})"
            )

    async def embed(self, text: str) -> np.ndarray:
        """Embed a single text with the confirmed provider."""
        provider = await self.get_provider()
        return await provider.embed(text)

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """
        Embed texts with the confirmed provider.

        Raises:
            EmbeddingError: If the provider returns the wrong number of vectors.
        """
        if not texts:
            return []

        provider = await self.get_provider()
        vectors = await provider.embed_batch(texts)

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Provider {provider.name} returned {len(vectors)} vectors "
                f"for {len(texts)} texts"
            )

        return [_to_vector(v) for v in vectors]

    def reset(self) -> None:
        """Forget the selected provider so the next call probes again."""
        self._provider = None

    async def close(self) -> None:
        """Close every candidate provider."""
        for candidate in self._candidates:
            await candidate.close()
        self._provider = None
