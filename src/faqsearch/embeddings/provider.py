"""
Embedding providers for FAQ indexing and search.

Turns text into vectors with:
- Input validation (non-empty, at most 8191 characters)
- An in-memory TTL cache plus an optional persistent cache in the corpus store
- Automatic retry with exponential backoff for transient failures
- Error classification (rate limit, unavailable, other)
- Session statistics for reporting

Two implementations share that behaviour: OpenAIEmbeddingProvider calls an
OpenAI-compatible HTTP API, SentenceTransformerProvider runs a local model.
"""

import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

import httpx
import numpy as np
from cachetools import TTLCache
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .models import BatchEmbeddingResult, EmbeddingResult, ProviderSessionStats

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer
    from ..config import Settings
    from ..database import FAQDatabase

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 8191


class EmbeddingProviderError(Exception):
    """Base exception for embedding provider errors."""
    pass


class EmbeddingRateLimitError(EmbeddingProviderError):
    """Raised when the provider rejects a request for exceeding its rate limit."""
    pass


class EmbeddingUnavailableError(EmbeddingProviderError):
    """Raised when the provider cannot be reached or rejects our credentials."""
    pass


class EmbeddingValidationError(EmbeddingProviderError, ValueError):
    """Raised for text that cannot be embedded (empty or too long)."""
    pass


def text_hash(text: str) -> str:
    """sha256 hex digest used as the cache key for a trimmed text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def validate_text(text: str) -> str:
    """
    Check a text can be embedded.

    Args:
        text: Raw input text

    Returns:
        The trimmed text

    Raises:
        EmbeddingValidationError: If the text is empty or too long
    """
    if not isinstance(text, str):
        raise EmbeddingValidationError("Text must be a non-empty string")

    trimmed = text.strip()
    if not trimmed:
        raise EmbeddingValidationError("Text cannot be empty")
    if len(trimmed) > MAX_TEXT_LENGTH:
        raise EmbeddingValidationError(
            f"Text exceeds maximum length of {MAX_TEXT_LENGTH} characters"
        )
    return trimmed


class EmbeddingProvider(ABC):
    """
    Base class with caching, validation, retry and statistics.

    Subclasses implement _embed_texts() for one raw call to the backend.

    Example:
        provider = OpenAIEmbeddingProvider(api_key="sk-...")
        result = provider.embed("How do I reset my password?")
        batch = provider.embed_batch(["first text", "second text"])
    """

    name = "base"

    def __init__(
        self,
        model: str,
        dimension: int,
        db: Optional["FAQDatabase"] = None,
        max_retries: int = 3,
        cache_size: int = 2048,
        cache_ttl: float = 3600,
    ):
        """
        Initialize provider state.

        Args:
            model: Model tag recorded alongside every vector
            dimension: Expected vector length
            db: Corpus store used as a persistent embedding cache (optional)
            max_retries: Attempts per backend call when retry is enabled
            cache_size: Maximum entries in the in-memory cache
            cache_ttl: Seconds an in-memory cache entry stays valid
        """
        self.model = model
        self.dimension = dimension
        self.db = db
        self.max_retries = max(1, max_retries)
        self.stats = ProviderSessionStats()
        self._cache: TTLCache = TTLCache(maxsize=cache_size, ttl=cache_ttl)
        self._lock = threading.Lock()
        self._retry_wait = wait_exponential(multiplier=1, min=1, max=10)

    @abstractmethod
    def _embed_texts(self, texts: list[str]) -> tuple[list[np.ndarray], int]:
        """
        Embed texts with one backend call.

        Returns:
            Tuple of (vectors aligned with texts, tokens used)
        """

    def _retryable_errors(self) -> tuple[type[BaseException], ...]:
        return (EmbeddingRateLimitError,)

    def _call(self, texts: list[str], retry: bool) -> tuple[list[np.ndarray], int]:
        """Call the backend, retrying transient errors when asked."""
        if not retry:
            return self._embed_texts(texts)

        for attempt in Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=self._retry_wait,
            retry=retry_if_exception_type(self._retryable_errors()),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return self._embed_texts(texts)

    def _check_dimension(self, vector: np.ndarray) -> np.ndarray:
        vector = np.asarray(vector, dtype=np.float32).reshape(-1)
        if vector.shape[0] != self.dimension:
            raise EmbeddingProviderError(
                f"Model {self.model} returned {vector.shape[0]} dimensions, "
                f"expected {self.dimension}"
            )
        return vector

    # =========================================================================
    # Cache
    # =========================================================================

    def _cache_get(self, key: str) -> Optional[np.ndarray]:
        with self._lock:
            vector = self._cache.get(key)
        if vector is not None:
            return vector

        if self.db is None:
            return None

        try:
            cached = self.db.get_cached_embedding(key)
        except Exception as e:
            logger.warning(f"Embedding cache read failed: {e}")
            return None

        if cached is None:
            return None
        vector, model = cached
        if model != self.model or vector.shape[0] != self.dimension:
            return None

        with self._lock:
            self._cache[key] = vector
        return vector

    def _cache_put(
        self, key: str, text: str, vector: np.ndarray, persist: bool = True
    ) -> None:
        with self._lock:
            self._cache[key] = vector

        if self.db is None or not persist:
            return
        try:
            self.db.put_cached_embedding(key, text, vector, self.model)
        except Exception as e:
            logger.warning(f"Embedding cache write failed: {e}")

    def clear_memory_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    # =========================================================================
    # Public API
    # =========================================================================

    def embed(self, text: str, *, retry: bool = True) -> EmbeddingResult:
        """
        Embed a single text.

        Args:
            text: Text to embed
            retry: Retry transient backend errors (the query path passes False)

        Returns:
            EmbeddingResult

        Raises:
            EmbeddingValidationError: Empty or over-long text
            EmbeddingRateLimitError: Still rate limited after retries
            EmbeddingUnavailableError: Backend unreachable or credentials rejected
            EmbeddingProviderError: Any other backend failure
        """
        trimmed = validate_text(text)
        key = text_hash(trimmed)

        cached = self._cache_get(key)
        with self._lock:
            self.stats.total_generated += 1
            if cached is not None:
                self.stats.cache_hits += 1
            else:
                self.stats.cache_misses += 1

        if cached is not None:
            return EmbeddingResult(
                vector=cached, tokens_used=0, model=self.model, from_cache=True
            )

        vectors, tokens = self._call([trimmed], retry)
        vector = self._check_dimension(vectors[0])

        with self._lock:
            self.stats.api_calls += 1
            self.stats.total_tokens_used += tokens

        self._cache_put(key, trimmed, vector)
        return EmbeddingResult(vector=vector, tokens_used=tokens, model=self.model)

    def embed_batch(
        self,
        texts: list[str],
        *,
        retry: bool = True,
        persist: bool = True,
    ) -> BatchEmbeddingResult:
        """
        Embed several texts with as few backend calls as possible.

        Invalid texts fail individually and are reported in errors. Cached
        texts are served without a backend call. A failure of the backend
        call itself is raised, since it affects every uncached text.

        Args:
            texts: Texts to embed
            retry: Retry transient backend errors
            persist: Write new vectors to the persistent cache table

        Returns:
            BatchEmbeddingResult aligned with texts
        """
        batch = BatchEmbeddingResult(results=[None] * len(texts))
        pending: list[tuple[int, str, str]] = []

        for index, text in enumerate(texts):
            try:
                trimmed = validate_text(text)
            except EmbeddingValidationError as e:
                batch.errors.append({"index": index, "error": str(e)})
                continue

            key = text_hash(trimmed)
            cached = self._cache_get(key)
            with self._lock:
                self.stats.total_generated += 1
                if cached is not None:
                    self.stats.cache_hits += 1
                else:
                    self.stats.cache_misses += 1

            if cached is not None:
                batch.results[index] = EmbeddingResult(
                    vector=cached, tokens_used=0, model=self.model, from_cache=True
                )
            else:
                pending.append((index, key, trimmed))

        if not pending:
            return batch

        vectors, tokens = self._call([p[2] for p in pending], retry)
        with self._lock:
            self.stats.api_calls += 1
            self.stats.total_tokens_used += tokens
        batch.total_tokens = tokens

        per_item, remainder = divmod(tokens, len(pending))
        for position, ((index, key, trimmed), raw) in enumerate(zip(pending, vectors)):
            try:
                vector = self._check_dimension(raw)
            except EmbeddingProviderError as e:
                batch.errors.append({"index": index, "error": str(e)})
                continue

            self._cache_put(key, trimmed, vector, persist=persist)
            batch.results[index] = EmbeddingResult(
                vector=vector,
                tokens_used=per_item + (1 if position < remainder else 0),
                model=self.model,
            )

        return batch

    def health_check(self) -> dict:
        """Report configuration state without calling the backend."""
        return {
            "healthy": True,
            "provider": self.name,
            "model": self.model,
            "dimension": self.dimension,
        }

    def close(self) -> None:
        """Release backend resources."""


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    Provider for OpenAI-compatible /embeddings endpoints.

    Features:
    - Connection pooling via httpx
    - Inputs sent in sub-batches of 25 per request
    - 3 attempts with exponential backoff on rate limits and network errors

    Example:
        provider = OpenAIEmbeddingProvider(api_key=os.environ["OPENAI_API_KEY"])
        vector = provider.embed("How do refunds work?").vector
    """

    name = "openai"
    SUB_BATCH_SIZE = 25

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "text-embedding-3-small",
        dimension: int = 1536,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        **kwargs,
    ):
        """
        Initialize the HTTP client.

        Args:
            api_key: Bearer token (requests fail as unavailable without one)
            model: Embedding model name
            dimension: Requested vector length
            base_url: API root
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests use httpx.MockTransport)
            **kwargs: Passed to EmbeddingProvider
        """
        super().__init__(model=model, dimension=dimension, **kwargs)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def _retryable_errors(self) -> tuple[type[BaseException], ...]:
        return (EmbeddingRateLimitError, httpx.TransportError)

    def _handle_response(self, response: httpx.Response) -> dict:
        """
        Handle API response and raise appropriate exceptions.

        Raises:
            EmbeddingRateLimitError: If rate limited (429)
            EmbeddingUnavailableError: If credentials are rejected (401/403)
            EmbeddingProviderError: For other HTTP errors
        """
        if response.status_code == 429:
            raise EmbeddingRateLimitError("Rate limited by embedding API")

        if response.status_code in (401, 403):
            raise EmbeddingUnavailableError(
                f"Embedding API rejected credentials ({response.status_code})"
            )

        if response.status_code >= 400:
            raise EmbeddingProviderError(
                f"API error {response.status_code}: {response.text[:200]}"
            )

        return response.json()

    def _embed_texts(self, texts: list[str]) -> tuple[list[np.ndarray], int]:
        if not self.api_key:
            raise EmbeddingUnavailableError("No API key configured for embedding provider")

        vectors: list[np.ndarray] = []
        tokens = 0

        for i in range(0, len(texts), self.SUB_BATCH_SIZE):
            chunk = texts[i : i + self.SUB_BATCH_SIZE]
            logger.debug(f"Request: POST /embeddings ({len(chunk)} inputs)")
            response = self._client.post(
                "/embeddings",
                json={"input": chunk, "model": self.model, "dimensions": self.dimension},
            )
            data = self._handle_response(response)

            items = sorted(data.get("data") or [], key=lambda d: d.get("index", 0))
            if len(items) != len(chunk):
                raise EmbeddingProviderError(
                    f"Expected {len(chunk)} embeddings, got {len(items)}"
                )
            vectors.extend(np.asarray(item["embedding"], dtype=np.float32) for item in items)
            tokens += int((data.get("usage") or {}).get("total_tokens", 0))

        return vectors, tokens

    def _call(self, texts: list[str], retry: bool) -> tuple[list[np.ndarray], int]:
        try:
            return super()._call(texts, retry)
        except httpx.ConnectError as e:
            raise EmbeddingUnavailableError(f"Cannot reach embedding API: {e}") from e
        except httpx.HTTPError as e:
            raise EmbeddingProviderError(f"Embedding request failed: {e}") from e

    def health_check(self) -> dict:
        status = super().health_check()
        if not self.api_key:
            status["healthy"] = False
            status["message"] = "OPENAI_API_KEY not set"
        return status

    def close(self) -> None:
        self._client.close()


class SentenceTransformerProvider(EmbeddingProvider):
    """
    Provider that runs a sentence-transformers model in process.

    The model is loaded on first use. Token usage is approximated by
    whitespace-separated words.

    Example:
        provider = SentenceTransformerProvider()
        vectors = provider.embed_batch(["refund policy", "shipping times"])
    """

    name = "local"

    def __init__(
        self,
        model: str = "all-MiniLM-L6-v2",
        dimension: int = 384,
        device: Optional[str] = None,
        **kwargs,
    ):
        """
        Initialize provider with lazy model loading.

        Args:
            model: sentence-transformers model name
            dimension: Expected vector length
            device: 'cpu', 'cuda', 'mps', or None for auto-detect
            **kwargs: Passed to EmbeddingProvider
        """
        super().__init__(model=model, dimension=dimension, **kwargs)
        self.device = device
        self._model: Optional["SentenceTransformer"] = None

    @property
    def encoder(self) -> "SentenceTransformer":
        """
        Lazy load the model on first use.

        This defers the 2-3 second loading time until embeddings are actually needed.
        """
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer

                logger.info(f"Loading embedding model: {self.model}")
                self._model = SentenceTransformer(self.model, device=self.device)
            except (ImportError, OSError) as e:
                raise EmbeddingUnavailableError(
                    f"Cannot load embedding model {self.model}: {e}"
                ) from e
            logger.info(f"Model loaded on device: {self._model.device}")
        return self._model

    def _embed_texts(self, texts: list[str]) -> tuple[list[np.ndarray], int]:
        embeddings = self.encoder.encode(
            texts,
            normalize_embeddings=True,
            batch_size=len(texts),
        )
        embeddings = np.asarray(embeddings, dtype=np.float32)
        tokens = sum(len(t.split()) for t in texts)
        return list(embeddings), tokens

    def health_check(self) -> dict:
        status = super().health_check()
        status["loaded"] = self._model is not None
        return status


def create_provider(
    settings: "Settings",
    db: Optional["FAQDatabase"] = None,
) -> EmbeddingProvider:
    """
    Build the provider named by settings.embedding_provider.

    Args:
        settings: Runtime settings
        db: Corpus store used as persistent embedding cache

    Returns:
        Configured EmbeddingProvider
    """
    if settings.embedding_provider == "openai":
        return OpenAIEmbeddingProvider(
            api_key=settings.api_key,
            model=settings.embedding_model,
            dimension=settings.embedding_dimension,
            base_url=settings.api_base_url,
            timeout=settings.embedding_timeout,
            db=db,
            max_retries=settings.embedding_max_retries,
        )

    if settings.embedding_provider == "local":
        return SentenceTransformerProvider(
            model=settings.embedding_model,
            dimension=settings.embedding_dimension,
            db=db,
            max_retries=settings.embedding_max_retries,
        )

    raise ValueError(f"Unknown embedding provider: {settings.embedding_provider}")
