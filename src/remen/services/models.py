"""
Model Handles

Read-only readiness views and inference entry points for the local models.
The queue and the search engine only see the protocols; the composition
root wires the concrete adapters below.

Design:
    - OllamaLLM: chat completions over HTTP via httpx (non-blocking).
    - SentenceTransformerEmbeddings: CPU-bound inference offloaded with
      ``asyncio.to_thread`` so the event loop stays responsive.
    - Both expose ``is_ready``/``is_generating``/``download_progress``/``error``
      and raise ``InferenceError`` on failure instead of degrading silently.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal, Protocol, TypedDict

import httpx

from remen.core.config import settings
from remen.core.errors import InferenceError, ModelNotReadyError

logger = logging.getLogger(__name__)


class Message(TypedDict):
    role: Literal["system", "user", "assistant"]
    content: str


class OCRDetection(TypedDict):
    text: str
    confidence: float
    bbox: list[float]


class ModelState(Protocol):
    @property
    def is_ready(self) -> bool: ...

    @property
    def is_generating(self) -> bool: ...

    @property
    def download_progress(self) -> float: ...

    @property
    def error(self) -> str | None: ...


class LLMModel(ModelState, Protocol):
    async def generate(self, messages: list[Message]) -> str: ...


class EmbeddingsModel(ModelState, Protocol):
    async def forward(self, text: str) -> list[float]: ...


class OCRModel(ModelState, Protocol):
    """Used by scan capture only; text arrives at the queue as note content."""

    async def forward(self, image_path: str) -> list[OCRDetection]: ...


class ManagedLLM(LLMModel, Protocol):
    """LLM handle the composition root can (re)load."""

    async def load(self) -> bool: ...


class ManagedEmbeddings(EmbeddingsModel, Protocol):
    async def load(self) -> bool: ...


def is_ready(model: ModelState | None) -> bool:
    """A missing handle counts as not ready."""
    return model is not None and model.is_ready


class OllamaLLM:
    """
    LLM handle backed by a local Ollama server.

    ``load()`` probes the server; until it succeeds the handle reports
    ``is_ready == False`` and the queue keeps jobs pending.

    Usage::

        llm = OllamaLLM()
        await llm.load()
        reply = await llm.generate([{"role": "user", "content": "Hello"}])
    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            base_url: Ollama API base URL (default from config).
            model: Model name to use (default from config).
            timeout: Request timeout in seconds (default from config).
            transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        """
        self._base_url = (base_url or settings.OLLAMA_BASE_URL).rstrip("/")
        self._model = model or settings.OLLAMA_MODEL
        self._timeout = timeout or settings.OLLAMA_TIMEOUT
        self._transport = transport
        self._ready = False
        self._generating = False
        self._progress = 0.0
        self._error: str | None = None

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def is_generating(self) -> bool:
        return self._generating

    @property
    def download_progress(self) -> float:
        return self._progress

    @property
    def error(self) -> str | None:
        return self._error

    async def load(self) -> bool:
        """
        Check that Ollama is reachable and serves the configured model.

        Returns:
            True once the handle is ready.
        """
        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self._transport) as client:
                response = await client.get(f"{self._base_url}/api/tags")
                response.raise_for_status()
                listing = response.json()
        except httpx.HTTPError as e:
            self._error = f"Ollama unreachable: {e}"
            logger.warning("LLM not ready (%s): %s", type(e).__name__, e)
            return False
        except ValueError:
            self._error = "Ollama returned an unreadable model list"
            logger.warning("LLM not ready: %s", self._error)
            return False

        names = {m.get("name", "") for m in listing.get("models", [])}
        if not any(n == self._model or n.startswith(f"{self._model}:") for n in names):
            self._error = f"Model '{self._model}' is not pulled"
            logger.warning("LLM not ready: %s", self._error)
            return False

        self._ready = True
        self._progress = 1.0
        self._error = None
        logger.info("LLM ready (model=%s)", self._model)
        return True

    async def generate(self, messages: list[Message]) -> str:
        """
        Run one non-streaming chat completion.

        Raises:
            ModelNotReadyError: If called before ``load()`` succeeded.
            InferenceError: On connection failure, timeout, API error or an
                unreadable response body.
        """
        if not self._ready:
            raise ModelNotReadyError("LLM is not ready")

        payload: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": 0.1},
        }

        self._generating = True
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(f"{self._base_url}/api/chat", json=payload)
                response.raise_for_status()
                content: str = response.json().get("message", {}).get("content", "")
        except httpx.HTTPStatusError as e:
            logger.error("Ollama API error: %s", e.response.text)
            raise InferenceError(f"Ollama API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise InferenceError(f"Ollama request failed: {type(e).__name__}") from e
        except ValueError as e:
            raise InferenceError("Ollama returned an unreadable response body") from e
        finally:
            self._generating = False

        logger.debug("Ollama response generated (model=%s, length=%d)", self._model, len(content))
        return content


class SentenceTransformerEmbeddings:
    """
    Embeddings handle backed by a local sentence-transformers model.

    The import is deferred to ``load()`` so that ``sentence_transformers``
    is not needed at module-import time (keeps test collection fast).
    """

    def __init__(self, model_name: str | None = None) -> None:
        self._model_name = model_name or settings.EMBEDDING_MODEL
        self._model: Any = None
        self._generating = False
        self._error: str | None = None

    @property
    def is_ready(self) -> bool:
        return self._model is not None

    @property
    def is_generating(self) -> bool:
        return self._generating

    @property
    def download_progress(self) -> float:
        return 1.0 if self._model is not None else 0.0

    @property
    def error(self) -> str | None:
        return self._error

    def _load_sync(self) -> Any:
        from sentence_transformers import SentenceTransformer

        return SentenceTransformer(self._model_name)

    async def load(self) -> bool:
        """Load (downloading on first run) the model in a worker thread."""
        if self._model is not None:
            return True
        logger.info("Loading embedding model: %s ...", self._model_name)
        try:
            self._model = await asyncio.to_thread(self._load_sync)
        except Exception as e:  # noqa: BLE001
            self._error = str(e)
            logger.error("Embedding model failed to load: %s", e)
            return False
        self._error = None
        logger.info(
            "Model loaded (dim=%d)",
            self._model.get_sentence_embedding_dimension(),
        )
        return True

    def _encode_sync(self, text: str) -> list[float]:
        # Normalized vectors: cosine similarity reduces to a dot product
        vector = self._model.encode(
            [text],
            normalize_embeddings=True,
            show_progress_bar=False,
        )[0]
        result: list[float] = vector.tolist()
        return result

    async def forward(self, text: str) -> list[float]:
        """
        Embed a single text.

        Raises:
            ModelNotReadyError: If the model is not loaded.
            InferenceError: If encoding fails.
        """
        if self._model is None:
            raise ModelNotReadyError("Embeddings model is not ready")
        self._generating = True
        try:
            return await asyncio.to_thread(self._encode_sync, text)
        except Exception as e:
            raise InferenceError(f"Embedding failed: {e}") from e
        finally:
            self._generating = False
