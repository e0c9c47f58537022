from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Type
import logging
import math

import openai
from openai import OpenAI
import requests

from recallbot.api.llm_config import LLMConfig, OllamaConfig, OpenAIConfig
from recallbot.exceptions import (
    BackendError,
    EmbeddingFormatError,
    ProviderUnavailableError,
)
from recallbot.llm_conn import get_api_key, join_url, request_json, translate_openai_error

logger = logging.getLogger(__name__)


def coerce_vector(values: Any, provider: str) -> List[float]:
    """Validate a backend payload as a non-empty vector of finite floats."""
    if not isinstance(values, (list, tuple)) or len(values) == 0:
        raise EmbeddingFormatError(f"Invalid embedding response format from {provider}")
    vector: List[float] = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise EmbeddingFormatError(
                f"Invalid embedding response format from {provider}: non-numeric element {value!r}"
            )
        value = float(value)
        if not math.isfinite(value):
            raise EmbeddingFormatError(
                f"Invalid embedding response format from {provider}: non-finite element"
            )
        vector.append(value)
    return vector


def model_is_listed(model: str, available: Sequence[str]) -> bool:
    """Whether `model` is among `available`, treating an untagged name as `:latest`."""
    names = set(available)
    if model in names:
        return True
    if ":" not in model:
        return f"{model}:latest" in names
    if model.endswith(":latest"):
        return model[: -len(":latest")] in names
    return False


class EmbeddingBackend:
    """One wire format for embedding requests.

    Subclasses return the raw vector payload from the backend; validation
    and truncation live in :class:`EmbeddingAdapter`.
    """

    provider_name = "unknown"

    def __init__(self, config: LLMConfig) -> None:
        self.config = config

    @property
    def model(self) -> str:
        return self.config.model

    def list_models(self) -> List[str]:
        raise NotImplementedError

    def request_embedding(self, text: str) -> Any:
        raise NotImplementedError


class OllamaEmbeddingBackend(EmbeddingBackend):
    """Ollama's native API, which returns the vector directly."""

    provider_name = "ollama"

    def __init__(self, config: OllamaConfig, session: Optional[requests.Session] = None) -> None:
        super().__init__(config)
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def list_models(self) -> List[str]:
        payload = request_json(
            self.session,
            "get",
            join_url(self.config.base_url, "/api/tags"),
            provider=self.provider_name,
            timeout=self.config.timeout,
        )
        models = payload.get("models") if isinstance(payload, dict) else None
        return [item.get("name") for item in models or [] if isinstance(item, dict)]

    def request_embedding(self, text: str) -> Any:
        payload = request_json(
            self.session,
            "post",
            join_url(self.config.base_url, "/api/embeddings"),
            provider=self.provider_name,
            timeout=self.config.timeout,
            payload={"model": self.model, "prompt": text},
        )
        if not isinstance(payload, dict):
            return None
        return payload.get("embedding")


class OpenAIEmbeddingBackend(EmbeddingBackend):
    """OpenAI-compatible `/embeddings` endpoint, which wraps vectors in `data`."""

    provider_name = "docker-model-runner"

    def __init__(self, config: OpenAIConfig, client: Optional[OpenAI] = None) -> None:
        super().__init__(config)
        self.client = client or self.create_client()

    @property
    def api_key(self) -> str:
        if self.config.api_key is not None:
            return self.config.api_key
        return get_api_key(model_name=self.model, model_base_url=self.config.base_url)

    def create_client(self) -> OpenAI:
        # Retries are disabled: a single failed call fails the operation.
        return OpenAI(
            api_key=self.api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            max_retries=0,
        )

    def list_models(self) -> List[str]:
        try:
            return [model.id for model in self.client.models.list()]
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc, self.provider_name) from exc

    def request_embedding(self, text: str) -> Any:
        try:
            response = self.client.embeddings.create(
                model=self.model,
                input=text,
                encoding_format="float",
            )
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc, self.provider_name) from exc
        data = getattr(response, "data", None)
        if not data:
            return None
        return getattr(data[0], "embedding", None)


EMBEDDING_BACKENDS: Dict[Type[LLMConfig], Type[EmbeddingBackend]] = {
    OllamaConfig: OllamaEmbeddingBackend,
    OpenAIConfig: OpenAIEmbeddingBackend,
}


class EmbeddingAdapter:
    """Turns text into fixed-length vectors through a pluggable backend.

    The backend variant is chosen once, from the type of the config, so
    callers never see which wire format is in use.
    """

    def __init__(
        self,
        config: LLMConfig,
        *,
        max_chars: int = 8000,
        truncation_marker: str = "...",
        backend: Optional[EmbeddingBackend] = None,
    ) -> None:
        """Create an embedding adapter.

        Parameters
        ----------
        config : LLMConfig
            Backend configuration. `OllamaConfig` selects the native API,
            `OpenAIConfig` the OpenAI-compatible one. `config.model` is the
            embedding model.
        max_chars : int, optional
            Longer texts are truncated to this many characters, plus the
            truncation marker, before submission.
        truncation_marker : str, optional
            Appended to truncated texts.
        backend : EmbeddingBackend, optional
            Use this backend instead of building one from `config`.
        """
        self.config = config
        self.max_chars = max_chars
        self.truncation_marker = truncation_marker
        if backend is None:
            try:
                backend_class = EMBEDDING_BACKENDS[type(config)]
            except KeyError as exc:
                raise ValueError(
                    f"No embedding backend for config type {type(config).__name__}."
                ) from exc
            backend = backend_class(config)
        self.backend = backend

    @property
    def provider_name(self) -> str:
        return self.backend.provider_name

    @property
    def model(self) -> str:
        return self.backend.model

    def test_connection(self) -> None:
        """Check that the backend is reachable and serves the configured model.

        Raises
        ------
        ProviderUnavailableError
        """
        try:
            available = self.backend.list_models()
        except BackendError as exc:
            raise ProviderUnavailableError(
                f"Failed to connect to {self.provider_name} for embeddings: {exc}"
            ) from exc
        if not model_is_listed(self.model, available):
            raise ProviderUnavailableError(
                f"Embedding model '{self.model}' is not available on {self.provider_name}."
            )
        logger.info("[%s] Embeddings connection test successful", self.provider_name)

    def truncate(self, text: str) -> str:
        if len(text) <= self.max_chars:
            return text
        truncated = text[: self.max_chars] + self.truncation_marker
        logger.debug(
            "[%s] Truncated text from %d to %d characters for embeddings",
            self.provider_name,
            len(text),
            len(truncated),
        )
        return truncated

    def embed(self, text: str) -> List[float]:
        """Embed a single text.

        Raises
        ------
        EmbeddingFormatError
            If the backend response holds no well-formed numeric vector.
        BackendConnectionRefused, BackendTimeout, BackendBadStatus
            On transport failures.
        """
        payload = self.backend.request_embedding(self.truncate(text))
        return coerce_vector(payload, self.provider_name)

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed texts one at a time, preserving order.

        Any failure fails the whole batch with `EmbeddingFormatError`.
        """
        embeddings: List[List[float]] = []
        for index, text in enumerate(texts):
            try:
                embeddings.append(self.embed(text))
            except BackendError as exc:
                raise EmbeddingFormatError(
                    f"Batch embedding failed at item {index}: {exc}"
                ) from exc
        return embeddings

    def __call__(self, texts: Sequence[str]) -> List[List[float]]:
        return self.embed_batch(texts)
