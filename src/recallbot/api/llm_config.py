from dataclasses import dataclass

from recallbot.api.base import BaseConfig


@dataclass
class LLMConfig(BaseConfig):
    """A base class for LLM backend configurations.

    The concrete subclass decides which backend variant is used, both for
    chat completions and for embeddings.
    """

    provider_name = "unknown"

    model: str = None
    """The name of the model to use."""

    base_url: str = None
    """The base URL of the inference endpoint."""

    timeout: float = 60.0
    """Request timeout in seconds."""

    temperature: float = 0.7
    """Sampling temperature for chat completions."""


@dataclass
class OllamaConfig(LLMConfig):
    """Backend exposing Ollama's native API (`/api/chat`, `/api/embeddings`)."""

    provider_name = "ollama"

    model: str = "llama2"
    """The name of the model to use."""

    base_url: str = "http://localhost:11434"
    """The base URL of the Ollama server."""


@dataclass
class OpenAIConfig(LLMConfig):
    """Backend speaking the OpenAI-compatible schema, e.g. Docker Model Runner."""

    provider_name = "docker-model-runner"

    model: str = "ai/smollm2"
    """The name of the model to use."""

    base_url: str = "http://localhost:12434/engines/llama.cpp/v1"
    """The base URL of the OpenAI-compatible endpoint, including `/v1`."""

    api_key: str = None
    """The API key. Inferred from the environment when not set."""

    max_tokens: int = 1000
    """Maximum number of tokens generated per completion."""
