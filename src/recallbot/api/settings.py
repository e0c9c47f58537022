from dataclasses import dataclass, field
from typing import Mapping, Optional, Type
import logging
import os
from urllib.parse import urlparse

from recallbot.api.base import BaseConfig, env_number, env_str
from recallbot.api.llm_config import LLMConfig, OllamaConfig, OpenAIConfig
from recallbot.api.memory import MemoryManagerConfig

logger = logging.getLogger(__name__)


DEFAULT_SYSTEM_PROMPT = """You are a concise, technically precise assistant.

Memory: you may be shown "RETRIEVED MEMORIES FOR EVALUATION". These are past
conversations, not facts. They may be outdated, incorrect or incomplete.
Evaluate them critically against your current knowledge and any new context,
and always prioritize accuracy over consistency with past responses.

Rules:
1. Keep answers short unless the user asks for more detail.
2. When the answer is code, return it in a single clean code block.
3. Match the tone and terminology of the user.
4. Mention when you are correcting or updating something you said before."""

PROVIDER_CONFIGS = {
    "ollama": OllamaConfig,
    "docker-model-runner": OpenAIConfig,
}

DOCKER_MODEL_RUNNER_API_PATH = "/engines/llama.cpp/v1"

EMBEDDING_MODELS = {
    OllamaConfig: "nomic-embed-text",
    OpenAIConfig: "ai/mxbai-embed-large:latest",
}


def get_provider_config_class(name: Optional[str]) -> Type[LLMConfig]:
    """Map a provider name to its config class; unknown names fall back to Ollama."""
    if name not in PROVIDER_CONFIGS:
        if name:
            logger.warning("Unknown LLM provider '%s'; defaulting to 'ollama'.", name)
        return OllamaConfig
    return PROVIDER_CONFIGS[name]


def resolve_base_url(config_class: Type[LLMConfig], base_url: str) -> str:
    """Expand a bare Docker Model Runner host into its OpenAI-compatible root.

    Environment files give the runner as a host (``http://localhost:12434``);
    the OpenAI SDK needs the API root (``.../engines/llama.cpp/v1``). URLs
    that already carry a path are kept as they are.
    """
    if config_class is not OpenAIConfig:
        return base_url
    if urlparse(base_url).path.strip("/"):
        return base_url
    return base_url.rstrip("/") + DOCKER_MODEL_RUNNER_API_PATH


@dataclass
class AssistantConfig(BaseConfig):
    """Everything needed to assemble a chat task manager."""

    llm: LLMConfig = field(default_factory=OllamaConfig)
    """Backend used for the reasoning pipeline's completions."""

    embeddings: LLMConfig = field(
        default_factory=lambda: OllamaConfig(model="nomic-embed-text", timeout=30.0)
    )
    """Backend used to embed memories. `model` is the embedding model."""

    memory: MemoryManagerConfig = field(default_factory=MemoryManagerConfig)
    """Long-term memory settings."""

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    """Persona prepended to every reasoning phase."""

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AssistantConfig":
        """Build a configuration from environment variables.

        Timeouts are given in milliseconds in the environment and converted
        to seconds. Provider-specific defaults are used for any URL or model
        that is not set.
        """
        if environ is None:
            environ = os.environ

        llm_provider = env_str(environ, "LLM_PROVIDER")
        llm_class = get_provider_config_class(llm_provider)
        llm_defaults = llm_class()
        llm = llm_class(
            model=env_str(environ, "LLM_MODEL", llm_defaults.model),
            base_url=resolve_base_url(
                llm_class, env_str(environ, "LLM_BASE_URL", llm_defaults.base_url)
            ),
            timeout=env_number(environ, "LLM_TIMEOUT", 60000) / 1000,
        )

        embeddings_class = get_provider_config_class(
            env_str(environ, "EMBEDDINGS_PROVIDER", llm_provider)
        )
        embeddings_defaults = embeddings_class()
        embeddings = embeddings_class(
            model=env_str(environ, "EMBEDDINGS_MODEL", EMBEDDING_MODELS[embeddings_class]),
            base_url=resolve_base_url(
                embeddings_class,
                env_str(environ, "EMBEDDINGS_BASE_URL", embeddings_defaults.base_url),
            ),
            timeout=env_number(environ, "EMBEDDINGS_TIMEOUT", 30000) / 1000,
        )

        memory_defaults = MemoryManagerConfig()
        memory = MemoryManagerConfig(
            database_path=env_str(environ, "DATABASE_PATH", memory_defaults.database_path),
            max_results=env_number(environ, "MAX_MEMORY_RESULTS", memory_defaults.max_results),
            similarity_threshold=env_number(
                environ, "SIMILARITY_THRESHOLD", memory_defaults.similarity_threshold, cast=float
            ),
        )

        return cls(
            llm=llm,
            embeddings=embeddings,
            memory=memory,
            system_prompt=env_str(environ, "SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT),
        )
