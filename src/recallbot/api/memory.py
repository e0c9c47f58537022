from dataclasses import dataclass

from recallbot.api.base import BaseConfig


@dataclass
class MemoryManagerConfig(BaseConfig):
    database_path: str = "./data/memory.sqlite"
    """Path of the SQLite file holding memory records. Use `:memory:` for
    an ephemeral store."""

    max_results: int = 5
    """The number of results to return from the vector store."""

    similarity_threshold: float = 0.7
    """The minimum cosine similarity for a result to be considered relevant."""

    max_embedding_chars: int = 8000
    """Texts longer than this are truncated before being embedded."""

    truncation_marker: str = "..."
    """Appended to texts truncated for embedding."""
