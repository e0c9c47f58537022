from ...api.memory import MemoryManagerConfig
from .embedding import EmbeddingAdapter, OllamaEmbeddingBackend, OpenAIEmbeddingBackend
from .manager import MemoryManager, format_memories
from .types import MemoryRecord, MemoryState, SearchResult
from .vector_store import SQLiteVectorStore, VectorStore, cosine_similarity

__all__ = [
    "EmbeddingAdapter",
    "MemoryManager",
    "MemoryManagerConfig",
    "MemoryRecord",
    "MemoryState",
    "OllamaEmbeddingBackend",
    "OpenAIEmbeddingBackend",
    "SQLiteVectorStore",
    "SearchResult",
    "VectorStore",
    "cosine_similarity",
    "format_memories",
]
