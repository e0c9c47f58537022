from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional
import logging
import threading

from recallbot.api.memory import MemoryManagerConfig
from recallbot.exceptions import InitializationError, MemoryWriteError, NotInitializedError
from recallbot.util import get_timestamp, shorten, timestamp_to_iso

from .embedding import EmbeddingAdapter
from .types import MemoryRecord, MemoryState, SearchResult
from .vector_store import SQLiteVectorStore, VectorStore

logger = logging.getLogger(__name__)

FormatterFn = Callable[[List[SearchResult]], str]

DEFAULT_USER_LABEL = "User"

_SINGLE_MEMORY_INSTRUCTIONS = [
    "Compare this past response with your current knowledge",
    "Consider whether the information may have changed since this conversation",
    "Determine whether the previous answer is still accurate and complete",
    "If the memory is outdated or incorrect, provide an updated answer",
    "If the memory is accurate, you may reference it but add any new insights",
    "Always prioritize accuracy over consistency with past responses",
]

_MULTI_MEMORY_INSTRUCTIONS = [
    "Review each past conversation critically",
    "Identify which information is still accurate and which may be outdated",
    "Look for contradictions between memories or with your current knowledge",
    "Synthesize the best information from multiple sources",
    "Provide the most accurate and up-to-date answer possible",
    "You may reference past conversations but are not bound by them",
    "If memories contain errors, correct them in your response",
    "Mention when you are updating or correcting previous information",
]


def format_memories(results: List[SearchResult]) -> str:
    """Render search results as a block of text for the reasoning prompt.

    Returns an empty string for no results. A single result gets framing
    that asks the model to check it for staleness; two or more get numbered
    framing that asks the model to reconcile and synthesize them.
    """
    if not results:
        return ""

    lines = [
        "",
        "--- RETRIEVED MEMORIES FOR EVALUATION ---",
        "IMPORTANT: These are past conversations that may or may not be accurate or current.",
        "You must evaluate them against your current knowledge and any new context provided.",
        "",
    ]
    if len(results) == 1:
        result = results[0]
        lines.append(f"Past conversation ({_describe(result)}):")
        lines.append(f"{_speaker_label(result.record)}: {result.record.user_input}")
        lines.append(f"Previous Assistant Response: {result.record.bot_response}")
        lines.append("")
        lines.append("--- END RETRIEVED MEMORY ---")
        lines.append("")
        lines.append("EVALUATION INSTRUCTIONS:")
        instructions = _SINGLE_MEMORY_INSTRUCTIONS
    else:
        lines.append(f"Found {len(results)} potentially relevant past conversations:")
        lines.append("")
        for index, result in enumerate(results, start=1):
            lines.append(f"Memory {index} ({_describe(result)}):")
            lines.append(f"{_speaker_label(result.record)}: {result.record.user_input}")
            lines.append(f"Previous Response: {result.record.bot_response}")
            lines.append("")
        lines.append("--- END RETRIEVED MEMORIES ---")
        lines.append("")
        lines.append("EVALUATION AND SYNTHESIS INSTRUCTIONS:")
        instructions = _MULTI_MEMORY_INSTRUCTIONS
    lines.extend(f"• {item}" for item in instructions)
    return "\n".join(lines) + "\n\n"


def _describe(result: SearchResult) -> str:
    return f"similarity: {result.similarity:.3f}, from {timestamp_to_iso(result.record.timestamp)}"


def _speaker_label(record: MemoryRecord) -> str:
    return record.user_name or DEFAULT_USER_LABEL


class MemoryManager:
    """Stores conversation turns and retrieves relevant ones for new queries.

    The manager composes an :class:`EmbeddingAdapter` and a vector store.
    It moves through ``UNINITIALIZED -> INITIALIZING -> READY``:

    - :meth:`store_memory`, :meth:`search_memories` and
      :meth:`enhance_context` initialize on demand.
    - :meth:`delete_memory`, :meth:`get_recent_memories`, :meth:`get_stats`
      and :meth:`perform_maintenance` require an explicit
      :meth:`initialize` first and raise `NotInitializedError` otherwise.

    Retrieval is best effort: search and enhancement never raise, they
    degrade to "no memories". Writes raise `MemoryWriteError`.
    """

    def __init__(
        self,
        embedder: EmbeddingAdapter,
        *,
        config: Optional[MemoryManagerConfig] = None,
        vector_store: Optional[VectorStore] = None,
        formatter: Optional[FormatterFn] = None,
    ) -> None:
        """Initialise a memory manager with the supplied components.

        Parameters
        ----------
        embedder : EmbeddingAdapter
            Converts text into embeddings and checks backend availability.
        config : MemoryManagerConfig, optional
            Database path, result limit and similarity threshold.
        vector_store : VectorStore, optional
            Backend used to persist and query memories; defaults to a
            SQLite store at `config.database_path`.
        formatter : Callable[[List[SearchResult]], str], optional
            Converts search results into text injected into the prompt;
            defaults to :func:`format_memories`.
        """
        self.embedder = embedder
        self.config = config or MemoryManagerConfig()
        self.vector_store = vector_store or SQLiteVectorStore(
            self.config.database_path,
            similarity_threshold=self.config.similarity_threshold,
        )
        self.formatter = formatter or format_memories
        self._state = MemoryState.UNINITIALIZED
        self._init_lock = threading.Lock()

    @property
    def state(self) -> MemoryState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is MemoryState.READY

    # --- Lifecycle --------------------------------------------------------

    def initialize(self) -> None:
        """Check the embedding backend and open the store.

        Safe to call again after a failure.

        Raises
        ------
        InitializationError
        """
        with self._init_lock:
            if self._state is MemoryState.READY:
                return
            logger.info("Initializing memory manager...")
            self._state = MemoryState.INITIALIZING
            try:
                self.embedder.test_connection()
                self.vector_store.open()
                memory_count = self.vector_store.count()
            except Exception as exc:
                self._state = MemoryState.UNINITIALIZED
                logger.error("Failed to initialize memory manager: %s", exc)
                raise InitializationError(f"Memory manager initialization failed: {exc}") from exc
            self._state = MemoryState.READY
        logger.info("Memory manager ready with %d stored memories", memory_count)

    def ensure_ready(self) -> None:
        if not self.is_ready:
            raise NotInitializedError()

    def _auto_initialize(self) -> None:
        if not self.is_ready:
            self.initialize()

    def close(self) -> None:
        with self._init_lock:
            self.vector_store.close()
            self._state = MemoryState.UNINITIALIZED
        logger.info("Memory manager closed")

    # --- Write path -------------------------------------------------------

    def store_memory(
        self,
        user_input: str,
        bot_response: str,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        user_name: Optional[str] = None,
    ) -> MemoryRecord:
        """Embed `user_input` and persist it together with `bot_response`.

        Raises
        ------
        MemoryWriteError
            Wrapping the initialization, embedding or storage failure.
        """
        try:
            self._auto_initialize()
            embedding = self.embedder.embed(user_input)
            record = MemoryRecord(
                timestamp=get_timestamp(as_int=True),
                user_input=user_input,
                bot_response=bot_response,
                embedding=embedding,
                channel_id=channel_id,
                user_id=user_id,
                user_name=user_name,
                metadata=dict(metadata) if metadata else None,
            )
            stored = self.vector_store.put(record)
        except Exception as exc:
            logger.error("Error storing memory: %s", exc)
            raise MemoryWriteError(f"Failed to store memory: {exc}") from exc
        logger.info("Memory stored successfully with id %d", stored.id)
        return stored

    def delete_memory(self, record_id: int) -> bool:
        self.ensure_ready()
        return self.vector_store.delete_by_id(record_id)

    def perform_maintenance(self) -> None:
        self.ensure_ready()
        logger.info("Starting memory system maintenance...")
        self.vector_store.compact()
        logger.info("Memory system maintenance completed")

    # --- Read path --------------------------------------------------------

    def search_memories(
        self,
        query: str,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[SearchResult]:
        """Return stored memories similar to `query`, most similar first.

        Any failure (initialization, embedding or store) is logged and
        results in an empty list.
        """
        if limit is None:
            limit = self.config.max_results
        try:
            self._auto_initialize()
            logger.debug("Searching memories for query: %r", shorten(query))
            embedding = self.embedder.embed(query)
            results = self.vector_store.search(
                embedding,
                limit=limit,
                channel_id=channel_id,
                user_id=user_id,
            )
        except Exception as exc:
            logger.warning("Error searching memories; continuing without them: %s", exc)
            return []
        logger.info("Found %d relevant memories", len(results))
        return results

    def get_recent_memories(
        self,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[MemoryRecord]:
        self.ensure_ready()
        if limit is None:
            limit = self.config.max_results
        return self.vector_store.recent(limit=limit, channel_id=channel_id, user_id=user_id)

    def format_for_prompt(self, results: List[SearchResult]) -> str:
        if not results:
            return ""
        return self.formatter(results)

    def enhance_context(
        self,
        query: str,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> str:
        """Prefix `query` with relevant memories, if there are any.

        With memories, returns the memory block followed by
        ``Current Question: [<name> asks: ]<query>``. Without memories but
        with a display name, returns ``<name> asks: <query>``. Otherwise, or
        on any failure, returns `query` unchanged.
        """
        try:
            results = self.search_memories(query, channel_id=channel_id, user_id=user_id)
            memory_context = self.format_for_prompt(results)
        except Exception as exc:
            logger.warning("Error enhancing context with memories: %s", exc)
            return query

        user_prefix = f"{user_name} asks: " if user_name else ""
        if memory_context:
            return f"{memory_context}\nCurrent Question: {user_prefix}{query}"
        if user_prefix:
            return f"{user_prefix}{query}"
        return query

    def get_stats(self) -> Dict[str, Any]:
        self.ensure_ready()
        return {
            "total_memories": self.vector_store.count(),
            "embeddings_provider": self.embedder.provider_name,
            "embeddings_model": self.embedder.model,
            "database_path": self.config.database_path,
            "similarity_threshold": self.config.similarity_threshold,
            "storage": self.vector_store.stats(),
        }
