import pytest

from recallbot.agent.memory import (
    MemoryManager,
    MemoryRecord,
    MemoryState,
    SQLiteVectorStore,
    SearchResult,
    format_memories,
)
from recallbot.api.memory import MemoryManagerConfig
from recallbot.exceptions import (
    BackendTimeout,
    InitializationError,
    MemoryWriteError,
    NotInitializedError,
    ProviderUnavailableError,
    StorageWriteError,
)

import test_utils as tutils


def _manager(tmp_path, vectors=None, default=(1.0, 0.0), **config_kwargs) -> MemoryManager:
    config = MemoryManagerConfig(
        database_path=str(tmp_path / "memory.sqlite"),
        **config_kwargs,
    )
    return MemoryManager(tutils.make_embedder(vectors=vectors, default=default), config=config)


def _result(similarity=0.9, timestamp=1_700_000_000_000, user_name=None, **kwargs) -> SearchResult:
    record = MemoryRecord(
        timestamp=timestamp,
        user_input=kwargs.get("user_input", "Where is the deploy script?"),
        bot_response=kwargs.get("bot_response", "In /ops/deploy.sh."),
        embedding=[1.0, 0.0],
        user_name=user_name,
        id=kwargs.get("id", 1),
    )
    return SearchResult(record=record, similarity=similarity)


def test_memory_manager_config_from_dict():
    payload = {
        "database_path": "/tmp/memory.sqlite",
        "max_results": 3,
        "similarity_threshold": 0.5,
        "max_embedding_chars": 100,
        "ignored": "value",
    }

    config = MemoryManagerConfig.from_dict(payload)

    assert config.database_path == "/tmp/memory.sqlite"
    assert config.max_results == 3
    assert config.similarity_threshold == 0.5
    assert config.max_embedding_chars == 100
    assert config.truncation_marker == "..."


def test_initialize_transitions_to_ready(tmp_path):
    manager = _manager(tmp_path)
    assert manager.state is MemoryState.UNINITIALIZED
    manager.initialize()
    manager.initialize()
    assert manager.state is MemoryState.READY
    assert (tmp_path / "memory.sqlite").exists()
    manager.close()
    assert manager.state is MemoryState.UNINITIALIZED


def test_initialize_failure_can_be_retried(tmp_path):
    manager = _manager(tmp_path)
    manager.embedder.backend.list_error = BackendTimeout("slow")
    with pytest.raises(InitializationError) as info:
        manager.initialize()
    assert isinstance(info.value.__cause__, ProviderUnavailableError)
    assert manager.state is MemoryState.UNINITIALIZED

    manager.embedder.backend.list_error = None
    manager.initialize()
    assert manager.is_ready


def test_store_memory_auto_initializes_and_embeds_user_input(tmp_path):
    manager = _manager(tmp_path)
    record = manager.store_memory(
        "The deploy script lives in /ops/deploy.sh",
        "Noted.",
        channel_id="C1",
        user_id="U1",
        metadata={"thread": "t-1"},
        user_name="Ada",
    )

    assert manager.is_ready
    assert record.id is not None
    assert record.user_name == "Ada"
    assert record.metadata == {"thread": "t-1"}
    assert manager.embedder.backend.requests == ["The deploy script lives in /ops/deploy.sh"]
    assert manager.get_recent_memories(limit=1)[0] == record


def test_store_memory_wraps_embedding_failure(tmp_path):
    manager = _manager(tmp_path)
    manager.initialize()
    manager.embedder.backend.error = BackendTimeout("slow")
    with pytest.raises(MemoryWriteError) as info:
        manager.store_memory("question", "answer")
    assert isinstance(info.value.__cause__, BackendTimeout)


def test_store_memory_wraps_store_failure(tmp_path):
    manager = _manager(tmp_path)
    manager.initialize()

    def failing_put(record):
        raise StorageWriteError("disk full")

    manager.vector_store.put = failing_put
    with pytest.raises(MemoryWriteError) as info:
        manager.store_memory("question", "answer")
    assert isinstance(info.value.__cause__, StorageWriteError)


def test_store_memory_wraps_initialization_failure(tmp_path):
    manager = _manager(tmp_path)
    manager.embedder.backend.list_error = BackendTimeout("slow")
    with pytest.raises(MemoryWriteError) as info:
        manager.store_memory("question", "answer")
    assert isinstance(info.value.__cause__, InitializationError)


def test_search_finds_related_memory(tmp_path):
    e1 = [1.0, 0.0]
    e2 = [0.82, 0.5723635208501674]  # cosine(e1, e2) == 0.82
    manager = _manager(
        tmp_path,
        vectors={
            "The deploy script lives in /ops/deploy.sh": e1,
            "where is the deploy script": e2,
        },
        default=(0.0, 1.0),
        similarity_threshold=0.7,
    )
    stored = manager.store_memory("The deploy script lives in /ops/deploy.sh", "Noted.")
    manager.store_memory("What's for lunch?", "Ramen.")

    results = manager.search_memories("where is the deploy script")

    assert len(results) == 1
    assert results[0].record.id == stored.id
    assert results[0].record.bot_response == "Noted."
    assert results[0].similarity == pytest.approx(0.82, abs=1e-6)


def test_search_degrades_to_empty_on_embedding_timeout(tmp_path):
    manager = _manager(tmp_path)
    manager.store_memory("question", "answer")
    manager.embedder.backend.error = BackendTimeout("slow")
    assert manager.search_memories("question") == []


def test_search_degrades_to_empty_when_initialization_fails(tmp_path):
    manager = _manager(tmp_path)
    manager.embedder.backend.list_error = BackendTimeout("slow")
    assert manager.search_memories("question") == []
    assert manager.state is MemoryState.UNINITIALIZED


def test_search_uses_configured_limit(tmp_path):
    manager = _manager(tmp_path, max_results=2, similarity_threshold=0.0)
    for i in range(4):
        manager.store_memory(f"question {i}", "answer")
    assert len(manager.search_memories("question")) == 2
    assert len(manager.search_memories("question", limit=3)) == 3


def test_maintenance_paths_require_initialize(tmp_path):
    manager = _manager(tmp_path)
    with pytest.raises(NotInitializedError):
        manager.delete_memory(1)
    with pytest.raises(NotInitializedError):
        manager.get_stats()
    with pytest.raises(NotInitializedError):
        manager.perform_maintenance()
    with pytest.raises(NotInitializedError):
        manager.get_recent_memories()
    assert manager.state is MemoryState.UNINITIALIZED


def test_delete_stats_and_maintenance(tmp_path):
    manager = _manager(tmp_path, similarity_threshold=0.6)
    manager.initialize()
    record = manager.store_memory("question", "answer")

    stats = manager.get_stats()
    assert stats["total_memories"] == 1
    assert stats["embeddings_provider"] == "fake"
    assert stats["embeddings_model"] == "fake-embed"
    assert stats["similarity_threshold"] == 0.6
    assert stats["storage"]["page_count"] > 0

    manager.perform_maintenance()
    assert manager.delete_memory(record.id) is True
    assert manager.delete_memory(record.id) is False
    assert manager.get_stats()["total_memories"] == 0


def test_format_for_prompt_empty():
    assert format_memories([]) == ""


def test_format_for_prompt_single_memory():
    text = format_memories([_result(similarity=0.8234, timestamp=0, user_name="Ada")])
    assert "Past conversation (similarity: 0.823, from 1970-01-01T00:00:00.000Z):" in text
    assert "Ada: Where is the deploy script?" in text
    assert "Previous Assistant Response: In /ops/deploy.sh." in text
    assert "EVALUATION INSTRUCTIONS:" in text
    assert "Memory 1" not in text


def test_format_for_prompt_multiple_memories():
    text = format_memories([_result(similarity=0.91, id=1), _result(similarity=0.75, id=2)])
    assert "Found 2 potentially relevant past conversations" in text
    assert "Memory 1 (similarity: 0.910" in text
    assert "Memory 2 (similarity: 0.750" in text
    assert "User: Where is the deploy script?" in text
    assert "EVALUATION AND SYNTHESIS INSTRUCTIONS:" in text
    assert "contradictions" in text


def test_enhance_context_prefixes_memories(tmp_path):
    manager = _manager(tmp_path)
    manager.store_memory("question", "answer")

    enhanced = manager.enhance_context("question again", user_name="Ada")

    assert enhanced.startswith("\n--- RETRIEVED MEMORIES FOR EVALUATION ---")
    assert enhanced.endswith("\nCurrent Question: Ada asks: question again")


def test_enhance_context_without_memories(tmp_path):
    manager = _manager(tmp_path)
    assert manager.enhance_context("hello") == "hello"
    assert manager.enhance_context("hello", user_name="Ada") == "Ada asks: hello"


def test_enhance_context_falls_back_on_formatter_failure(tmp_path):
    def broken_formatter(results):
        raise RuntimeError("template error")

    manager = MemoryManager(
        tutils.make_embedder(),
        config=MemoryManagerConfig(similarity_threshold=0.0),
        vector_store=SQLiteVectorStore(tmp_path / "memory.sqlite", similarity_threshold=0.0),
        formatter=broken_formatter,
    )
    manager.store_memory("question", "answer")
    assert manager.enhance_context("question", user_name="Ada") == "question"
