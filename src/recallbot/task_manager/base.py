from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional, Set
import logging
import threading

from recallbot.agent.base import BaseAgent, CompletionProvider
from recallbot.agent.memory import EmbeddingAdapter, MemoryManager, MemoryRecord, VectorStore
from recallbot.agent.ollama import OllamaAgent
from recallbot.agent.openai import OpenAIAgent
from recallbot.agent.reasoning import StructuredReasoner
from recallbot.api.llm_config import LLMConfig, OllamaConfig, OpenAIConfig
from recallbot.api.settings import AssistantConfig
from recallbot.exceptions import InitializationError
from recallbot.util import shorten

logger = logging.getLogger(__name__)


class BaseTaskManager:
    """Runs chat turns: memory enhancement, structured reasoning, write-back.

    A turn searches memory for context, runs the three-phase reasoner on the
    enhanced message and returns the final answer. The user's message and
    the answer are then stored by a single background worker; the caller
    never waits for that write and its outcome is only logged.
    """

    def __init__(
        self,
        config: Optional[AssistantConfig] = None,
        build: bool = True,
        *,
        agent: Optional[CompletionProvider] = None,
        memory_manager: Optional[MemoryManager] = None,
        embedder: Optional[EmbeddingAdapter] = None,
        memory_vector_store: Optional[VectorStore] = None,
    ):
        """The base task manager.

        Parameters
        ----------
        config : AssistantConfig, optional
            Backend, memory and persona configuration. Defaults to
            `AssistantConfig()`; use `AssistantConfig.from_env()` to read
            the environment.
        build : bool
            Whether to build the agent, memory and reasoner right away.
        agent : CompletionProvider, optional
            Completion backend to use instead of one built from
            `config.llm`.
        memory_manager : MemoryManager, optional
            Memory manager to use instead of one built from `config`.
        embedder, memory_vector_store : optional
            Overrides used when the memory manager is built from `config`.
        """
        self.config = config or AssistantConfig()
        self.agent = agent
        self.memory_manager = memory_manager
        self.reasoner: Optional[StructuredReasoner] = None

        self._embedder = embedder
        self._memory_vector_store = memory_vector_store

        self._write_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="memory-write")
        self._pending_writes: Set[Future] = set()
        self._pending_lock = threading.Lock()
        self._closed = False

        if build:
            self.build()

    def build(self, *args, **kwargs):
        self.build_agent()
        self.build_memory()
        self.build_reasoner()

    def build_agent(self, *args, **kwargs):
        """Build the completion agent from `config.llm`."""
        if self.agent is not None:
            return

        if not isinstance(self.config.llm, LLMConfig):
            raise ValueError(
                "`config.llm` must be an instance of `LLMConfig`. The type of this "
                "config object will be used to determine the API type of the LLM."
            )

        agent_class = {
            OllamaConfig: OllamaAgent,
            OpenAIConfig: OpenAIAgent,
        }[type(self.config.llm)]
        self.agent = agent_class(llm_config=self.config.llm)

    def build_memory(self, *args, **kwargs):
        """Build the memory manager. The store is not opened until first use."""
        if self.memory_manager is not None:
            return
        embedder = self._embedder or EmbeddingAdapter(
            self.config.embeddings,
            max_chars=self.config.memory.max_embedding_chars,
            truncation_marker=self.config.memory.truncation_marker,
        )
        self.memory_manager = MemoryManager(
            embedder,
            config=self.config.memory,
            vector_store=self._memory_vector_store,
        )

    def build_reasoner(self, *args, **kwargs):
        self.reasoner = StructuredReasoner(self.agent, system_prompt=self.config.system_prompt)

    def test_connection(self) -> None:
        """Check the completion backend, then try to bring memory up.

        Completion backend failures propagate. Memory initialization failures
        are logged and the assistant keeps working without memory.
        """
        if isinstance(self.agent, BaseAgent):
            self.agent.test_connection()
        if self.memory_manager is None:
            return
        try:
            self.memory_manager.initialize()
        except InitializationError as exc:
            logger.warning("Memory initialization failed, continuing without memory: %s", exc)

    def chat(
        self,
        user_message: str,
        history: Optional[List[Dict[str, Any]]] = None,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> str:
        """Answer `user_message`.

        Parameters
        ----------
        user_message : str
            The user's message.
        history : List[Dict[str, Any]], optional
            Earlier messages of the conversation in OpenAI-compatible format.
        channel_id, user_id : str, optional
            Scope used to filter retrieved memories and stored with the new one.
        user_name : str, optional
            Display name used in the prompt and in memory attribution.

        Returns
        -------
        str
            The final answer of the reasoning pipeline.

        Raises
        ------
        CompletionError
            If any reasoning phase fails. Memory problems never raise here.
        """
        logger.info("Chat request: %r", shorten(user_message))
        enhanced_message = user_message
        if self._closed:
            logger.warning("Task manager is closed; answering without memory.")
        elif self.memory_manager is not None:
            enhanced_message = self.memory_manager.enhance_context(
                user_message,
                channel_id=channel_id,
                user_id=user_id,
                user_name=user_name,
            )

        response = self.reasoner.run(enhanced_message, history)

        # Only the unenhanced message and the final answer are stored.
        self.store_memory_async(
            user_message,
            response,
            channel_id=channel_id,
            user_id=user_id,
            user_name=user_name,
        )
        return response

    def store_memory_async(
        self,
        user_input: str,
        bot_response: str,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> Optional[Future]:
        """Queue a memory write on the background worker and return at once.

        Returns None when there is no memory or the task manager is closed.
        """
        if self.memory_manager is None:
            return None
        try:
            with self._pending_lock:
                if self._closed:
                    raise RuntimeError("task manager is closed")
                future = self._write_executor.submit(
                    self.memory_manager.store_memory,
                    user_input,
                    bot_response,
                    channel_id,
                    user_id,
                    user_name=user_name,
                )
                self._pending_writes.add(future)
        except RuntimeError as exc:
            logger.warning("Memory write skipped: %s", exc)
            return None
        future.add_done_callback(self._on_write_done)
        return future

    def _on_write_done(self, future: Future) -> None:
        with self._pending_lock:
            self._pending_writes.discard(future)
        if future.cancelled():
            logger.warning("Memory write was cancelled")
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("Failed to store memory: %s", exc)
            return
        record: MemoryRecord = future.result()
        logger.info("Memory stored with id %d", record.id)

    def wait_for_pending_writes(self, timeout: Optional[float] = None) -> bool:
        """Block until queued memory writes finish. Returns False on timeout."""
        with self._pending_lock:
            pending = set(self._pending_writes)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self, timeout: Optional[float] = None) -> bool:
        """Finish queued writes, then close the memory store.

        Later `chat` calls still answer, but neither read nor write memory.

        Parameters
        ----------
        timeout : float, optional
            Seconds to wait for queued writes. When they do not finish in
            time, writes that have not started are cancelled and the store
            is left open for the one in progress.

        Returns
        -------
        bool
            False if queued writes did not finish within `timeout`.
        """
        with self._pending_lock:
            self._closed = True
        drained = self.wait_for_pending_writes(timeout)
        if not drained:
            logger.warning(
                "Memory writes still pending after %s s; cancelling queued writes", timeout
            )
            self._write_executor.shutdown(wait=False, cancel_futures=True)
            return False
        self._write_executor.shutdown(wait=True)
        if self.memory_manager is not None:
            self.memory_manager.close()
        return True
