import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from recallbot.agent.memory import EmbeddingAdapter
from recallbot.agent.memory.embedding import EmbeddingBackend
from recallbot.api.llm_config import OllamaConfig


class BaseTester:
    def setup_method(
        self,
        name="",
        debug=False,
    ):
        """
        A Pytest hook that sets instance attributes before running each test method.
        If the script is executed with `python`, this method will not run automatically
        before calling a test method.

        Parameters
        ----------
        name : str, optional
            The name of the tester.
        debug : bool, optional
            Switches debug mode.
        """
        logging.basicConfig(level=logging.INFO)

        self.name = name
        self.debug = debug
        self.atol = 1e-6

    def assert_close(self, actual: float, expected: float) -> None:
        assert np.isclose(actual, expected, atol=self.atol), f"{actual} != {expected}"


class FakeEmbeddingBackend(EmbeddingBackend):
    """Returns preset vectors keyed by text, or raises a preset error."""

    provider_name = "fake"

    def __init__(
        self,
        vectors: Optional[Dict[str, Sequence[float]]] = None,
        default: Sequence[float] = (1.0, 0.0, 0.0),
        models: Sequence[str] = ("fake-embed",),
    ) -> None:
        super().__init__(OllamaConfig(model="fake-embed"))
        self.vectors = dict(vectors or {})
        self.default = list(default)
        self.models = list(models)
        self.error: Optional[Exception] = None
        self.list_error: Optional[Exception] = None
        self.requests: List[str] = []

    def list_models(self) -> List[str]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.models)

    def request_embedding(self, text: str) -> Any:
        self.requests.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vectors.get(text, self.default))


def make_embedder(vectors=None, default=(1.0, 0.0, 0.0), **kwargs) -> EmbeddingAdapter:
    backend = FakeEmbeddingBackend(vectors=vectors, default=default)
    return EmbeddingAdapter(backend.config, backend=backend, **kwargs)


class ScriptedAgent:
    """Completion provider returning canned replies in order."""

    def __init__(self, replies: Sequence[Any]) -> None:
        self.replies = list(replies)
        self.calls: List[List[Dict[str, Any]]] = []

    def complete(self, messages: List[Dict[str, Any]]) -> str:
        self.calls.append(messages)
        reply = self.replies[len(self.calls) - 1]
        if isinstance(reply, Exception):
            raise reply
        return reply


def unit_vector_with_similarity(similarity: float) -> List[float]:
    """A 2D unit vector whose cosine similarity with [1, 0] is `similarity`."""
    return [similarity, float(np.sqrt(1.0 - similarity ** 2))]
