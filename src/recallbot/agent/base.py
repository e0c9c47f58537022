"""Completion agents.

All agents take and produce OpenAI-compatible message dictionaries:

```json
{
    "role": "system" | "user" | "assistant",
    "content": "Text content of the message."
}
```

Subclasses talk to a specific backend (for example Ollama's native API) and
convert formats immediately before sending or after receiving. Backend
failures are raised as the error kinds in :mod:`recallbot.exceptions`
(`BackendConnectionRefused`, `BackendTimeout`, `BackendBadStatus`,
`MalformedResponse`) so callers can tell them apart.
"""

from typing import Any, Dict, List, Protocol
import logging

from recallbot.api.llm_config import LLMConfig
from recallbot.exceptions import BackendError, MalformedResponse
from recallbot.message_proc import get_message_text

logger = logging.getLogger(__name__)


class CompletionProvider(Protocol):
    """Anything that turns an ordered list of messages into reply text."""

    def complete(self, messages: List[Dict[str, Any]]) -> str:
        ...


class BaseAgent:

    def __init__(self, llm_config: LLMConfig) -> None:
        """The base agent class.

        Parameters
        ----------
        llm_config : LLMConfig
            Configuration for the agent. It should be an instance of a subclass
            of LLMConfig. Refer to the documentation of the config classes for
            more details.
        """
        self.llm_config = llm_config
        self.client = self.create_client()

    @property
    def model(self) -> str:
        return self.llm_config.model

    @property
    def base_url(self) -> str:
        return self.llm_config.base_url

    @property
    def provider_name(self) -> str:
        return self.llm_config.provider_name

    def create_client(self) -> Any:
        raise NotImplementedError

    def list_models(self) -> List[str]:
        """Return the names of the models served by the backend.

        Raises
        ------
        BackendError
        """
        raise NotImplementedError

    def test_connection(self) -> None:
        """Check that the backend answers.

        Raises
        ------
        BackendError
        """
        self.list_models()
        logger.info("[%s] Connection test successful", self.provider_name)

    def get_available_models(self) -> List[str]:
        """Like :meth:`list_models`, but returns an empty list on failure."""
        try:
            return self.list_models()
        except BackendError as exc:
            logger.error("[%s] Failed to list models: %s", self.provider_name, exc)
            return []

    def send_message_and_get_response(
        self,
        messages: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Send messages to the backend and get the response.

        Parameters
        ----------
        messages : List[Dict[str, Any]]
            The list of messages to be sent to the agent. The messages
            should be in an OpenAI-compatible format.

        Returns
        -------
        Dict[str, Any]
            The response from the agent in an OpenAI-compatible format.
        """
        raise NotImplementedError

    def complete(self, messages: List[Dict[str, Any]]) -> str:
        """Return the text of the assistant's reply to `messages`.

        Raises
        ------
        MalformedResponse
            If the reply carries no text content.
        BackendConnectionRefused, BackendTimeout, BackendBadStatus
            On transport failures.
        """
        response = self.send_message_and_get_response(messages)
        content = get_message_text(response)
        if not content:
            raise MalformedResponse(f"Invalid response format from {self.provider_name}")
        return content
