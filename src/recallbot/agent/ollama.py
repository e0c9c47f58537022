from typing import Any, Dict, List, Optional

import requests

from recallbot.agent.base import BaseAgent
from recallbot.api.llm_config import OllamaConfig
from recallbot.llm_conn import join_url, request_json


class OllamaClient:

    provider_name = "ollama"

    def __init__(self, base_url: str, timeout: float, session: Optional[requests.Session] = None):
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def tags(self) -> Dict[str, Any]:
        return request_json(
            self.session,
            "get",
            join_url(self.base_url, "/api/tags"),
            provider=self.provider_name,
            timeout=self.timeout,
        )

    def chat(
        self,
        messages: List[Dict[str, Any]],
        model: str,
        temperature: float = 0.7,
    ) -> Dict[str, Any]:
        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature},
        }
        return request_json(
            self.session,
            "post",
            join_url(self.base_url, "/api/chat"),
            provider=self.provider_name,
            timeout=self.timeout,
            payload=payload,
        )


class OllamaAgent(BaseAgent):

    def __init__(self, llm_config: OllamaConfig) -> None:
        """An agent that uses Ollama's native chat API.

        Parameters
        ----------
        llm_config : OllamaConfig
            Configuration for the Ollama server.
        """
        super().__init__(llm_config=llm_config)

    def create_client(self) -> OllamaClient:
        return OllamaClient(
            base_url=self.base_url,
            timeout=self.llm_config.timeout,
        )

    def list_models(self) -> List[str]:
        response = self.client.tags()
        models = response.get("models") if isinstance(response, dict) else None
        return [item.get("name") for item in models or [] if isinstance(item, dict)]

    def send_message_and_get_response(
        self,
        messages: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        response = self.client.chat(
            messages=messages,
            model=self.model,
            temperature=self.llm_config.temperature,
        )
        return self.ollama_response_to_openai_response(response)

    def ollama_response_to_openai_response(self, response: Any) -> Dict[str, Any]:
        message = response.get("message") if isinstance(response, dict) else None
        if not isinstance(message, dict):
            return {"role": "assistant", "content": None}
        return {
            "role": "assistant",
            "content": message.get("content"),
        }
