from typing import Any, Dict, List

import openai
from openai import OpenAI

from recallbot.agent.base import BaseAgent
from recallbot.api.llm_config import OpenAIConfig
from recallbot.llm_conn import get_api_key, translate_openai_error


class OpenAIAgent(BaseAgent):

    def __init__(self, llm_config: OpenAIConfig) -> None:
        """An agent that uses an OpenAI-compatible API (e.g. Docker Model
        Runner) to generate responses.

        Parameters
        ----------
        llm_config : OpenAIConfig
            Configuration for the OpenAI-compatible API. Refer to the
            documentation of the config class for more details.
        """
        super().__init__(llm_config=llm_config)

    @property
    def api_key(self) -> str:
        if self.llm_config.api_key is not None:
            return self.llm_config.api_key
        return get_api_key(model_name=self.model, model_base_url=self.base_url)

    def create_client(self) -> OpenAI:
        return OpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.llm_config.timeout,
            max_retries=0,
        )

    def list_models(self) -> List[str]:
        try:
            return [model.id for model in self.client.models.list()]
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc, self.provider_name) from exc

    def send_message_and_get_response(
        self,
        messages: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.llm_config.max_tokens,
                temperature=self.llm_config.temperature,
            )
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc, self.provider_name) from exc
        if not response.choices:
            return {"role": "assistant", "content": None}
        return response.choices[0].message.to_dict()
