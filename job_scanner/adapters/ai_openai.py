from __future__ import annotations

from typing import Any, Dict

from job_scanner.adapters.ai_base import ChatProvider


class OpenAIProvider(ChatProvider):
    name = "openai"
    endpoint = "https://api.openai.com/v1/chat/completions"
    default_model = "gpt-4o-mini"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _request_body(self, prompt: str) -> Dict[str, Any]:
        return self._chat_body(prompt)

    def _response_text(self, payload: Dict[str, Any]) -> str:
        return payload["choices"][0]["message"]["content"]
