from __future__ import annotations

from typing import Any, Dict

from job_scanner.adapters.ai_base import ChatProvider


class AnthropicProvider(ChatProvider):
    name = "claude"
    endpoint = "https://api.anthropic.com/v1/messages"
    default_model = "claude-3-5-haiku-20241022"
    api_version = "2023-06-01"

    def _headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key, "anthropic-version": self.api_version}

    def _request_body(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }

    def _response_text(self, payload: Dict[str, Any]) -> str:
        return payload["content"][0]["text"]
