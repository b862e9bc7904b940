from __future__ import annotations

from typing import Any, Dict

from job_scanner.adapters.ai_base import ChatProvider


class GeminiProvider(ChatProvider):
    name = "gemini"
    endpoint = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
    default_model = "gemini-2.0-flash"

    def _url(self) -> str:
        return self.endpoint.format(model=self.model)

    def _headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    def _request_body(self, prompt: str) -> Dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
            },
        }

    def _response_text(self, payload: Dict[str, Any]) -> str:
        return payload["candidates"][0]["content"]["parts"][0]["text"]
