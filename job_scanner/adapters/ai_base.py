"""Shared plumbing for chat-completion style inference backends.

Each backend only describes its endpoint, headers, request body and where the
answer text sits in the response envelope. Prompt building, answer parsing and
HTTP error mapping live here so all backends behave the same way.
"""

from __future__ import annotations

import http.client
import json
import logging
import os
import re
import socket
import ssl
import urllib.error
import urllib.request
from abc import abstractmethod
from typing import Any, Dict, Optional

from job_scanner.core.errors import ExtractionIncomplete, InferenceError, InferenceRateLimited
from job_scanner.core.interfaces import AIProvider
from job_scanner.core.models import EmailItem, ExtractionResult
from job_scanner.core.prompts import (
    CONNECTION_TEST_PROMPT,
    build_classification_prompt,
    build_extraction_prompt,
    has_strong_rejection,
)


logger = logging.getLogger(__name__)

NULL_TOKENS = {"", "null", "none", "n/a", "na", "unknown"}
RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "quota", "resource_exhausted", "too many requests")

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)
_AFFIRMATIVE = re.compile(r"^\W*(yes|true|1)\b", re.IGNORECASE)


def clean_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in NULL_TOKENS:
        return None
    return text


def parse_classification(answer: str) -> bool:
    return bool(_AFFIRMATIVE.match(answer.strip()))


def parse_extraction(response: str) -> ExtractionResult:
    match = _JSON_BLOCK.search(response)
    if not match:
        raise InferenceError("No JSON found in extraction response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise InferenceError(f"Failed to parse extraction response: {exc}") from exc
    if not isinstance(data, dict):
        raise InferenceError("Extraction response is not a JSON object")
    result = ExtractionResult(
        company=clean_value(data.get("company")),
        position=clean_value(data.get("position")),
        raw=data,
    )
    if not result.is_complete:
        raise ExtractionIncomplete("Could not extract company or position from email")
    return result


class ChatProvider(AIProvider):
    name = "chat"
    endpoint = ""
    default_model = ""

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        timeout: float = 30.0,
        temperature: float = 0.1,
        max_tokens: int = 500,
        ca_bundle: Optional[str] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model or self.default_model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.ca_bundle = ca_bundle or os.environ.get("SSL_CERT_FILE")

    def classify(self, item: EmailItem) -> bool:
        if has_strong_rejection(item):
            logger.debug("Rejection language in %s, classified without inference", item.message_id)
            return False
        answer = self.complete(build_classification_prompt(item))
        return parse_classification(answer)

    def extract(self, item: EmailItem) -> ExtractionResult:
        response = self.complete(build_extraction_prompt(item))
        logger.debug("Extraction response for %s: %s", item.message_id, response)
        return parse_extraction(response)

    def test_connection(self) -> bool:
        try:
            return "ok" in self.complete(CONNECTION_TEST_PROMPT).lower()
        except InferenceError as exc:
            logger.warning("%s connection test failed: %s", self.name, exc)
            return False

    def complete(self, prompt: str) -> str:
        payload = self._post_json(self._url(), self._request_body(prompt), self._headers())
        try:
            text = self._response_text(payload)
        except (KeyError, IndexError, TypeError) as exc:
            raise InferenceError(f"{self.name} returned an unexpected response shape") from exc
        return (text or "").strip()

    def _url(self) -> str:
        return self.endpoint

    @abstractmethod
    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    @abstractmethod
    def _request_body(self, prompt: str) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def _response_text(self, payload: Dict[str, Any]) -> str:
        raise NotImplementedError

    def _post_json(self, url: str, body: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        request = urllib.request.Request(url, data=json.dumps(body).encode("utf-8"), method="POST")
        request.add_header("Content-Type", "application/json")
        for key, value in headers.items():
            request.add_header(key, value)
        context = None
        if self.ca_bundle and os.path.exists(self.ca_bundle):
            context = ssl.create_default_context(cafile=self.ca_bundle)
        try:
            with urllib.request.urlopen(request, context=context, timeout=self.timeout) as response:
                return json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            detail = _error_detail(exc)
            if exc.code == 429 or _looks_rate_limited(detail):
                raise InferenceRateLimited(f"{self.name} rate limited: {detail}") from exc
            raise InferenceError(f"{self.name} HTTP {exc.code}: {detail}") from exc
        except (socket.timeout, TimeoutError) as exc:
            raise InferenceError(f"{self.name} request timed out after {self.timeout}s") from exc
        except urllib.error.URLError as exc:
            raise InferenceError(f"{self.name} request failed: {exc.reason}") from exc
        except json.JSONDecodeError as exc:
            raise InferenceError(f"{self.name} returned invalid JSON") from exc
        except (OSError, http.client.HTTPException, UnicodeDecodeError) as exc:
            raise InferenceError(f"{self.name} connection failed: {type(exc).__name__}: {exc}") from exc

    def _chat_body(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }


def _error_detail(exc: urllib.error.HTTPError) -> str:
    body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body or str(exc.reason)
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if error:
        return str(error)
    return body


def _looks_rate_limited(detail: str) -> bool:
    lowered = detail.lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)
