from __future__ import annotations

from job_scanner.adapters.ai_openai import OpenAIProvider


class DeepSeekProvider(OpenAIProvider):
    """DeepSeek speaks the OpenAI chat-completions dialect."""

    name = "deepseek"
    endpoint = "https://api.deepseek.com/v1/chat/completions"
    default_model = "deepseek-chat"
