import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class AdapterConfig:
    class_path: str
    settings: Dict[str, Any]


@dataclass
class PipelineConfig:
    item_delay: float = 0.5
    rate_limit_backoff: float = 2.0
    max_fetch: int = 500
    request_timeout: float = 30.0


@dataclass
class AppConfig:
    data_dir: str
    export_dir: str
    source: AdapterConfig
    providers: Dict[str, AdapterConfig]
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    log_level: str = "INFO"


DEFAULT_CONFIG_PATH = "config.json"
ENV_CONFIG_PATH = "JS_CONFIG_PATH"

DEFAULT_SOURCE = "job_scanner.adapters.source_gmail.GmailSource"
DEFAULT_PROVIDERS = {
    "openai": "job_scanner.adapters.ai_openai.OpenAIProvider",
    "gemini": "job_scanner.adapters.ai_gemini.GeminiProvider",
    "claude": "job_scanner.adapters.ai_anthropic.AnthropicProvider",
    "deepseek": "job_scanner.adapters.ai_deepseek.DeepSeekProvider",
    "rules": "job_scanner.adapters.ai_rules.RuleBasedAI",
}


def load_dotenv(path: str = ".env") -> None:
    if not os.path.exists(path):
        return
    with open(path, "r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip("\"'")
            if key and key not in os.environ:
                os.environ[key] = value


def resolve_env(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("$"):
        env_key = value[1:]
        return os.environ.get(env_key, value)
    if isinstance(value, dict):
        return {k: resolve_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env(v) for v in value]
    return value


def _resolve_config_path(path: Optional[str]) -> Optional[str]:
    config_path = path or os.environ.get(ENV_CONFIG_PATH, DEFAULT_CONFIG_PATH)
    if not path and config_path == DEFAULT_CONFIG_PATH and not os.path.exists(config_path):
        example_path = "config.example.json"
        if os.path.exists(example_path):
            return example_path
        return None
    return config_path


def load_config(path: Optional[str] = None) -> AppConfig:
    load_dotenv()
    config_path = _resolve_config_path(path)
    raw: Dict[str, Any] = {}
    if config_path:
        with open(config_path, "r", encoding="utf-8") as handle:
            raw = json.load(handle)

    raw = resolve_env(raw)

    def _adapter(payload: Dict[str, Any], default_class: str) -> AdapterConfig:
        return AdapterConfig(
            class_path=payload.get("class", default_class),
            settings=payload.get("settings", {}),
        )

    provider_raw = raw.get("providers", {})
    providers = {
        name: _adapter(provider_raw.get(name, {}), class_path)
        for name, class_path in DEFAULT_PROVIDERS.items()
    }
    pipeline_raw = raw.get("pipeline", {})
    defaults = PipelineConfig()
    pipeline = PipelineConfig(
        item_delay=float(pipeline_raw.get("item_delay", defaults.item_delay)),
        rate_limit_backoff=float(pipeline_raw.get("rate_limit_backoff", defaults.rate_limit_backoff)),
        max_fetch=int(pipeline_raw.get("max_fetch", defaults.max_fetch)),
        request_timeout=float(pipeline_raw.get("request_timeout", defaults.request_timeout)),
    )

    data_dir = raw.get("data_dir", "data")
    return AppConfig(
        data_dir=data_dir,
        export_dir=raw.get("export_dir", data_dir),
        source=_adapter(raw.get("source", {}), DEFAULT_SOURCE),
        providers=providers,
        pipeline=pipeline,
        log_level=raw.get("log_level", "INFO"),
    )
