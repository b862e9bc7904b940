import importlib
from typing import Any

from job_scanner.config import AppConfig
from job_scanner.core.errors import ConfigError
from job_scanner.core.models import KEYLESS_PROVIDERS, ScanSettings


def load_class(path: str) -> type:
    if not path or "." not in path:
        raise ConfigError(f"Invalid adapter class path: {path!r}")
    module_path, class_name = path.rsplit(".", 1)
    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise ConfigError(f"Cannot import adapter module {module_path}: {exc}") from exc
    try:
        return getattr(module, class_name)
    except AttributeError as exc:
        raise ConfigError(f"{module_path} has no adapter named {class_name}") from exc


def build_adapter(path: str, settings: dict) -> Any:
    adapter_class = load_class(path)
    try:
        return adapter_class(**settings)
    except TypeError as exc:
        raise ConfigError(f"Bad settings for {path}: {exc}") from exc


def build_provider(config: AppConfig, settings: ScanSettings, name: str = "") -> Any:
    name = name or settings.active_provider
    adapter = config.providers.get(name)
    if adapter is None:
        raise ConfigError(f"Unsupported provider: {name}")
    options = dict(adapter.settings)
    if name not in KEYLESS_PROVIDERS:
        api_key = settings.api_key_for(name)
        if not api_key:
            raise ConfigError(f"No API key configured for {name}")
        options["api_key"] = api_key
        options.setdefault("timeout", config.pipeline.request_timeout)
    return build_adapter(adapter.class_path, options)
