# adaptive_chat/settings.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from pathlib import Path
import os
import commentjson

from dotenv import load_dotenv
load_dotenv()
LEARNING_CONFIG_PATH = os.getenv("LEARNING_CONFIG_PATH")

_TOP_LEVEL_KEYS = ("LEARNING", "PROVIDERS", "SUGGESTIONS")

DEFAULT_PROVIDER_MODELS: Dict[str, str] = {
    "gemini": "gemini-2.5-flash",
    "openai": "gpt-4o",
}


@dataclass(frozen=True)
class LearningLimits:
    pattern_cap: int = 20
    keyword_cap: int = 20
    keywords_per_message: int = 10
    preferred_modes_cap: int = 20
    cas_attempts: int = 5


@dataclass(frozen=True)
class Settings:
    learning: LearningLimits = field(default_factory=LearningLimits)
    provider_models: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PROVIDER_MODELS))
    suggestions_enabled: bool = True
    suggestions_count: int = 3
    llm_timeout: float = 60.0
    log_level: str = "INFO"


def _load_config_file(path: Optional[str]) -> Dict[str, Any]:
    """
    Load learning caps + provider models from a JSON-with-comments file.
    No path means built-in defaults. A path that does not exist, or a
    top-level key that is not an object, fails fast.
    """
    if not path:
        return {}

    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(
            f"Learning config file not found at '{cfg_path}'. "
        )

    with cfg_path.open("r", encoding="utf-8") as f:
        data = commentjson.load(f)

    if not isinstance(data, dict):
        raise ValueError("Learning config must be a JSON object")

    for key in _TOP_LEVEL_KEYS:
        if key in data and not isinstance(data[key], dict):
            raise ValueError(f"Learning config invalid key: {key}")

    return data


def _positive_int(section: Dict[str, Any], key: str, default: int) -> int:
    value = section.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValueError(f"Learning config: '{key}' must be a positive integer, got {value!r}")
    return value


def load_settings(path: Optional[str] = None) -> Settings:
    data = _load_config_file(path)

    learning = data.get("LEARNING", {})
    defaults = LearningLimits()
    limits = LearningLimits(
        pattern_cap=_positive_int(learning, "pattern_cap", defaults.pattern_cap),
        keyword_cap=_positive_int(learning, "keyword_cap", defaults.keyword_cap),
        keywords_per_message=_positive_int(learning, "keywords_per_message", defaults.keywords_per_message),
        preferred_modes_cap=_positive_int(learning, "preferred_modes_cap", defaults.preferred_modes_cap),
        cas_attempts=_positive_int(learning, "cas_attempts", defaults.cas_attempts),
    )

    provider_models = dict(DEFAULT_PROVIDER_MODELS)
    for provider_id, props in (data.get("PROVIDERS") or {}).items():
        model = (props or {}).get("model")
        if model:
            provider_models[str(provider_id).lower()] = str(model)

    suggestions = data.get("SUGGESTIONS", {})

    return Settings(
        learning=limits,
        provider_models=provider_models,
        suggestions_enabled=bool(suggestions.get("enabled", True)),
        suggestions_count=_positive_int(suggestions, "count", 3),
        llm_timeout=float(os.getenv("LLM_TIMEOUT", "60")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


_SETTINGS: Optional[Settings] = None


def get_settings() -> Settings:
    global _SETTINGS

    if _SETTINGS is None:
        _SETTINGS = load_settings(LEARNING_CONFIG_PATH)
    return _SETTINGS
