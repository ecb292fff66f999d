"""Configuration loading for the plugin tools."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import jsonschema
import yaml
from dotenv import load_dotenv

from assistant_plugin_tools.constants import (
    DEFAULT_FALLBACK_CHAIN,
    RATE_LIMIT_INITIAL_DELAY,
    RATE_LIMIT_MAX_DELAY,
    RATE_LIMIT_RETRY_COUNT,
)


DEFAULT_SETTINGS_PATH = Path("~/.config/plugin-tools/settings.yaml")

SETTINGS_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "model": {"type": "string", "minLength": 1},
        "fallback_chain": {
            "type": "array",
            "items": {"type": "string", "minLength": 1},
            "minItems": 1,
        },
        "rate_limit": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "retry_count": {"type": "integer", "minimum": 1},
                "initial_delay_ms": {"type": "integer", "minimum": 1000},
                "max_delay_ms": {"type": "integer", "minimum": 5000},
            },
        },
    },
}


@dataclass
class Config:
    """Application configuration loaded from environment."""

    api_key: str
    api_base_url: Optional[str] = None


@dataclass
class Settings:
    """Optional user settings for code generation calls."""

    model: Optional[str] = None  # explicit model; disables the fallback chain
    fallback_chain: List[str] = field(default_factory=lambda: list(DEFAULT_FALLBACK_CHAIN))
    retry_count: int = RATE_LIMIT_RETRY_COUNT
    initial_delay_ms: int = RATE_LIMIT_INITIAL_DELAY
    max_delay_ms: int = RATE_LIMIT_MAX_DELAY


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def load_config(require_all: bool = True) -> Optional[Config]:
    """
    Load configuration from environment variables.

    Args:
        require_all: If True, raises ConfigError if required vars are missing.
                     If False, returns None for missing config.

    Returns:
        Config object if all required vars present, None if require_all=False and missing.

    Raises:
        ConfigError: If require_all=True and required vars are missing.
    """
    load_dotenv()

    api_key = os.environ.get("PLUGIN_TOOLS_API_KEY") or os.environ.get("OPENAI_API_KEY")
    api_base_url = os.environ.get("PLUGIN_TOOLS_API_BASE_URL")

    if not api_key:
        if require_all:
            raise ConfigError(
                "Missing required environment variable: PLUGIN_TOOLS_API_KEY (or OPENAI_API_KEY)\n"
                "Please set it in your environment or create a .env file."
            )
        return None

    return Config(api_key=api_key, api_base_url=api_base_url)


def get_settings_path() -> Path:
    return Path(os.environ.get("PLUGIN_TOOLS_SETTINGS", str(DEFAULT_SETTINGS_PATH))).expanduser()


def _load_yaml_safe(file_path: Path) -> Tuple[Optional[dict], Optional[str]]:
    """
    Load YAML file, handling empty files and parse errors safely.

    Returns:
        (data, error) - data is None if parse failed, error contains details
    """
    try:
        data = yaml.safe_load(file_path.read_text())
        if data is None:
            return {}, None
        if not isinstance(data, dict):
            return None, f"Expected mapping, got {type(data).__name__}"
        return data, None
    except yaml.YAMLError as e:
        if hasattr(e, "problem_mark") and e.problem_mark:
            mark = e.problem_mark
            return None, f"YAML parse error at line {mark.line + 1}, column {mark.column + 1}: {e.problem or 'syntax error'}"
        return None, f"YAML parse error: {e}"


def validate_settings(data: dict) -> List[str]:
    """Validate settings against the schema, returning ALL errors."""
    errors = []
    validator = jsonschema.Draft7Validator(SETTINGS_SCHEMA)
    for error in validator.iter_errors(data):
        path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "(root)"
        errors.append(f"{error.message} at {path}")
    return errors


def load_settings(path: Optional[Path] = None) -> Settings:
    """
    Load user settings from YAML, falling back to defaults.

    A missing file is not an error. An unreadable or invalid file is.

    Raises:
        ConfigError: If the file cannot be parsed or fails validation.
    """
    path = Path(path) if path is not None else get_settings_path()
    settings = Settings()

    if not path.exists():
        return settings

    data, error = _load_yaml_safe(path)
    if error:
        raise ConfigError(f"{path}: {error}")

    errors = validate_settings(data)
    if errors:
        raise ConfigError(f"Invalid settings in {path}:\n  " + "\n  ".join(errors))

    settings.model = data.get("model", settings.model)
    if "fallback_chain" in data:
        settings.fallback_chain = list(data["fallback_chain"])

    rate_limit = data.get("rate_limit", {})
    settings.retry_count = rate_limit.get("retry_count", settings.retry_count)
    settings.initial_delay_ms = rate_limit.get("initial_delay_ms", settings.initial_delay_ms)
    settings.max_delay_ms = rate_limit.get("max_delay_ms", settings.max_delay_ms)

    return settings
