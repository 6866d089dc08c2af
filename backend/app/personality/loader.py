"""Persona configuration loader."""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml


_DEFAULT_PATH = Path(__file__).parent / "default.yaml"
_FALLBACK_PROMPT = "You are a helpful AI assistant."


def load_personality(path: Path | None = None) -> dict[str, Any]:
    """Load persona configuration from a YAML file.

    Args:
        path: Optional path to a persona YAML file.
              Defaults to default.yaml in this directory.

    Returns:
        Dictionary with persona configuration.

    Raises:
        FileNotFoundError: If the persona file does not exist.
        yaml.YAMLError: If the file contains invalid YAML.
    """
    config_path = path or _DEFAULT_PATH

    if not config_path.exists():
        raise FileNotFoundError(f"Persona file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        config: dict[str, Any] = yaml.safe_load(f) or {}

    return config


@lru_cache(maxsize=1)
def _default_personality() -> dict[str, Any]:
    return load_personality()


def get_system_prompt(personality: dict[str, Any] | None = None) -> str:
    """Extract the system prompt from persona config.

    Args:
        personality: Pre-loaded persona dict. Loads the default if None.

    Returns:
        The system prompt string, with ``{name}`` substituted.
    """
    if personality is None:
        personality = _default_personality()

    prompt = personality.get("system_prompt") or _FALLBACK_PROMPT
    return prompt.replace("{name}", personality.get("name", "Assistant"))
