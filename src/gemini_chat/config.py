"""
Settings — defaults, then ~/.gemini_chat/config.json, then environment.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from gemini_chat.errors import ConfigError
from gemini_chat.streaming import DEFAULT_MODEL
from gemini_chat.transport.http import DEFAULT_BASE_URL

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".gemini_chat"
CONFIG_FILENAME = "config.json"

# First match wins; API_KEY is the generic fallback name.
API_KEY_VARS = ("GEMINI_API_KEY", "API_KEY")
ENV_OVERRIDES = {
    "GEMINI_CHAT_MODEL": "model",
    "GEMINI_CHAT_BASE_URL": "base_url",
}


class Settings(BaseModel):
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    data_dir: Path = DEFAULT_DATA_DIR
    request_timeout: float = 60.0
    save_interval: float = 1.0
    title_max_length: int = 60

    @property
    def config_file(self) -> Path:
        return self.data_dir / CONFIG_FILENAME

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigError(
                "API key not set. Run `gemini-chat configure` or set GEMINI_API_KEY."
            )
        return self.api_key


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed config file %s", path)
        return {}
    return data if isinstance(data, dict) else {}


def load_settings(data_dir: Optional[Path] = None, env: Optional[dict[str, str]] = None) -> Settings:
    env = dict(os.environ) if env is None else env
    base_dir = Path(data_dir or env.get("GEMINI_CHAT_DATA_DIR") or DEFAULT_DATA_DIR).expanduser()

    values: dict[str, Any] = _read_config_file(base_dir / CONFIG_FILENAME)
    values["data_dir"] = base_dir
    for var, field in ENV_OVERRIDES.items():
        if env.get(var):
            values[field] = env[var]
    for var in API_KEY_VARS:
        if env.get(var):
            values["api_key"] = env[var]
            break

    try:
        return Settings.model_validate(values)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def save_config(settings: Settings, **updates: Any) -> Settings:
    """Persist selected fields to config.json and return the updated settings."""
    path = settings.config_file
    stored = _read_config_file(path)
    updates = {k: v for k, v in updates.items() if v is not None}
    stored.update(updates)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(stored, indent=2))
    return settings.model_copy(update=updates)
