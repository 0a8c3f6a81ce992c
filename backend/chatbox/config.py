"""Chatbox application configuration.

Loads settings from two YAML files:
  * chatbox.settings.yaml  : non-secret configuration
  * chatbox.secrets.yaml   : secrets (never committed)

The secrets file sits next to the settings file.  ``CHATBOX_JWT_SECRET``
overrides the JWT signing key from either file.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chatbox.settings.yaml")
SECRETS_FILE  = Path("chatbox.secrets.yaml")

JWT_SECRET_ENV = "CHATBOX_JWT_SECRET"

DEFAULT_AVATAR_URL = (
    "https://res.cloudinary.com/dr2f4tmgc/image/upload/"
    "v1745903350/20171206_01_yj5lwe.jpg"
)


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production-chatbox-signing-key"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 4004
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class DatabaseSettings(BaseModel):
    path:                    str   = "chatbox.duckdb"
    persist_timeout_seconds: float = 5.0

    @field_validator("persist_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("persist_timeout_seconds must be positive")
        return value


class AuthSettings(BaseModel):
    token_expire_days:        int = 30
    password_min_length:      int = 1
    password_hash_iterations: int = 200_000
    default_avatar_url:       str = DEFAULT_AVATAR_URL


class ChatSettings(BaseModel):
    """Behaviour of the WebSocket layer."""
    require_register_token: bool = False
    max_message_length:     int  = 4000


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    auth:     AuthSettings     = Field(default_factory=AuthSettings)
    chat:     ChatSettings     = Field(default_factory=ChatSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object.

    Args:
        settings_path: Settings YAML file. Defaults to ``chatbox.settings.yaml``
            in the working directory.
        secrets_path: Secrets YAML file. Defaults to ``chatbox.secrets.yaml``
            beside the settings file.

    Returns:
        The validated configuration.
    """
    settings_path = Path(settings_path) if settings_path else SETTINGS_FILE
    if secrets_path is None:
        secrets_path = settings_path.parent / SECRETS_FILE.name

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(Path(secrets_path))

    # Secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    env_secret = os.environ.get(JWT_SECRET_ENV)
    if env_secret:
        settings_data["secrets"].setdefault("jwt", {})["secret_key"] = env_secret
        logger.info("JWT secret taken from %s", JWT_SECRET_ENV)

    config = AppConfig(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, database=%s, require_register_token=%s)",
        config.server.host,
        config.server.port,
        config.database.path,
        config.chat.require_register_token,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppConfig) -> None:
    """Replace the process-wide configuration (tests, embedding)."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget the cached configuration so the next call reloads it."""
    global _config
    _config = None
