# dad/config.py
"""
Configuration for the Dad service.

All configuration flows through this module. Values are loaded from environment
variables (via .env file) and validated with Pydantic. Each concern gets its own
settings class; ``DadConfig`` composes them and is the only thing the rest of
the service receives.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Optional

import structlog
from pydantic import BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings, NoDecode

logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above dad/ package),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

_PERMISSION_MODES = {"default", "acceptEdits", "bypassPermissions", "plan"}


def _coerce_str_list(value: object) -> list[str]:
    """Coerce env-var values into a list of stripped, non-empty strings.

    Accepts:
      - A single int or str  → ["value"]
      - Comma-separated str  → ["a", "b"]
      - JSON array str       → ["a", "b"]
      - An existing list     → passthrough with str coercion
    """
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, (int, float)):
        return [str(int(value))]
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        if stripped.startswith("["):
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return _coerce_str_list(parsed)
        if "," in stripped:
            return [part.strip() for part in stripped.split(",") if part.strip()]
        return [stripped]
    return []


# NoDecode: env values reach the validator raw, so "U1,U2" works as well as '["U1","U2"]'.
StrList = Annotated[list[str], NoDecode, BeforeValidator(_coerce_str_list)]


class AgentConfig(BaseSettings):
    """How the external agent process is launched and how many may run at once."""

    model: str = Field("claude-sonnet-4-5-20250929", alias="AGENT_MODEL")
    max_turns: int = Field(25, alias="AGENT_MAX_TURNS")
    # Logged at startup only; the agent CLI enforces its own spend limits.
    max_budget_usd: float = Field(1.00, alias="AGENT_MAX_BUDGET_USD")
    cwd: Path = Field(Path("/data/workspace"), alias="AGENT_CWD")
    claude_bin: str = Field("claude", alias="DAD_CLAUDE_BIN")
    permission_mode: str = Field("bypassPermissions", alias="DAD_PERMISSION_MODE")
    max_concurrent: int = Field(3, alias="DAD_MAX_CONCURRENT")
    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "AgentConfig":
        self.max_turns = max(1, int(self.max_turns))
        self.max_budget_usd = max(0.0, float(self.max_budget_usd))
        self.max_concurrent = max(1, int(self.max_concurrent))
        self.claude_bin = self.claude_bin.strip() or "claude"
        if self.permission_mode not in _PERMISSION_MODES:
            logger.warning("config.unknown_permission_mode", mode=self.permission_mode)
            self.permission_mode = "bypassPermissions"
        if isinstance(self.api_key, str):
            self.api_key = self.api_key.strip() or None
        return self


class SlackConfig(BaseSettings):
    """Credentials for the Slack Socket Mode connection."""

    bot_token: str = Field(..., alias="SLACK_BOT_TOKEN")
    app_token: str = Field(..., alias="SLACK_APP_TOKEN")
    signing_secret: str = Field("", alias="SLACK_SIGNING_SECRET")

    model_config = {
        "env_file": _ENV_FILE,
        "extra": "ignore",
        "populate_by_name": True,
        "env_ignore_empty": True,
    }

    @model_validator(mode="after")
    def strip_tokens(self) -> "SlackConfig":
        self.bot_token = self.bot_token.strip()
        self.app_token = self.app_token.strip()
        self.signing_secret = self.signing_secret.strip()
        if not self.bot_token or not self.app_token:
            raise ValueError("SLACK_BOT_TOKEN and SLACK_APP_TOKEN must be non-empty.")
        return self


class AuthConfig(BaseSettings):
    """Who may talk to Dad, and where. Empty lists allow everyone."""

    authorized_user_ids: StrList = Field(default_factory=list, alias="AUTHORIZED_USER_IDS")
    authorized_channel_ids: StrList = Field(default_factory=list, alias="AUTHORIZED_CHANNEL_IDS")

    model_config = {
        "env_file": _ENV_FILE,
        "extra": "ignore",
        "populate_by_name": True,
        "env_ignore_empty": True,
    }

    def is_user_authorized(self, user_id: str) -> bool:
        if not self.authorized_user_ids:
            return True
        return user_id in self.authorized_user_ids

    def is_channel_authorized(self, channel_id: str) -> bool:
        if not self.authorized_channel_ids:
            return True
        return channel_id in self.authorized_channel_ids


class StorageConfig(BaseSettings):
    """Where the SQLite database lives."""

    db_path: Path = Field(Path("/data/dad.db"), alias="DB_PATH")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}


class TrainingConfig(BaseSettings):
    """Trainer-supplied context that is appended to every system prompt."""

    # None => derived from the agent workspace (<AGENT_CWD>/../training).
    training_dir: Optional[Path] = Field(None, alias="DAD_TRAINING_DIR")
    trainer_user_id: str = Field("", alias="TRAINER_USER_ID")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}


class HealthConfig(BaseSettings):
    """The unauthenticated HTTP health endpoint."""

    host: str = Field("0.0.0.0", alias="HEALTH_HOST")
    port: int = Field(8080, alias="HEALTH_PORT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_port(self) -> "HealthConfig":
        self.host = self.host.strip() or "0.0.0.0"
        self.port = max(1, min(65535, int(self.port)))
        return self


class DadConfig:
    """
    Master configuration that composes all subsystem configs.

    Slack credentials are loaded lazily by the Slack channel so that the CLI
    inspection commands work without them.
    """

    def __init__(self) -> None:
        self.agent = AgentConfig()
        self.auth = AuthConfig()
        self.storage = StorageConfig()
        self.training = TrainingConfig()
        self.health = HealthConfig()

        if self.training.training_dir is None:
            self.training.training_dir = self.agent.cwd.parent / "training"

        self._resolve_paths()

    def _resolve_paths(self) -> None:
        """Resolve relative Path fields against the project root, not the CWD."""

        def _resolve(p: Path) -> Path:
            if p.is_absolute():
                return p
            return (_PROJECT_ROOT / p).resolve()

        self.agent.cwd = _resolve(self.agent.cwd)
        self.storage.db_path = _resolve(self.storage.db_path)
        assert self.training.training_dir is not None
        self.training.training_dir = _resolve(self.training.training_dir)

    def __repr__(self) -> str:
        return (
            f"DadConfig(model={self.agent.model}, "
            f"max_turns={self.agent.max_turns}, "
            f"max_concurrent={self.agent.max_concurrent}, "
            f"db={self.storage.db_path})"
        )
