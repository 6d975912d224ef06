"""Configuration management for the opsgate execution engine."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class StorageSettings(BaseModel):
    plans_path: str = Field(default="./data/execution-plans")
    audit_log_path: str = Field(default="./data/audit-log.jsonl")


class ExecutionSettings(BaseModel):
    dry_run: bool = Field(
        default=False,
        description="If True, step commands are reported as successful without being run.",
    )
    default_timeout_seconds: int = Field(default=300, ge=1, le=86400)


class PolicySettings(BaseModel):
    path: str | None = Field(default=None, description="Optional approval policy YAML file")


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)


ENV_KEYS = {
    "log_level": "OPSGATE_LOG_LEVEL",
    "log_file": "OPSGATE_LOG_FILE",
    "plans_path": "OPSGATE_PLANS_PATH",
    "audit_log_path": "OPSGATE_AUDIT_LOG_PATH",
    "dry_run": "OPSGATE_DRY_RUN",
    "default_timeout_seconds": "OPSGATE_DEFAULT_TIMEOUT_SECONDS",
    "policy_path": "OPSGATE_POLICY_PATH",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path).expanduser()
    if candidate.is_absolute():
        return str(candidate.resolve())
    return str((_project_root() / candidate).resolve())


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result.

    Call once at startup and pass the sections to each component; components
    never read the environment themselves.
    """

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])
    policy_path_env = os.getenv(ENV_KEYS["policy_path"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "storage": {
            "plans_path": _resolve_path(
                os.getenv(ENV_KEYS["plans_path"], StorageSettings().plans_path)
            ),
            "audit_log_path": _resolve_path(
                os.getenv(ENV_KEYS["audit_log_path"], StorageSettings().audit_log_path)
            ),
        },
        "execution": {
            "dry_run": _env_bool(ENV_KEYS["dry_run"], ExecutionSettings().dry_run),
            "default_timeout_seconds": _env_int(
                ENV_KEYS["default_timeout_seconds"],
                ExecutionSettings().default_timeout_seconds,
            ),
        },
        "policy": {
            "path": _resolve_path(policy_path_env) if policy_path_env else None,
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    Path(settings.storage.plans_path).mkdir(parents=True, exist_ok=True)
    Path(settings.storage.audit_log_path).parent.mkdir(parents=True, exist_ok=True)

    return settings
