"""Runtime configuration for the BudgetWise service.

Settings are resolved from three layers, each overriding the previous one:
the built-in defaults, an optional YAML file and ``BUDGETWISE_*`` environment
variables. Validation collects every problem before failing so that a broken
deployment reports all of its misconfigurations at once.
"""

from __future__ import annotations

# ruff: noqa: ANN401
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Final

import yaml

LOG = logging.getLogger(__name__)

CONFIG_ENV_FLAG: Final[str] = "BUDGETWISE_CONFIG"
DEV_SECRET_KEY: Final[str] = "budgetwise-dev-secret-change-me"
DEFAULT_DB_PATH: Final[Path] = Path("budget.db")
MAX_IMPORT_BYTES: Final[int] = 1_048_576

_TRUTHY = {"1", "true", "yes", "on"}


class ConfigError(ValueError):
    """Raised when configuration values fail validation."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


@dataclass(frozen=True, slots=True)
class Settings:
    """Resolved configuration consumed by :func:`budgetwise.server.create_app`.

    Attributes:
      database_url: SQLAlchemy URL of the persistent store.
      secret_key: HMAC key used to sign bearer tokens.
      token_expiry_days: Lifetime of issued tokens.
      log_level: Name of the logging level for ``budgetwise`` loggers.
      json_logs: Whether to also write JSON-line audit logs.
      cors_origins: Origins allowed by the CORS middleware.
      max_import_bytes: Upper bound on template import payloads.
    """

    database_url: str = f"sqlite:///{DEFAULT_DB_PATH}"
    secret_key: str = DEV_SECRET_KEY
    token_expiry_days: int = 7
    log_level: str = "INFO"
    json_logs: bool = False
    cors_origins: tuple[str, ...] = field(default=("*",))
    max_import_bytes: int = MAX_IMPORT_BYTES

    @property
    def uses_dev_secret(self) -> bool:
        return self.secret_key == DEV_SECRET_KEY


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle)
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ConfigError([f"{path} must contain a mapping at the top level"])
    return dict(payload)


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if "BUDGETWISE_DB_PATH" in environ:
        overrides["database_url"] = f"sqlite:///{environ['BUDGETWISE_DB_PATH']}"
    if "BUDGETWISE_DATABASE_URL" in environ:
        overrides["database_url"] = environ["BUDGETWISE_DATABASE_URL"]
    if "BUDGETWISE_SECRET_KEY" in environ:
        overrides["secret_key"] = environ["BUDGETWISE_SECRET_KEY"]
    if "BUDGETWISE_TOKEN_EXPIRY_DAYS" in environ:
        overrides["token_expiry_days"] = environ["BUDGETWISE_TOKEN_EXPIRY_DAYS"]
    if "BUDGETWISE_LOG_LEVEL" in environ:
        overrides["log_level"] = environ["BUDGETWISE_LOG_LEVEL"]
    if "BUDGETWISE_JSON_LOGS" in environ:
        overrides["json_logs"] = environ["BUDGETWISE_JSON_LOGS"]
    if "BUDGETWISE_CORS_ORIGINS" in environ:
        overrides["cors_origins"] = environ["BUDGETWISE_CORS_ORIGINS"]
    return overrides


def _coerce(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Normalise raw values and validate them, collecting every error."""

    errors: list[str] = []
    known = {item.name for item in fields(Settings)}
    values: dict[str, Any] = {}

    for key in raw:
        if key not in known:
            errors.append(f"unknown setting '{key}'")

    if "database_url" in raw:
        url = raw["database_url"]
        if not isinstance(url, str) or not url.strip():
            errors.append("database_url must be a non-empty string")
        else:
            values["database_url"] = url.strip()

    if "secret_key" in raw:
        secret = raw["secret_key"]
        if not isinstance(secret, str) or len(secret.strip()) < 16:
            errors.append("secret_key must contain at least 16 characters")
        else:
            values["secret_key"] = secret.strip()

    if "token_expiry_days" in raw:
        try:
            days = int(raw["token_expiry_days"])
        except (TypeError, ValueError):
            errors.append("token_expiry_days must be an integer")
        else:
            if days < 1:
                errors.append("token_expiry_days must be >= 1")
            else:
                values["token_expiry_days"] = days

    if "log_level" in raw:
        level = str(raw["log_level"]).strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            errors.append(f"log_level '{raw['log_level']}' is not a logging level")
        else:
            values["log_level"] = level

    if "json_logs" in raw:
        flag = raw["json_logs"]
        values["json_logs"] = flag if isinstance(flag, bool) else str(flag).strip().lower() in _TRUTHY

    if "cors_origins" in raw:
        origins = raw["cors_origins"]
        if isinstance(origins, str):
            origins = origins.split(",")
        if not isinstance(origins, list | tuple):
            errors.append("cors_origins must be a list or a comma separated string")
        else:
            cleaned = tuple(str(item).strip() for item in origins if str(item).strip())
            values["cors_origins"] = cleaned or ("*",)

    if "max_import_bytes" in raw:
        try:
            limit = int(raw["max_import_bytes"])
        except (TypeError, ValueError):
            errors.append("max_import_bytes must be an integer")
        else:
            if limit < 1:
                errors.append("max_import_bytes must be >= 1")
            else:
                values["max_import_bytes"] = limit

    if errors:
        raise ConfigError(errors)
    return values


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Resolve :class:`Settings` from defaults, YAML and the environment.

    Args:
        path: Optional YAML file. Falls back to ``BUDGETWISE_CONFIG``.
        environ: Environment mapping, ``os.environ`` when omitted.

    Returns:
        The validated settings.

    Raises:
        ConfigError: If any value is invalid.
    """

    env = os.environ if environ is None else environ
    raw: dict[str, Any] = {}
    config_path = path if path is not None else env.get(CONFIG_ENV_FLAG)
    if config_path:
        raw.update(_read_yaml(Path(config_path)))
    raw.update(_env_overrides(env))

    settings = replace(Settings(), **_coerce(raw))
    if settings.uses_dev_secret:
        LOG.warning("Using the development secret key; set BUDGETWISE_SECRET_KEY in production")
    return settings


__all__ = ["ConfigError", "Settings", "load_settings", "MAX_IMPORT_BYTES"]
