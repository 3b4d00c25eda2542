"""
CONFIG.PY: SINGLE SOURCE OF TRUTH

This module is the ONLY place allowed to read environment variables.

All config is loaded ONCE at import and cached in a single in-memory Config
object. Values come from the process environment, with an optional `.env`
file at the project root filling in anything the environment does not set.

Portal credentials are validated lazily (see `require_credentials`) so that
tooling that never touches the portal, such as catalog validation, can import
this module without them.

To use a config value, import:

    from exchange_rpa.config import config
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parents[1]

# OS env overrides values from .env automatically
load_dotenv(PROJECT_ROOT / ".env")


logger = logging.getLogger(__name__)

DEFAULT_LOGIN_URL = "https://app.hhaexchange.com/identity/account/login"
DEFAULT_TENANT_ID = "ENT2507010000"

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}
LOG_LEVELS = {"debug", "info", "warn", "error"}


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


@dataclass(slots=True, frozen=True)
class Credentials:
    username: str
    password: str = field(repr=False)

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


def _env(key: str, default: str = "") -> str:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip()


def _parse_bool(value: str, *, key: str) -> bool:
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    message = f"Config key {key} must be a boolean string; got {value!r}"
    logger.error(message)
    raise ConfigError(message)


def _parse_int(value: str, *, key: str) -> int:
    try:
        return int(value.strip())
    except (TypeError, ValueError):
        message = f"Config key {key} must be an integer; got {value!r}"
        logger.error(message)
        raise ConfigError(message)


def _clean_url(value: str, *, key: str) -> str:
    stripped = value.strip().rstrip("/")
    if not stripped:
        message = f"Config key {key} cannot be blank"
        logger.error(message)
        raise ConfigError(message)
    return stripped


def _parse_log_level(value: str) -> str:
    normalized = (value or "info").strip().lower()
    if normalized == "warning":
        normalized = "warn"
    if normalized not in LOG_LEVELS:
        message = f"Config key LOG_LEVEL must be one of {sorted(LOG_LEVELS)}; got {value!r}"
        logger.error(message)
        raise ConfigError(message)
    return normalized


@dataclass(slots=True, frozen=True)
class Config:
    hhae_username: str
    hhae_password: str
    hhae_email: str
    login_url: str
    default_tenant_id: str

    email_password: str
    imap_host: str
    imap_port: int
    azure_client_id: str
    azure_client_secret: str
    azure_tenant_id: str

    monday_api_token: str

    log_level: str
    downloads_root: str
    logs_root: str
    reports_config: str
    browser_backend: str
    chrome_executable: str

    @classmethod
    def load_from_env(cls) -> Config:
        mailbox_password = _env("EMAIL_PASSWORD") or _env("EMAIL_APP_PASSWORD")
        username = _env("HHAE_USERNAME")
        return cls(
            hhae_username=username,
            hhae_password=_env("HHAE_PASSWORD"),
            hhae_email=_env("HHAE_EMAIL") or username,
            login_url=_clean_url(_env("HHAE_LOGIN_URL", DEFAULT_LOGIN_URL), key="HHAE_LOGIN_URL"),
            default_tenant_id=_env("HHAE_DEFAULT_TENANT_ID", DEFAULT_TENANT_ID),
            email_password=mailbox_password,
            imap_host=_env("IMAP_HOST"),
            imap_port=_parse_int(_env("IMAP_PORT", "993"), key="IMAP_PORT"),
            azure_client_id=_env("AZURE_CLIENT_ID"),
            azure_client_secret=_env("AZURE_CLIENT_SECRET"),
            azure_tenant_id=_env("AZURE_TENANT_ID"),
            monday_api_token=_env("MONDAY_API_TOKEN"),
            log_level=_parse_log_level(_env("LOG_LEVEL", "info")),
            downloads_root=_env("DOWNLOADS_ROOT", str(PROJECT_ROOT / "downloads")),
            logs_root=_env("LOGS_ROOT", str(PROJECT_ROOT / "logs")),
            reports_config=_env("REPORTS_CONFIG", str(PROJECT_ROOT / "reports.yaml")),
            browser_backend=_env("BROWSER_BACKEND", "bundled_chromium").lower(),
            chrome_executable=_env("PDF_RENDER_CHROME_EXECUTABLE"),
        )

    @property
    def screenshots_root(self) -> str:
        return str(Path(self.logs_root) / "screenshots")

    @property
    def has_imap(self) -> bool:
        return bool(self.email_password and self.hhae_email)

    @property
    def has_graph(self) -> bool:
        return bool(self.azure_client_id and self.azure_client_secret and self.azure_tenant_id)

    def require_credentials(self) -> Credentials:
        missing = [
            key
            for key, value in (("HHAE_USERNAME", self.hhae_username), ("HHAE_PASSWORD", self.hhae_password))
            if not value
        ]
        if missing:
            message = f"Missing required environment variable(s): {', '.join(missing)}"
            logger.error(message)
            raise ConfigError(message)
        return Credentials(username=self.hhae_username, password=self.hhae_password)


config = Config.load_from_env()
