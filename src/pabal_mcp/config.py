"""Configuration loading for Pabal MCP Server."""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from pabal_mcp.errors import ConfigError, wrap_error

logger = structlog.get_logger(__name__)

CONFIG_DIR_ENV = "PABAL_MCP_CONFIG_DIR"
DATA_DIR_ENV = "PABAL_MCP_DATA_DIR"
SITE_URL_ENV = "PABAL_MCP_SITE_URL"
CONFIG_FILENAME = "config.json"
REGISTERED_APPS_FILENAME = "registered-apps.json"


class AppStoreCredentials(BaseModel):
    """App Store Connect API key."""

    model_config = ConfigDict(frozen=True)

    issuer_id: str = Field(..., min_length=1, description="Issuer ID")
    key_id: str = Field(..., min_length=1, description="Key ID")
    private_key: str = Field(..., repr=False, description="PEM encoded .p8 key")


class GooglePlayCredentials(BaseModel):
    """Google service account key."""

    model_config = ConfigDict(frozen=True)

    service_account_info: dict[str, Any] = Field(..., repr=False)

    @property
    def client_email(self) -> str | None:
        return self.service_account_info.get("client_email")

    @property
    def project_id(self) -> str | None:
        return self.service_account_info.get("project_id")


class AppConfig(BaseModel):
    """Resolved server configuration."""

    model_config = ConfigDict(frozen=True)

    config_dir: Path
    data_dir: Path
    site_url: str | None = None
    app_store: AppStoreCredentials | None = None
    google_play: GooglePlayCredentials | None = None


def get_config_dir() -> Path:
    """Directory holding config.json and registered-apps.json."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "pabal-mcp"


def registered_apps_path(config_dir: Path | None = None) -> Path:
    return (config_dir or get_config_dir()) / REGISTERED_APPS_FILENAME


def normalize_private_key(raw: str) -> str:
    """Restore newlines of a key that was flattened into one line."""
    if "-----BEGIN" in raw and "\n" in raw:
        return raw
    return raw.replace("\\n", "\n")


def _resolve_path(value: str, base_dir: Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base_dir / path


def _read_text(path: Path, what: str) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read {what}: {path}", details={"path": str(path)}) from e


def check_permissions(config_dir: Path) -> None:
    """Warn when the config directory or file is readable by others."""
    for path in (config_dir, config_dir / CONFIG_FILENAME):
        try:
            mode = path.stat().st_mode
        except OSError:
            continue
        if mode & (stat.S_IRWXG | stat.S_IRWXO):
            logger.warning(
                "Config path is accessible by group or others",
                path=str(path),
                mode=oct(stat.S_IMODE(mode)),
            )


def read_config_file(config_dir: Path) -> dict[str, Any]:
    """Read config.json as a dict.

    Raises:
        ConfigError: If the file is missing or not valid JSON.
    """
    path = config_dir / CONFIG_FILENAME
    if not path.exists():
        raise ConfigError(
            f"Config file not found: {path}. Create it with appStore and/or googlePlay credentials.",
            details={"path": str(path)},
        )
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a JSON object: {path}")
    return data


def resolve_data_dir(config_dir: Path, raw: dict[str, Any]) -> Path:
    """Config dataDir, then PABAL_MCP_DATA_DIR, then the config directory."""
    if raw.get("dataDir"):
        return _resolve_path(str(raw["dataDir"]), config_dir)
    env_dir = os.environ.get(DATA_DIR_ENV)
    if env_dir:
        return Path(env_dir).expanduser()
    return config_dir


def _load_app_store(section: dict[str, Any], config_dir: Path) -> AppStoreCredentials | None:
    key_path = section.get("privateKeyPath")
    if not (section.get("issuerId") and section.get("keyId") and key_path):
        return None
    private_key = normalize_private_key(
        _read_text(_resolve_path(key_path, config_dir), "App Store private key")
    )
    return AppStoreCredentials(
        issuer_id=section["issuerId"],
        key_id=section["keyId"],
        private_key=private_key,
    )


def _load_google_play(section: dict[str, Any], config_dir: Path) -> GooglePlayCredentials | None:
    key_path = section.get("serviceAccountKeyPath")
    if not key_path:
        return None
    text = _read_text(_resolve_path(key_path, config_dir), "Google service account key")
    try:
        info = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Service account key is not valid JSON: {key_path}") from e
    return GooglePlayCredentials(service_account_info=info)


def load_config(config_dir: Path | None = None, *, require_credentials: bool = True) -> AppConfig:
    """Load and resolve the server configuration.

    Args:
        config_dir: Config directory. Defaults to get_config_dir().
        require_credentials: Raise when the file is missing or configures no store.

    Returns:
        Resolved configuration.

    Raises:
        ConfigError: If the configuration is missing or invalid.
    """
    config_dir = config_dir or get_config_dir()
    check_permissions(config_dir)

    try:
        raw = read_config_file(config_dir)
    except ConfigError:
        if require_credentials:
            raise
        raw = {}

    try:
        app_store = _load_app_store(raw.get("appStore") or {}, config_dir)
        google_play = _load_google_play(raw.get("googlePlay") or {}, config_dir)
    except ConfigError:
        raise
    except Exception as e:
        raise wrap_error(e, message="Invalid credentials in config") from e

    if require_credentials and app_store is None and google_play is None:
        raise ConfigError(
            "No store credentials configured. Set appStore and/or googlePlay in "
            f"{config_dir / CONFIG_FILENAME}."
        )

    config = AppConfig(
        config_dir=config_dir,
        data_dir=resolve_data_dir(config_dir, raw),
        site_url=raw.get("siteUrl") or os.environ.get(SITE_URL_ENV) or None,
        app_store=app_store,
        google_play=google_play,
    )
    logger.debug(
        "Loaded config",
        config_dir=str(config_dir),
        data_dir=str(config.data_dir),
        app_store=app_store is not None,
        google_play=google_play is not None,
    )
    return config
