# config.py
# Description: Configuration loading for tablesync.
#
# Imports
import copy
import os
import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
#
# Third-Party Imports
import toml
from loguru import logger
#
# Local Imports
from .Constants import STATE_FILE_SUFFIX
from .Sync.exceptions import ConfigurationError
#
#######################################################################################################################
#
# Functions:

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "tablesync" / "config.toml"

CONFIG_PATH_ENV_VAR = "TABLESYNC_CONFIG"
SERVICE_ID_ENV_VAR = "TABLESYNC_SERVICE_ID"
API_TOKEN_ENV_VAR = "TABLESYNC_API_TOKEN"

_SERVICE_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

CONFIG_TOML_CONTENT = """
# Configuration for tablesync
# This file is created with default values the first time it is needed.

[sync]
# Identifier of the remote record service (reverse-DNS style, e.g. "com.example.notes"). Required.
service_identifier = ""
# Suffix appended to the database path for the side-car sync state file.
state_file_suffix = ".syncstate"
# Directory where outgoing blobs are staged before upload. Empty means the system temp directory.
asset_staging_dir = ""

[transport]
kind = "memory" # "memory" or "http"
base_url = "http://localhost:8787/api/v1"
api_token = ""
timeout = 30.0 # seconds

[logging]
log_level = "INFO" # DEBUG, INFO, WARNING, ERROR, CRITICAL
app_log_path = "~/.local/share/tablesync/Logs/tablesync.log"
metrics_log_path = "" # Empty disables the JSON metrics sink
"""

try:
    DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)
except tomllib.TOMLDecodeError as e:
    logger.critical(f"FATAL: Could not parse internal CONFIG_TOML_CONTENT: {e}.")
    DEFAULT_CONFIG_FROM_TOML = {}


def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update_dict into base_dict."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _get_typed_value(data_dict: Dict, key: str, default: Any, target_type: type = str) -> Any:
    """Helper to get value from dict and cast to type, with logging for type errors."""
    value = data_dict.get(key, default)
    if value is default and default is not None:
        return value
    if value is None:
        return None

    try:
        if target_type == bool:
            if isinstance(value, bool):
                return value
            return str(value).lower() in ['true', '1', 't', 'y', 'yes']
        if target_type == Path:
            return Path(value) if value else default
        return target_type(value)
    except (ValueError, TypeError) as e:
        logger.warning(f"Config key '{key}' has value '{value}' which could not be converted to {target_type}. "
                       f"Using default: '{default}'. Error: {e}")
        return default


def get_config_path() -> Path:
    env_path = os.environ.get(CONFIG_PATH_ENV_VAR)
    return Path(env_path).expanduser() if env_path else DEFAULT_CONFIG_PATH


_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def load_settings(force_reload: bool = False, create_if_missing: bool = False,
                  config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Loads settings from the user's config.toml merged over the built-in defaults.

    If the file doesn't exist and `create_if_missing` is set, it's created with default values.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload and config_path is None:
        return _CONFIG_CACHE

    path = Path(config_path) if config_path else get_config_path()
    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not path.exists():
        logger.info(f"Config file not found at {path}. Using built-in defaults.")
        if create_if_missing:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path, "w", encoding="utf-8") as f:
                    toml.dump(DEFAULT_CONFIG_FROM_TOML, f)
                logger.info(f"Created default config file at {path}")
            except OSError as e:
                logger.error(f"Could not create default config file {path}: {e}. Using internal defaults.")
    else:
        logger.info(f"Attempting to load config from: {path}")
        try:
            with open(path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.info(f"Successfully loaded and merged config from {path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {path}: {e}. Using internal defaults.")

    _apply_env_overrides(loaded_config)
    if config_path is None:
        _CONFIG_CACHE = loaded_config
    logger.debug(f"load_settings returning config with top-level keys: {list(loaded_config.keys())}")
    return loaded_config


def _apply_env_overrides(config: Dict[str, Any]):
    service_id = os.environ.get(SERVICE_ID_ENV_VAR)
    if service_id:
        config.setdefault("sync", {})["service_identifier"] = service_id
        logger.debug(f"Service identifier overridden from ${SERVICE_ID_ENV_VAR}")
    token = os.environ.get(API_TOKEN_ENV_VAR)
    if token:
        config.setdefault("transport", {})["api_token"] = token
        logger.debug(f"API token overridden from ${API_TOKEN_ENV_VAR}")


def get_setting(section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    config = load_settings()
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


def validate_service_identifier(service_identifier: Optional[str]) -> str:
    """Returns the identifier unchanged, or raises ConfigurationError if it is empty or malformed."""
    if not service_identifier or not service_identifier.strip():
        raise ConfigurationError("No remote service identifier configured ([sync] service_identifier).")
    if not _SERVICE_IDENTIFIER_RE.match(service_identifier):
        raise ConfigurationError(f"Invalid remote service identifier: {service_identifier!r}")
    return service_identifier


@dataclass
class SyncSettings:
    service_identifier: str = ""
    state_file_suffix: str = STATE_FILE_SUFFIX
    asset_staging_dir: Optional[Path] = None
    transport_kind: str = "memory"
    base_url: str = ""
    api_token: Optional[str] = None
    timeout: float = 30.0


def load_sync_settings(config: Optional[Dict[str, Any]] = None) -> SyncSettings:
    """Builds typed sync settings from a loaded config dict (or the cached settings)."""
    config = config if config is not None else load_settings()
    sync_section = config.get("sync", {}) or {}
    transport_section = config.get("transport", {}) or {}

    staging_dir = _get_typed_value(sync_section, "asset_staging_dir", None, Path)
    return SyncSettings(
        service_identifier=_get_typed_value(sync_section, "service_identifier", "", str),
        state_file_suffix=_get_typed_value(sync_section, "state_file_suffix", STATE_FILE_SUFFIX, str),
        asset_staging_dir=staging_dir.expanduser() if staging_dir else None,
        transport_kind=_get_typed_value(transport_section, "kind", "memory", str).lower(),
        base_url=_get_typed_value(transport_section, "base_url", "", str),
        api_token=_get_typed_value(transport_section, "api_token", None, str) or None,
        timeout=_get_typed_value(transport_section, "timeout", 30.0, float),
    )

#
# End of config.py
#######################################################################################################################
