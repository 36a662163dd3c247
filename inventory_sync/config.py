# inventory_sync/config.py
# Description: Configuration management for the inventory_sync application.
#
# Imports
import copy
import os
import tomllib
from pathlib import Path
from typing import Dict, Any, Optional, Union
#
# Third-Party Imports
import toml
from loguru import logger
#
# Local Imports
from inventory_sync.Sync.Sync_Client import SyncConfig
#
#######################################################################################################################
#
# Functions:

# --- Constants ---
# Client ID recorded in the local database's sync log
CLI_APP_CLIENT_ID = "inventory_sync_local_instance_v1"

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "inventory_sync" / "config.toml"
BASE_DATA_DIR = Path.home() / ".local" / "share" / "inventory_sync"

# Environment variables that override the [sync] section
ENV_OVERRIDES = {
    "INVENTORY_SYNC_API_URL": ("sync", "api_base_url"),
    "INVENTORY_SYNC_API_KEY": ("sync", "api_key"),
}

CONFIG_TOML_CONTENT = """
# Configuration for inventory_sync
# This file is created on first run. Edit it to point the client at your inventory API.

[general]
log_level = "INFO"

[logging]
# Relative names are placed under the database directory.
log_filename = "inventory_sync.log"
log_to_file = true
file_log_level = "INFO"
log_max_bytes = 10485760
log_backup_count = 5

[database]
# Leave empty to use ~/.local/share/inventory_sync/inventory.db
path = ""
client_id = "inventory_sync_local_instance_v1"

[sync]
api_base_url = ""
api_key = ""  # Prefer the INVENTORY_SYNC_API_KEY environment variable
auto_sync_enabled = false
sync_interval_minutes = 30
# One of: "newest_wins", "server_wins", "client_wins"
conflict_resolution = "newest_wins"
batch_size = 100
request_timeout = 30.0
"""

DEFAULT_SETTINGS: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)

_CONFIG_CACHE: Optional[Dict[str, Any]] = None
_CONFIG_CACHE_PATH: Optional[Path] = None


def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges `update` into a copy of `base`; values from `update` win."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(settings: Dict[str, Any]) -> Dict[str, Any]:
    for env_var, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            settings.setdefault(section, {})[key] = value
            logger.debug(f"Setting [{section}] {key} taken from environment variable {env_var}")
    return settings


def load_settings(force_reload: bool = False, config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Loads settings from the TOML config file, merged over the built-in defaults.

    The file is created with default content if it does not exist. Results are
    cached per path until `force_reload` is set.
    """
    global _CONFIG_CACHE, _CONFIG_CACHE_PATH
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if _CONFIG_CACHE is not None and not force_reload and _CONFIG_CACHE_PATH == path:
        return _CONFIG_CACHE

    user_settings: Dict[str, Any] = {}
    if not path.exists():
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(CONFIG_TOML_CONTENT.lstrip(), encoding="utf-8")
            logger.info(f"Created default configuration file at {path}")
        except OSError as e:
            logger.warning(f"Could not create default config file at {path}: {e}")
    else:
        try:
            with open(path, "rb") as f:
                user_settings = tomllib.load(f)
            logger.debug(f"Loaded configuration from {path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config {path}: {e}. Using defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {path}: {e}. Using defaults.")

    settings = _apply_env_overrides(deep_merge_dicts(DEFAULT_SETTINGS, user_settings))
    _CONFIG_CACHE = settings
    _CONFIG_CACHE_PATH = path
    return settings


def save_settings(settings: Dict[str, Any], config_path: Optional[Union[str, Path]] = None) -> Path:
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        toml.dump(settings, f)
    logger.info(f"Configuration saved to {path}")
    load_settings(force_reload=True, config_path=path)
    return path


def get_setting(section: str, key: str, default: Any = None) -> Any:
    settings = load_settings()
    return settings.get(section, {}).get(key, default)


def get_sync_config(settings: Optional[Dict[str, Any]] = None) -> SyncConfig:
    """Builds the sync engine's configuration from the [sync] section."""
    settings = settings if settings is not None else load_settings()
    sync_section = settings.get("sync", {})
    return SyncConfig(
        api_base_url=str(sync_section.get("api_base_url", "") or ""),
        api_key=str(sync_section.get("api_key", "") or ""),
        auto_sync_enabled=bool(sync_section.get("auto_sync_enabled", False)),
        sync_interval_minutes=sync_section.get("sync_interval_minutes", 30),
        conflict_resolution=sync_section.get("conflict_resolution", "newest_wins"),
    )


def get_database_path(settings: Optional[Dict[str, Any]] = None) -> Path:
    settings = settings if settings is not None else load_settings()
    configured = settings.get("database", {}).get("path")
    if configured:
        return Path(configured).expanduser()
    return BASE_DATA_DIR / "inventory.db"


def get_log_file_path(settings: Optional[Dict[str, Any]] = None) -> Path:
    settings = settings if settings is not None else load_settings()
    filename = Path(settings.get("logging", {}).get("log_filename", "inventory_sync.log")).expanduser()
    if filename.is_absolute():
        return filename
    return get_database_path(settings).parent / filename

#
# End of config.py
#######################################################################################################################
