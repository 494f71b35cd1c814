"""
Settings (configuration store) for ordersync.

Configuration comes from a JSON file (the packaged default lives in
``ordersync/config/ordersync_config.json``) and may be overridden by
environment variables so that credentials never need to be written to disk.
"""

from __future__ import annotations

import importlib.resources as pkg_resources
import json
import logging
import os
import pathlib as Path
from typing import Any, Dict, List, Optional

lgr = logging.getLogger(__name__)

# Environment variable -> config key
ENV_OVERRIDES = {
    "ORDERSYNC_API_URL": "api_url",
    "ORDERSYNC_API_LOGIN": "api_login",
    "ORDERSYNC_API_PASSWORD": "api_password",
    "ORDERSYNC_CALLBACK_SECRET": "callback_secret",
    "ORDERSYNC_DB_PATH": "db_path",
}

STATUS_FILTER_DISABLED = ("", "-", None)
STATUS_FILTER_CUSTOM = "custom"


def default_config_path():
    return pkg_resources.files("ordersync").joinpath("config/ordersync_config.json")


def load_config(config_path=None) -> Dict[str, Any]:
    """
    Load configuration file, either from a user-provided path or the default package location.

    Args:
        config_path (str | Path, optional): Path to the configuration JSON file.

    Returns:
        dict: Parsed JSON config as a dictionary.
    """
    if config_path is None:
        config_path = default_config_path()

    config_path = Path.Path(str(config_path))

    try:
        with config_path.open("r") as f:
            config_data = json.load(f)
        lgr.info(f"Loaded configuration from {config_path}")
        return config_data

    except FileNotFoundError:
        lgr.error(f"Configuration file '{config_path}' not found.")
        return {}

    except json.JSONDecodeError:
        lgr.error(f"Invalid JSON format in '{config_path}'.")
        return {}


class ConfigStore:
    """
    Key/value view over the loaded configuration.

    ``set`` only changes the in-memory copy; call ``save`` to write it back
    to the file it was loaded from. Environment overrides are applied on
    construction and are never saved.
    """

    def __init__(self, values: Optional[Dict[str, Any]] = None, path=None, environ=None):
        self._values = dict(values or {})
        self._path = Path.Path(str(path)) if path else None
        self._env_keys = set()
        environ = os.environ if environ is None else environ
        for env_name, key in ENV_OVERRIDES.items():
            if environ.get(env_name):
                self._values[key] = environ[env_name]
                self._env_keys.add(key)
                lgr.debug(f"Config key '{key}' taken from {env_name}")

    @classmethod
    def from_file(cls, config_path=None, environ=None) -> "ConfigStore":
        values = load_config(config_path)
        return cls(values, path=config_path, environ=environ)

    def get(self, key: str, default: Any = None) -> Any:
        value = self._values.get(key)
        if value is None or value == "":
            return default
        return value

    def set(self, key: str, value: Any) -> bool:
        self._values[key] = value
        return True

    def save(self) -> bool:
        if self._path is None:
            lgr.warning("Configuration was not loaded from a file, nothing to save.")
            return False
        data = {k: v for k, v in self._values.items() if k not in self._env_keys}
        with self._path.open("w") as f:
            json.dump(data, f, indent=2)
        lgr.info(f"Saved configuration to {self._path}")
        return True

    def get_status_filter(self) -> List[str]:
        """
        Remote order statuses that are eligible for automatic import.

        ``auto_fulfill_status`` is either a single status, ``custom`` (the
        statuses are then read from the comma separated
        ``auto_fulfill_custom``) or ``-``/empty to disable automatic import.
        """
        status = self.get("auto_fulfill_status")
        if status in STATUS_FILTER_DISABLED:
            return []
        if status == STATUS_FILTER_CUSTOM:
            custom = self.get("auto_fulfill_custom", "")
            if isinstance(custom, list):
                return [str(s).strip() for s in custom if str(s).strip()]
            return [s.strip() for s in str(custom).split(",") if s.strip()]
        if isinstance(status, list):
            return [str(s).strip() for s in status if str(s).strip()]
        return [str(status).strip()]

    def get_shipping_rules(self) -> List[Dict[str, Any]]:
        """Shipping method translation rules, stored as a JSON list or a list."""
        raw = self.get("shipping_method_config")
        if not raw:
            return []
        if isinstance(raw, list):
            return raw
        try:
            rules = json.loads(raw)
        except (TypeError, ValueError):
            lgr.warning("shipping_method_config is not valid JSON, ignoring rules.")
            return []
        if not isinstance(rules, list):
            lgr.warning("shipping_method_config must be a JSON list, ignoring rules.")
            return []
        return rules
