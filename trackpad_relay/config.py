"""
Configuration loader for Trackpad Relay.
Supports YAML config files with sensible defaults.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


logger = logging.getLogger(__name__)


# Default configuration
DEFAULT_CONFIG = {
    "server": {
        "port": 9999,
        "host": "0.0.0.0",
        "ws_port": None,
        "static_dir": None,
        "max_message_bytes": 1024 * 1024,
    },
    "sessions": {
        "queue_size": 64,
    },
    "input": {
        "backend": "xdotool",
        "scroll_divisor": 10.0,
        "navigate_back": "alt+Left",
        "navigate_forward": "alt+Right",
    },
    "clipboard": {
        "history_size": 50,
        "watch_host": False,
        "poll_interval": 0.5,
    },
    "files": {
        "upload_dir": "./uploads",
        "ttl_seconds": 3600,
        "grace_seconds": 600,
        "reap_interval": 60,
        "max_upload_bytes": 50 * 1024 * 1024,
        "notify_uploader": False,
    },
    "logging": {
        "level": "INFO",
    },
}


def get_config_paths() -> list[Path]:
    """Get list of possible config file locations (in priority order)."""
    paths = []

    # 1. Current directory
    paths.append(Path.cwd() / "config.yaml")

    # 2. XDG config directory
    xdg_config = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg_config:
        paths.append(Path(xdg_config) / "trackpad-relay" / "config.yaml")

    # 3. ~/.config/trackpad-relay/
    paths.append(Path.home() / ".config" / "trackpad-relay" / "config.yaml")

    # 4. ~/.trackpad-relay.yaml
    paths.append(Path.home() / ".trackpad-relay.yaml")

    return paths


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration from file.

    Args:
        config_path: Explicit config file path. If None, searches default locations.

    Returns:
        Configuration dictionary with defaults filled in.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path:
        paths = [config_path]
    else:
        paths = get_config_paths()

    for path in paths:
        if path.exists():
            try:
                with open(path, "r") as f:
                    file_config = yaml.safe_load(f) or {}
                config = deep_merge(config, file_config)
                logger.debug("Loaded config from %s", path)
                break
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Failed to load config from %s: %s", path, e)

    return config


def get_local_ip() -> str:
    """
    Get the local network IP address.

    Returns:
        Local IP address string (e.g., "192.168.1.100")
    """
    try:
        import netifaces
    except ImportError:
        return "127.0.0.1"

    interfaces = netifaces.interfaces()

    # Wired first, then wireless, then anything that is not loopback
    priority = ["eth", "enp", "wlan", "wlp", "eno", "ens", ""]

    for prefix in priority:
        for iface in interfaces:
            if iface == "lo" or not iface.startswith(prefix):
                continue
            try:
                addrs = netifaces.ifaddresses(iface)
            except ValueError:
                continue
            for addr in addrs.get(netifaces.AF_INET, []):
                ip = addr.get("addr", "")
                if ip and not ip.startswith("127."):
                    return ip

    return "127.0.0.1"


class Config:
    """Configuration wrapper with easy access to settings."""

    def __init__(self, config_path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None):
        self._config = load_config(config_path)
        if overrides:
            self._config = deep_merge(self._config, overrides)

        # Resolve "auto" host
        if self._config["server"]["host"] == "auto":
            self._config["server"]["host"] = get_local_ip()

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "Config":
        """Build a config from defaults plus ``values``, ignoring config files."""
        config = cls.__new__(cls)
        config._config = deep_merge(copy.deepcopy(DEFAULT_CONFIG), values)
        return config

    def set(self, section: str, key: str, value: Any) -> None:
        """Override a single setting."""
        self._config[section][key] = value

    @property
    def host(self) -> str:
        return self._config["server"]["host"]

    @property
    def port(self) -> int:
        return self._config["server"]["port"]

    @property
    def ws_port(self) -> int:
        """WebSocket port; defaults to the HTTP port + 1."""
        ws_port = self._config["server"]["ws_port"]
        return int(ws_port) if ws_port else self.port + 1

    @property
    def static_dir(self) -> Optional[Path]:
        static_dir = self._config["server"]["static_dir"]
        return Path(static_dir) if static_dir else None

    @property
    def max_message_bytes(self) -> int:
        return self._config["server"]["max_message_bytes"]

    @property
    def queue_size(self) -> int:
        return self._config["sessions"]["queue_size"]

    @property
    def input_backend(self) -> str:
        return self._config["input"]["backend"]

    @property
    def scroll_divisor(self) -> float:
        return float(self._config["input"]["scroll_divisor"])

    @property
    def navigate_keys(self) -> Dict[str, str]:
        return {
            "back": self._config["input"]["navigate_back"],
            "forward": self._config["input"]["navigate_forward"],
        }

    @property
    def history_size(self) -> int:
        return self._config["clipboard"]["history_size"]

    @property
    def watch_host_clipboard(self) -> bool:
        return self._config["clipboard"]["watch_host"]

    @property
    def clipboard_poll_interval(self) -> float:
        return float(self._config["clipboard"]["poll_interval"])

    @property
    def upload_dir(self) -> Path:
        return Path(self._config["files"]["upload_dir"])

    @property
    def ttl_seconds(self) -> float:
        return float(self._config["files"]["ttl_seconds"])

    @property
    def grace_seconds(self) -> float:
        return float(self._config["files"]["grace_seconds"])

    @property
    def reap_interval(self) -> float:
        return float(self._config["files"]["reap_interval"])

    @property
    def max_upload_bytes(self) -> int:
        return self._config["files"]["max_upload_bytes"]

    @property
    def notify_uploader(self) -> bool:
        return self._config["files"]["notify_uploader"]

    @property
    def log_level(self) -> str:
        return self._config["logging"]["level"]

    def to_dict(self) -> Dict[str, Any]:
        """Return config as dictionary."""
        return copy.deepcopy(self._config)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reload_config(config_path: Optional[Path] = None) -> Config:
    """Reload configuration from file."""
    global _config
    _config = Config(config_path)
    return _config
