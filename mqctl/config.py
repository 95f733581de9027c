"""
Configuration management for mqctl
Stores settings like retry policy, probe timeout and worker pool size
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


class Config:
    """
    Manages mqctl configuration settings.
    Stores configuration in a JSON file in the user's home directory.
    """

    DEFAULT_CONFIG = {
        "max_retries": 3,
        "backoff_base": 2,
        "probe_timeout": 30,
        "max_workers": 8,
        "auto_reconnect": True,
        "include_system_queues": False,
        "refresh_interval": 5,
        "db_path": "mqctl.db",
        "log_level": "INFO",
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Optional custom path for config file
        """
        if config_path is None:
            # Store config in user's home directory
            self.config_dir = Path.home() / ".mqctl"
            self.config_dir.mkdir(exist_ok=True)
            self.config_path = self.config_dir / "config.json"
        else:
            self.config_path = Path(config_path)

        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file or create with defaults"""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    config = json.load(f)
                    # Merge with defaults to handle new keys
                    return {**self.DEFAULT_CONFIG, **config}
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Could not load config {self.config_path}: {e}")
                return self.DEFAULT_CONFIG.copy()
        else:
            self._save_config(self.DEFAULT_CONFIG)
            return self.DEFAULT_CONFIG.copy()

    def _save_config(self, config: Dict[str, Any]):
        """Save configuration to file"""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                json.dump(config, f, indent=2)
        except IOError as e:
            logger.error(f"Could not save config {self.config_path}: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any):
        """
        Set a configuration value and persist to disk.

        Args:
            key: Configuration key
            value: Value to set
        """
        self._config[key] = value
        self._save_config(self._config)

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values"""
        return self._config.copy()

    def reset(self):
        """Reset configuration to defaults"""
        self._config = self.DEFAULT_CONFIG.copy()
        self._save_config(self._config)

    @property
    def max_retries(self) -> int:
        return int(self._config["max_retries"])

    @property
    def backoff_base(self) -> float:
        return float(self._config["backoff_base"])

    @property
    def probe_timeout(self) -> float:
        """Default deadline in seconds for probes and discovery passes"""
        return float(self._config["probe_timeout"])

    @property
    def max_workers(self) -> int:
        """Cap on simultaneous outbound host connections"""
        return int(self._config["max_workers"])

    @property
    def auto_reconnect(self) -> bool:
        return bool(self._config["auto_reconnect"])

    @property
    def include_system_queues(self) -> bool:
        return bool(self._config["include_system_queues"])

    @property
    def refresh_interval(self) -> float:
        return float(self._config["refresh_interval"])

    @property
    def db_path(self) -> str:
        return self._config["db_path"]

    @property
    def log_level(self) -> str:
        return str(self._config["log_level"]).upper()


# Global config instance, used by the CLI
_config_instance = None


def get_config() -> Config:
    """Get the global configuration instance"""
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance
