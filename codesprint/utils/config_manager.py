"""
Configuration management for the CodeSprint grading server.

Precedence, lowest to highest: built-in defaults, the JSON config file,
environment variables, then command-line overrides applied through set().
"""

import json
import os
from typing import Any, Dict, Optional

from .logger_config import get_logger

logger = get_logger("config_manager")


class ConfigManager:
    """Centralized configuration management for the grading server"""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager

        Args:
            config_path: Path to configuration file (optional)
        """
        self.config_path = config_path or "config/server_config.json"
        self._config = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file and environment variables"""
        self._config = self._get_default_config()

        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    file_config = json.load(f)
                self._merge_config(file_config)
                logger.info(f"Loaded configuration from {self.config_path}")
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to load config file {self.config_path}: {e}")

        self._load_from_env()

        logger.debug("Configuration loaded successfully")

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values"""
        return {
            "server": {
                "port": 8080,
                "host": "0.0.0.0"
            },
            "log": {
                "level": "INFO",
                "dir": "logs/server_logs",
                "enable_colors": True
            },
            "judge": {
                "url": "http://localhost:2358",
                "request_timeout": 10,
                "poll_max_attempts": 30,
                "poll_interval": 2.0
            },
            "grading": {
                "max_workers": 8,
                "max_pending": 64
            },
            "db": {
                "path": "data/codesprint.duckdb"
            }
        }

    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        """Merge new configuration into existing config"""
        def merge_dict(target: Dict[str, Any], source: Dict[str, Any]) -> None:
            for key, value in source.items():
                if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                    merge_dict(target[key], value)
                else:
                    target[key] = value

        merge_dict(self._config, new_config)

    def _load_from_env(self) -> None:
        """Load configuration from environment variables"""
        env_mappings = {
            # Judge0 deployments conventionally export this one
            "JUDGE0_URL": ("judge", "url"),
            "CODESPRINT_SERVER_HOST": ("server", "host"),
            "CODESPRINT_SERVER_PORT": ("server", "port"),
            "CODESPRINT_LOG_LEVEL": ("log", "level"),
            "CODESPRINT_LOG_DIR": ("log", "dir"),
            "CODESPRINT_LOG_ENABLE_COLORS": ("log", "enable_colors"),
            "CODESPRINT_JUDGE_URL": ("judge", "url"),
            "CODESPRINT_JUDGE_REQUEST_TIMEOUT": ("judge", "request_timeout"),
            "CODESPRINT_JUDGE_POLL_MAX_ATTEMPTS": ("judge", "poll_max_attempts"),
            "CODESPRINT_JUDGE_POLL_INTERVAL": ("judge", "poll_interval"),
            "CODESPRINT_GRADING_MAX_WORKERS": ("grading", "max_workers"),
            "CODESPRINT_GRADING_MAX_PENDING": ("grading", "max_pending"),
            "CODESPRINT_DB_PATH": ("db", "path"),
        }

        for env_var, config_path in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None and value != "":
                self._set_nested_value(config_path, self._parse_env_value(value))

    def _set_nested_value(self, path: tuple, value: Any) -> None:
        """Set a nested configuration value"""
        current = self._config
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[path[-1]] = value

    def _parse_env_value(self, value: str) -> Any:
        """Parse environment variable value to appropriate type"""
        if value.lower() in ('true', 'yes', 'on'):
            return True
        if value.lower() in ('false', 'no', 'off'):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation

        Args:
            key: Configuration key (e.g., "judge.url")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        current = self._config
        for k in key.split('.'):
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return default
        return current

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        self._set_nested_value(tuple(key.split('.')), value)

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section"""
        return self._config.get(section, {})

    def to_dict(self) -> Dict[str, Any]:
        """Get complete configuration as dictionary"""
        return json.loads(json.dumps(self._config))

    def save(self, path: Optional[str] = None) -> None:
        """
        Save current configuration to file

        Args:
            path: File path to save to (uses default if not specified)
        """
        save_path = path or self.config_path
        save_dir = os.path.dirname(save_path)
        if save_dir:
            os.makedirs(save_dir, exist_ok=True)

        with open(save_path, 'w', encoding='utf-8') as f:
            json.dump(self._config, f, indent=2, ensure_ascii=False)

        logger.info(f"Configuration saved to {save_path}")


# Global configuration instance
_global_config: Optional[ConfigManager] = None


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Get or create global configuration instance"""
    global _global_config
    if _global_config is None:
        _global_config = ConfigManager(config_path)
    return _global_config


def set_config(config_manager: Optional[ConfigManager]) -> None:
    """Set (or clear, with None) the global configuration instance"""
    global _global_config
    _global_config = config_manager
