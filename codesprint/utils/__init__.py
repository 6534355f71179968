"""
Utility modules for CodeSprint: logging setup and configuration.
"""

from .logger_config import get_logger, setup_logging
from .config_manager import ConfigManager, get_config, set_config

__all__ = ["get_logger", "setup_logging", "ConfigManager", "get_config", "set_config"]
