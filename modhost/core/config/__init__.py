from modhost.core.config.manager import ConfigError, ConfigManager
from modhost.core.config.models import HostConfig
from modhost.core.config.paths import HostFsPaths

__all__ = ["ConfigError", "ConfigManager", "HostConfig", "HostFsPaths"]
