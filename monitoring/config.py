"""Configuration for the GlassNet monitor.

Reads config.json with the layout::

    {
      "monitoring": {"interval": 5000, "protocols": ["tcp", "udp"], "includeLoopback": false},
      "database":   {"retentionDays": 3, "path": "data/glassnet.db"},
      "privacy":    {"resolveHostnames": true}
    }

Every key is optional; missing keys keep their defaults.
"""

import json
import os
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from monitoring.errors import ConfigError
from monitoring.socket_parser import TRACKED_PROTOCOLS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config.json'


@dataclass
class MonitorConfig:
    """Settings consumed by the scan pipeline."""
    interval_ms: int = 5000
    protocols: List[str] = field(default_factory=lambda: ['tcp', 'udp'])
    include_loopback: bool = False
    resolve_hostnames: bool = True
    retention_days: int = 3
    database_path: str = os.path.join('data', 'glassnet.db')
    dedup_window: float = 300
    hostname_ttl: float = 300
    command_timeout: float = 10
    lookup_timeout: float = 2

    def validate(self) -> 'MonitorConfig':
        """Check value ranges.

        Raises:
            ConfigError: On the first invalid value
        """
        if self.interval_ms <= 0:
            raise ConfigError(f"monitoring.interval must be positive, got {self.interval_ms}")
        if not self.protocols:
            raise ConfigError("monitoring.protocols must name at least one protocol")
        unknown = [p for p in self.protocols if p not in TRACKED_PROTOCOLS]
        if unknown:
            raise ConfigError(f"Unsupported protocols {unknown}; expected any of {list(TRACKED_PROTOCOLS)}")
        if self.retention_days < 1:
            raise ConfigError(f"database.retentionDays must be at least 1, got {self.retention_days}")
        for name in ('dedup_window', 'hostname_ttl', 'command_timeout', 'lookup_timeout'):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def config_from_dict(data: Dict[str, Any]) -> MonitorConfig:
    """Build a MonitorConfig from the nested config.json layout."""
    monitoring = data.get('monitoring', {}) or {}
    database = data.get('database', {}) or {}
    privacy = data.get('privacy', {}) or {}
    defaults = MonitorConfig()

    try:
        config = MonitorConfig(
            interval_ms=int(monitoring.get('interval', defaults.interval_ms)),
            protocols=[str(p).lower() for p in monitoring.get('protocols', defaults.protocols)],
            include_loopback=bool(monitoring.get('includeLoopback', defaults.include_loopback)),
            resolve_hostnames=bool(privacy.get('resolveHostnames', defaults.resolve_hostnames)),
            retention_days=int(database.get('retentionDays', defaults.retention_days)),
            database_path=str(database.get('path', defaults.database_path)),
            dedup_window=float(monitoring.get('dedupWindowSeconds', defaults.dedup_window)),
            hostname_ttl=float(privacy.get('hostnameCacheSeconds', defaults.hostname_ttl)),
            command_timeout=float(monitoring.get('commandTimeoutSeconds', defaults.command_timeout)),
            lookup_timeout=float(privacy.get('lookupTimeoutSeconds', defaults.lookup_timeout)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")

    return config.validate()


def load_config(path: Optional[str] = None) -> MonitorConfig:
    """Load configuration from a JSON file.

    Args:
        path: Config file path (default: ./config.json)

    Returns:
        MonitorConfig; defaults when the file is missing or unreadable

    Raises:
        ConfigError: If the file parses but holds invalid values
    """
    path = path or DEFAULT_CONFIG_PATH
    if not os.path.exists(path):
        logger.info(f"No config file at {path}, using defaults")
        return MonitorConfig()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not load config file {path}, using defaults: {e}")
        return MonitorConfig()

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")

    return config_from_dict(data)
