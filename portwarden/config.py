"""
Configuration management for portwarden.

Handles:
- Gateway address
- Mapping lifetime and response policy
- Downstream notifier settings

Sources, lowest precedence first: defaults, JSON file, environment,
command line options.
"""

import ipaddress
import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Dict, Optional, Any
import logging

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY = "10.2.0.1"
DEFAULT_LIFETIME = 360
DEFAULT_QBITTORRENT_URL = "http://127.0.0.1:8080"

NOTIFIERS = ("qbittorrent", "file")

GATEWAY_ENV = "NATPMP_GATEWAY_IP"
ENV_PREFIX = "PORTWARDEN_"


@dataclass
class Config:
    """
    Main portwarden configuration.
    """
    gateway: str = DEFAULT_GATEWAY
    lifetime: int = DEFAULT_LIFETIME

    # Unexpected response types tolerated per mapping query
    max_unexpected: int = 3

    # Downstream
    notifier: str = "qbittorrent"  # qbittorrent, file
    qbittorrent_url: str = DEFAULT_QBITTORRENT_URL
    port_file: Optional[str] = None
    notify_retry_delay: float = 5.0  # 0 makes notifier failures fatal

    @property
    def gateway_address(self) -> ipaddress.IPv4Address:
        return ipaddress.IPv4Address(self.gateway)

    def validate(self) -> None:
        """Raise ValueError describing the first invalid setting."""
        try:
            self.gateway_address
        except ValueError:
            raise ValueError(f"Invalid gateway address: {self.gateway!r}")

        if not 0 < self.lifetime <= 0xFFFFFFFF:
            raise ValueError(f"Lifetime must be positive, got {self.lifetime}")
        if self.max_unexpected < 0:
            raise ValueError("max_unexpected cannot be negative")
        if self.notifier not in NOTIFIERS:
            raise ValueError(f"Unknown notifier {self.notifier!r}, expected one of {NOTIFIERS}")
        if self.notifier == "file" and not self.port_file:
            raise ValueError("The file notifier needs a port_file")
        if self.notify_retry_delay < 0:
            raise ValueError("notify_retry_delay cannot be negative")

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        # Filter to only known fields to handle config evolution
        known_fields = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in known_fields}
        return cls(**filtered)

    def save(self, path: Path) -> None:
        """Save configuration to disk."""
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.debug(f"Configuration saved to {path}")

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        """Load configuration from a JSON file, or defaults if there is none."""
        if path is None or not path.exists():
            return cls()

        with open(path, 'r') as f:
            data = json.load(f)

        return cls.from_dict(data)

    def with_env(self, environ: Optional[Dict[str, str]] = None) -> "Config":
        """Return a copy with environment overrides applied."""
        environ = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}

        if environ.get(GATEWAY_ENV):
            overrides["gateway"] = environ[GATEWAY_ENV]

        for f in fields(self):
            name = ENV_PREFIX + f.name.upper()
            value = environ.get(name)
            if value is None or value == "":
                continue
            try:
                if f.name in ("lifetime", "max_unexpected"):
                    overrides[f.name] = int(value)
                elif f.name == "notify_retry_delay":
                    overrides[f.name] = float(value)
                else:
                    overrides[f.name] = value
            except ValueError:
                raise ValueError(f"Invalid {name}: {value!r} is not a number") from None

        return replace(self, **overrides)

    def with_overrides(self, **overrides: Any) -> "Config":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_env(cls, path: Optional[Path] = None) -> "Config":
        """Defaults, then the JSON file at path, then the environment."""
        return cls.load(path).with_env()


# Global config instance
_config: Optional[Config] = None


def get_config(path: Optional[Path] = None) -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env(path)
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
