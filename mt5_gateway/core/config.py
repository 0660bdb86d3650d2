"""
Configuration Management
========================
Centralized configuration with validation and defaults.

Non-secret settings come from config.yaml; the bridge URL and API key come
from the environment (MT5_API_URL, MT5_API_KEY) and override the file.
"""

import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Optional, Dict, Any

import yaml

from .exceptions import ConfigurationError


# Values people leave in .env files by accident
_PLACEHOLDER_PATTERN = re.compile(
    r"^(your[-_ ].*|.*[-_]here|changeme|change[-_]me|xxx+|todo|none|null|<.*>|\$\{.*\})$",
    re.IGNORECASE,
)

CREDENTIAL_STYLES = ("mtapi", "legacy")
ACCOUNT_TYPES = ("demo", "live", "prop")


def is_placeholder(value: Optional[str]) -> bool:
    """True for empty values and obvious template placeholders."""
    if value is None:
        return True
    text = str(value).strip()
    return not text or bool(_PLACEHOLDER_PATTERN.match(text))


@dataclass
class BridgeConfig:
    """
    MT5 bridge settings.

    One bridge contract per deployment: endpoint variants, credential
    encoding and HTTP method are fixed here once, never guessed per call.

    SECURITY: the API key is read from MT5_API_KEY and never written back
    by to_dict().
    """
    base_url: str = ""
    api_key: str = field(default="", repr=False)
    account_type: str = "demo"
    credential_style: str = "mtapi"
    positions_endpoint: str = "Positions"
    order_method: str = "POST"
    close_volume_param: str = "lots"
    api_key_header: str = "x-api-key"
    slippage: int = 10
    timeout: float = 30.0
    token_file: str = "data/mt5_session.json"

    @classmethod
    def from_env(cls, base: Optional["BridgeConfig"] = None) -> "BridgeConfig":
        """Overlay environment variables on a copy of ``base`` (or defaults)."""
        config = base or cls()
        return replace(
            config,
            base_url=os.getenv("MT5_API_URL", config.base_url),
            api_key=os.getenv("MT5_API_KEY", config.api_key),
            account_type=os.getenv("MT5_ACCOUNT_TYPE", config.account_type),
            token_file=os.getenv("MT5_TOKEN_FILE", config.token_file),
        )

    @property
    def api_url(self) -> str:
        """Base URL without trailing slash."""
        return self.base_url.strip().rstrip("/")

    def validate(self):
        """
        Validate before any network call.

        Raises:
            ConfigurationError: with the variable to fix
        """
        if is_placeholder(self.base_url):
            raise ConfigurationError(
                "MT5 bridge URL is not set. Set MT5_API_URL (e.g. https://mt5.mtapi.io)."
            )
        if not self.api_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"MT5_API_URL must start with http:// or https://, got {self.base_url!r}"
            )
        if is_placeholder(self.api_key):
            raise ConfigurationError(
                "MT5 bridge API key is not set. Set MT5_API_KEY to the key issued by your bridge provider."
            )
        if self.credential_style not in CREDENTIAL_STYLES:
            raise ConfigurationError(
                f"credential_style must be one of {CREDENTIAL_STYLES}, got {self.credential_style!r}"
            )
        if self.account_type not in ACCOUNT_TYPES:
            raise ConfigurationError(
                f"account_type must be one of {ACCOUNT_TYPES}, got {self.account_type!r}"
            )
        if self.positions_endpoint not in ("Positions", "OpenedOrders"):
            raise ConfigurationError(
                f"positions_endpoint must be Positions or OpenedOrders, got {self.positions_endpoint!r}"
            )
        if self.order_method.upper() not in ("GET", "POST"):
            raise ConfigurationError(f"order_method must be GET or POST, got {self.order_method!r}")
        if self.timeout <= 0:
            raise ConfigurationError(f"timeout must be > 0, got {self.timeout}")


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    file: Optional[str] = "data/gateway.log"
    max_size_mb: int = 10
    backup_count: int = 3


@dataclass
class Config:
    """
    Main configuration class.

    Loads from YAML file with sensible defaults, then applies environment
    overrides for secrets.
    """
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    _config_path: Optional[Path] = field(default=None, repr=False)

    @classmethod
    def load(cls, config_path: str = "config.yaml") -> "Config":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to config file

        Returns:
            Config instance with loaded values (not yet validated; the
            adapter validates the bridge section before connecting)
        """
        path = Path(config_path)
        config = cls()

        if path.exists():
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
            config._config_path = path

            if 'bridge' in data:
                config.bridge = BridgeConfig(**_known(BridgeConfig, data['bridge']))

            if 'logging' in data:
                config.logging = LoggingConfig(**_known(LoggingConfig, data['logging']))

        config.bridge = BridgeConfig.from_env(config.bridge)
        return config

    def validate(self):
        """Validate configuration values."""
        self.bridge.validate()
        if self.logging.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"Unknown log level: {self.logging.level}")

    def get_log_path(self) -> Optional[Path]:
        """Get path to log file (parent created), or None when file logging is off."""
        if not self.logging.file:
            return None
        path = Path(self.logging.file)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (secrets omitted)."""
        return {
            'bridge': {
                'base_url': self.bridge.base_url,
                'account_type': self.bridge.account_type,
                'credential_style': self.bridge.credential_style,
                'positions_endpoint': self.bridge.positions_endpoint,
                'order_method': self.bridge.order_method,
                'close_volume_param': self.bridge.close_volume_param,
                'slippage': self.bridge.slippage,
                'timeout': self.bridge.timeout,
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
            },
        }


def _known(cls, section: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep only keys the dataclass declares; secrets are not read from YAML."""
    names = {f.name for f in fields(cls)} - {"api_key"}
    return {k: v for k, v in (section or {}).items() if k in names}
