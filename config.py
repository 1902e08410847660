"""
Configuration Management Module

Bot settings as a dataclass, loaded from a YAML file with a couple of
environment overrides for secrets.
"""

import os
from decimal import Decimal
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict

import yaml

from utils import logger, ConfigError, register_secret, validate_address, validate_private_key


PLACEHOLDER_RPC_URLS = ("", "https://rpc-url-here")
PLACEHOLDER_KEYS = ("", "your_private_key_here")

ENV_RPC_URL = "WRAP_BOT_RPC_URL"
ENV_PRIVATE_KEY = "WRAP_BOT_PRIVATE_KEY"


@dataclass
class Config:
    """Bot configuration settings."""

    # Network
    rpc_url: str = "https://rpc.plume.org"
    chain_id: Optional[int] = None  # Read from the node when unset
    request_timeout_seconds: int = 30

    # Wrapper contract
    wrapper_contract: str = "0xea237441c92cae6fc17caaf9a7acb3f953be4bd1"
    native_symbol: str = "PLUME"
    wrapped_symbol: str = "wPLUME"

    # Credentials (supplied by the operator, never written back)
    private_key: Optional[str] = None

    # Randomization
    min_amount: float = 1.0
    max_amount: float = 5.0
    amount_decimals: int = 6
    min_interval_minutes: float = 1.0
    max_interval_minutes: float = 2.0

    # Gas settings
    gas_limit: int = 300000
    gas_multiplier: float = 1.1
    min_gas_price_gwei: float = 1.0
    max_gas_price_gwei: float = 50.0
    fallback_priority_fee_gwei: float = 2.0
    fallback_max_fee_gwei: float = 50.0
    fee_cache_ttl_seconds: int = 300  # 5 minutes

    # Scheduling
    retry_backoff_seconds: int = 300  # 5 minutes
    confirmation_timeout_seconds: int = 180

    # Operation
    dry_run: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = "./wrap_bot.log"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (excluding the private key)."""
        data = asdict(self)
        data.pop("private_key", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        # Filter only valid fields
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**valid_fields)

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty when valid)."""
        problems = []

        if not self.rpc_url or self.rpc_url in PLACEHOLDER_RPC_URLS:
            problems.append("rpc_url is not configured")

        if not validate_address(self.wrapper_contract):
            problems.append(f"wrapper_contract is not a valid address: {self.wrapper_contract}")

        if not self.dry_run:
            if not self.private_key or self.private_key in PLACEHOLDER_KEYS:
                problems.append(f"private key is not configured (set {ENV_PRIVATE_KEY})")
            elif not validate_private_key(self.private_key):
                problems.append("private key must be 64 hex characters")

        if self.min_amount <= 0:
            problems.append("min_amount must be positive")
        if self.min_amount > self.max_amount:
            problems.append("min_amount must not exceed max_amount")
        if self.amount_decimals < 0 or self.amount_decimals > 18:
            problems.append("amount_decimals must be between 0 and 18")
        elif self.min_amount > 0 and not _representable(self.min_amount, self.amount_decimals):
            problems.append(
                f"min_amount has more than amount_decimals ({self.amount_decimals}) decimal places"
            )

        if self.min_interval_minutes < 0:
            problems.append("min_interval_minutes must not be negative")
        if self.min_interval_minutes > self.max_interval_minutes:
            problems.append("min_interval_minutes must not exceed max_interval_minutes")

        if self.gas_limit <= 0:
            problems.append("gas_limit must be positive")
        if self.gas_multiplier <= 0:
            problems.append("gas_multiplier must be positive")
        if self.min_gas_price_gwei < 0:
            problems.append("min_gas_price_gwei must not be negative")
        if self.min_gas_price_gwei > self.max_gas_price_gwei:
            problems.append("min_gas_price_gwei must not exceed max_gas_price_gwei")
        if self.fallback_priority_fee_gwei > self.fallback_max_fee_gwei:
            problems.append("fallback_priority_fee_gwei must not exceed fallback_max_fee_gwei")

        if self.fee_cache_ttl_seconds < 0:
            problems.append("fee_cache_ttl_seconds must not be negative")
        if self.retry_backoff_seconds < 0:
            problems.append("retry_backoff_seconds must not be negative")
        if self.confirmation_timeout_seconds <= 0:
            problems.append("confirmation_timeout_seconds must be positive")

        return problems

    def ensure_valid(self):
        """Raise ConfigError listing every problem found by validate()."""
        problems = self.validate()
        if problems:
            raise ConfigError("; ".join(problems))


def _representable(amount: float, decimals: int) -> bool:
    """True when ``amount`` survives truncation to ``decimals`` places."""
    return Decimal(str(amount)).normalize().as_tuple().exponent >= -decimals


class ConfigManager:
    """Loads and writes the YAML configuration file."""

    def __init__(self, config_path: Path = Path("./wrap_bot.yaml")):
        self.config_path = Path(config_path)

    def exists(self) -> bool:
        return self.config_path.exists()

    def read_raw_config(self) -> Dict[str, Any]:
        """Read the YAML file without applying overrides."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            data = yaml.safe_load(f)

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain a mapping: {self.config_path}")
        return data

    def load_config(self, environ: Optional[Dict[str, str]] = None) -> Config:
        """Load configuration, then apply environment overrides."""
        environ = os.environ if environ is None else environ

        data = self.read_raw_config() if self.config_path.exists() else {}
        config = Config.from_dict(data)

        if environ.get(ENV_RPC_URL):
            config.rpc_url = environ[ENV_RPC_URL]
        if environ.get(ENV_PRIVATE_KEY):
            config.private_key = environ[ENV_PRIVATE_KEY]

        if config.private_key not in PLACEHOLDER_KEYS:
            register_secret(config.private_key)

        logger.debug(f"Configuration loaded from {self.config_path}")
        return config

    def write_default(self, overwrite: bool = False) -> Path:
        """Write the commented default configuration template."""
        if self.config_path.exists() and not overwrite:
            raise FileExistsError(f"Config file already exists: {self.config_path}")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            f.write(DEFAULT_CONFIG + "\n")

        # The file may later hold a private key
        os.chmod(self.config_path, 0o600)

        logger.info(f"Configuration saved to {self.config_path}")
        return self.config_path
