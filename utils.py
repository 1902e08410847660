"""
Utility Module

Logging, custom exceptions and formatting helpers shared by the wrap bot.

- Secure logging that redacts private keys and RPC credentials
- Rich console output
- Gwei / token / duration formatting
"""

import os
import re
import logging
from typing import Optional, Union
from decimal import Decimal

from web3 import Web3
from rich.logging import RichHandler
from rich.console import Console


LOGGER_NAME = "wrap_bot"

# Global console for Rich output
console = Console()

# Secret values (private keys) registered for redaction
_secret_patterns = []


class TransactionError(Exception):
    """Raised when a wrap/unwrap transaction fails or reverts."""
    pass


class FeeEstimationError(Exception):
    """Raised when a fee estimation tier cannot produce a quote."""
    pass


class ConfigError(Exception):
    """Raised when the configuration is missing or invalid."""
    pass


def register_secret(value: Optional[str]):
    """Redact ``value`` (with or without 0x prefix) from logs and error messages."""
    if not value:
        return
    bare = value[2:] if value.lower().startswith("0x") else value
    pattern = re.compile(r'(?:0x)?' + re.escape(bare), re.IGNORECASE)
    if pattern.pattern not in {p.pattern for p in _secret_patterns}:
        _secret_patterns.append(pattern)


def redact_secrets(text: str, replacement: str) -> str:
    for pattern in _secret_patterns:
        text = pattern.sub(replacement, text)
    return text


class SecureLogger:
    """
    Logger that sanitizes sensitive data from log messages.

    Registered private keys never reach a handler. Transaction hashes
    have the same shape as keys, so keys are matched by value.
    """

    SENSITIVE_PATTERNS = [
        (r'password["\']?\s*[:=]\s*["\'][^"\']+["\']', 'password=[REDACTED]'),
        (r'api[_-]?key["\']?\s*[:=]\s*["\'][^"\']+["\']', 'api_key=[REDACTED]'),
    ]

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _sanitize(self, msg: str) -> str:
        """Remove sensitive data from log message."""
        if not isinstance(msg, str):
            msg = str(msg)

        sanitized = redact_secrets(msg, '[PRIVATE_KEY_REDACTED]')
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    def debug(self, msg: str, *args, **kwargs):
        self._logger.debug(self._sanitize(msg), *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._logger.info(self._sanitize(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._logger.warning(self._sanitize(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._logger.error(self._sanitize(msg), *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        self._logger.exception(self._sanitize(msg), *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._logger.critical(self._sanitize(msg), *args, **kwargs)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> SecureLogger:
    """
    Setup logging with Rich console output and an optional log file.

    Calling it again reconfigures the same named logger, so module-level
    references to ``logger`` pick up the new handlers.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True
    )
    rich_handler.setLevel(getattr(logging, log_level.upper()))
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(rich_handler)

    if log_file:
        log_path = os.path.abspath(log_file)
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)

    return SecureLogger(logger)


# Initialize global secure logger (console only until the CLI reconfigures it)
logger = setup_logging()


# Unit conversion

def gwei_to_wei(gwei: Union[int, float, str, Decimal]) -> int:
    """Convert a gwei amount from config into wei."""
    return int(Web3.to_wei(Decimal(str(gwei)), 'gwei'))


def wei_to_gwei(wei: int) -> Decimal:
    """Convert wei to gwei."""
    return Decimal(Web3.from_wei(wei, 'gwei'))


def to_base_units(amount: Union[float, str, Decimal], decimals: int = 18) -> int:
    """Convert a token amount into its smallest unit."""
    return int(Decimal(str(amount)) * (Decimal(10) ** decimals))


def from_base_units(amount: int, decimals: int = 18) -> Decimal:
    """Convert a smallest-unit amount into a token amount."""
    return Decimal(amount) / (Decimal(10) ** decimals)


# Formatting utilities

def format_gwei(wei_amount: int) -> str:
    """Format a per-gas fee in wei as gwei."""
    value = wei_to_gwei(wei_amount)
    if value == 0:
        return "0 Gwei"
    if value < Decimal("0.001"):
        return f"{value:.9f} Gwei"
    if value < 1:
        return f"{value:.4f} Gwei"
    return f"{value:.2f} Gwei"


def format_amount(amount: Union[float, Decimal], symbol: str) -> str:
    """Format a token amount with appropriate precision."""
    value = Decimal(str(amount))
    if value < Decimal("0.001"):
        return f"{value:.6f} {symbol}"
    elif value < 1000:
        return f"{value:.4f} {symbol}"
    else:
        return f"{value:,.2f} {symbol}"


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes = seconds // 60
        secs = seconds % 60
        return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"
    else:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"


def format_address(address: str, length: int = 6) -> str:
    """Format address with ellipsis."""
    if len(address) <= length * 2 + 2:
        return address
    return f"{address[:length + 2]}...{address[-length:]}"


def format_tx_hash(tx_hash: str, length: int = 10) -> str:
    """Format transaction hash with ellipsis."""
    if len(tx_hash) <= length * 2:
        return tx_hash
    return f"{tx_hash[:length]}...{tx_hash[-length:]}"


# Validation utilities

def validate_private_key(key: Optional[str]) -> bool:
    """Validate private key format."""
    if not key:
        return False

    key_clean = key[2:] if key.startswith("0x") else key

    if len(key_clean) != 64:
        return False

    try:
        int(key_clean, 16)
        return True
    except ValueError:
        return False


def validate_address(address: Optional[str]) -> bool:
    """Validate an EVM address (any casing)."""
    if not address:
        return False
    return bool(Web3.is_address(address))


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """
    Sanitize error messages before they are shown on the console.

    RPC URLs frequently embed API keys, so they are redacted with keys.
    """
    if not isinstance(error, str):
        error = str(error)

    patterns = [
        (r'https?://[^\s\'"]+', '[URL]'),
        (r'password["\']?\s*[:=]\s*\S+', 'password=[REDACTED]'),
    ]

    sanitized = redact_secrets(error, '[PRIVATE_KEY]')
    for pattern, replacement in patterns:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

    return sanitized


def mask_sensitive(value: str, visible_chars: int = 4) -> str:
    """Mask sensitive data, showing only first and last few characters."""
    if len(value) <= visible_chars * 2:
        return "*" * len(value)

    return value[:visible_chars] + "***" + value[-visible_chars:]
