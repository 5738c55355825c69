"""
Configuration management for solpay-mint.

Provides centralized configuration for:
- The ledger RPC endpoint and timeout
- The project-wide commitment level
- Polling cadence for orchestration helpers
- Logging configuration
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
VALID_COMMITMENTS = ("processed", "confirmed", "finalized")


@dataclass
class LoggingConfig:
    """Configuration for protocol operation logging."""
    # Log levels for different operations
    rpc_call_level: str = "DEBUG"
    operation_level: str = "INFO"
    error_level: str = "ERROR"

    # Sensitive data handling
    mask_addresses: bool = False

    # Audit logging of validation verdicts
    audit_log_enabled: bool = True
    audit_log_path: Optional[str] = None  # None = use default logger


@dataclass
class SolanaPayConfig:
    """
    Master configuration for solpay-mint.

    Supports loading from environment variables with prefix SOLPAY_.
    """
    rpc_url: str = DEFAULT_RPC_URL
    # One commitment for finder, payment, mint and cleanup validation
    commitment: str = "confirmed"
    timeout: float = 30.0

    # Orchestration helpers only; the core never sleeps
    poll_interval_seconds: float = 0.5
    poll_timeout_seconds: float = 120.0

    # Lookback window for getSignaturesForAddress
    signature_search_limit: int = 1000

    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self) -> None:
        if self.commitment not in VALID_COMMITMENTS:
            raise ValueError(
                f"Unknown commitment {self.commitment!r}, expected one of {VALID_COMMITMENTS}"
            )
        if not 1 <= self.signature_search_limit <= 1000:
            raise ValueError("signature_search_limit must be between 1 and 1000")


def _get_env(key: str, default: Any = None, prefix: str = "SOLPAY_") -> Any:
    """Get environment variable with prefix."""
    return os.getenv(f"{prefix}{key}", default)


def _get_env_float(key: str, default: float) -> float:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric SOLPAY_{key}={value!r}")
        return default


def build_default_config() -> SolanaPayConfig:
    """Build configuration from defaults plus SOLPAY_* environment overrides."""
    return SolanaPayConfig(
        rpc_url=_get_env("RPC_URL", DEFAULT_RPC_URL),
        commitment=_get_env("COMMITMENT", "confirmed"),
        timeout=_get_env_float("TIMEOUT", 30.0),
        poll_interval_seconds=_get_env_float("POLL_INTERVAL", 0.5),
        poll_timeout_seconds=_get_env_float("POLL_TIMEOUT", 120.0),
        signature_search_limit=int(_get_env_float("SEARCH_LIMIT", 1000)),
        logging=LoggingConfig(
            mask_addresses=_get_env("MASK_ADDRESSES", "false").lower() in ("1", "true", "yes"),
            audit_log_path=_get_env("AUDIT_LOG_PATH"),
        ),
    )


# Global configuration instance
_global_config: Optional[SolanaPayConfig] = None


def get_config() -> SolanaPayConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = build_default_config()
    return _global_config


def set_config(config: Optional[SolanaPayConfig]) -> None:
    """Set (or with None, reset) the global configuration instance."""
    global _global_config
    _global_config = config
