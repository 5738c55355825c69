"""
Logging utilities for payment-request operations.

Features:
- Operation context tracking (build, find, validate) with durations
- RPC call logging
- Audit trail for validation verdicts
- Address masking
"""
from __future__ import annotations

import json
import logging
import re
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar

from .config import LoggingConfig, get_config

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable)

# Base58 runs the length of a public key; signatures are longer
ADDRESS_PATTERN = re.compile(r"\b[1-9A-HJ-NP-Za-km-z]{32,44}\b")


class OperationType(str, Enum):
    """Types of protocol operations."""
    BUILD_PAYMENT = "build_payment"
    BUILD_MINT = "build_mint"
    FIND_SIGNATURE = "find_signature"
    VALIDATE_PAYMENT = "validate_payment"
    VALIDATE_MINT = "validate_mint"
    VALIDATE_CLEANUP = "validate_cleanup"
    RPC_CALL = "rpc_call"


@dataclass
class OperationContext:
    """Context for a protocol operation."""
    operation_id: str
    operation_type: OperationType
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        """Mark operation as complete."""
        self.completed_at = datetime.now(timezone.utc)
        self.duration_ms = (
            (self.completed_at - self.started_at).total_seconds() * 1000
        )
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "operation_id": self.operation_id,
            "operation_type": self.operation_type.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "metadata": self.metadata,
        }


def mask_address(address: Any) -> str:
    """Mask middle portion of address for privacy."""
    address = str(address)
    if len(address) < 10:
        return address
    return f"{address[:4]}...{address[-4:]}"


class PayLogger:
    """
    Structured logger for payment-request operations.

    Provides:
    - Operation context tracking
    - RPC call logging
    - Validation audit trail
    """

    def __init__(
        self,
        name: str = "solpay_mint",
        config: Optional[LoggingConfig] = None,
    ):
        self._logger = logging.getLogger(name)
        self._config = config or get_config().logging
        self._operation_counter = 0

    @property
    def config(self) -> LoggingConfig:
        return self._config

    def _generate_operation_id(self) -> str:
        """Generate a unique operation ID."""
        self._operation_counter += 1
        timestamp = int(time.time() * 1000)
        return f"op_{timestamp}_{self._operation_counter}"

    def _get_level(self, level_str: str) -> int:
        """Convert level string to logging level."""
        return getattr(logging, level_str.upper(), logging.INFO)

    def address(self, value: Any) -> str:
        """Render an address, masked if configured."""
        return mask_address(value) if self._config.mask_addresses else str(value)

    def redact(self, text: Optional[str]) -> Optional[str]:
        """Mask every address inside free text, if configured."""
        if text is None or not self._config.mask_addresses:
            return text
        return ADDRESS_PATTERN.sub(lambda m: mask_address(m.group()), text)

    @asynccontextmanager
    async def operation_context(
        self,
        operation_type: OperationType,
        **metadata,
    ):
        """
        Context manager for tracking an operation.

        Usage:
            async with logger.operation_context(OperationType.FIND_SIGNATURE) as ctx:
                # Do operation
                ctx.metadata["signature"] = signature
        """
        ctx = OperationContext(
            operation_id=self._generate_operation_id(),
            operation_type=operation_type,
            metadata=metadata,
        )

        self._logger.debug(
            f"Starting {operation_type.value}",
            extra={"operation": ctx.to_dict()},
        )

        try:
            yield ctx
            ctx.complete(success=True)

        except Exception as e:
            ctx.complete(success=False, error=self.redact(f"{type(e).__name__}: {e}"))
            raise

        finally:
            level = (
                self._get_level(self._config.error_level)
                if not ctx.success
                else self._get_level(self._config.operation_level)
            )
            self._logger.log(
                level,
                f"Completed {operation_type.value} in {ctx.duration_ms:.0f}ms "
                f"(success={ctx.success})",
                extra={"operation": ctx.to_dict()},
            )

    def log_rpc_call(
        self,
        method: str,
        request_id: int,
        duration_ms: float,
        success: bool,
        error_message: Optional[str] = None,
    ) -> None:
        """Log a ledger RPC call."""
        level = (
            self._get_level(self._config.error_level)
            if not success
            else self._get_level(self._config.rpc_call_level)
        )
        self._logger.log(
            level,
            f"RPC {method} #{request_id} in {duration_ms:.0f}ms (success={success})",
            extra={
                "rpc_call": {
                    "method": method,
                    "request_id": request_id,
                    "duration_ms": duration_ms,
                    "success": success,
                    "error_message": error_message,
                }
            },
        )

    def log_validation(
        self,
        kind: str,
        signature: str,
        valid: bool,
        field_name: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        """Record a validation verdict, audited when enabled."""
        reason = self.redact(reason)
        entry = {
            "kind": kind,
            "signature": signature,
            "valid": valid,
            "field": field_name,
            "reason": reason,
        }
        if valid:
            self._logger.info(f"Validated {kind} transaction {signature}")
        else:
            self._logger.warning(
                f"Rejected {kind} transaction {signature}: {field_name}: {reason}"
            )
        if self._config.audit_log_enabled:
            self._write_audit_log(f"{kind}_validation", entry)

    def _write_audit_log(self, event_type: str, data: Dict[str, Any]) -> None:
        """Write to audit log."""
        def convert(obj):
            if isinstance(obj, Decimal):
                return str(obj)
            if isinstance(obj, Enum):
                return obj.value
            return str(obj)

        audit_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "data": data,
        }

        if self._config.audit_log_path:
            try:
                with open(self._config.audit_log_path, "a") as f:
                    f.write(json.dumps(audit_entry, default=convert) + "\n")
            except OSError as e:
                self._logger.error(f"Failed to write audit log: {e}")
        else:
            self._logger.info(
                f"AUDIT: {event_type}",
                extra={"audit": audit_entry},
            )


# Global logger instance
_pay_logger: Optional[PayLogger] = None


def get_pay_logger(
    name: str = "solpay_mint",
    config: Optional[LoggingConfig] = None,
) -> PayLogger:
    """Get the global pay logger instance."""
    global _pay_logger
    if _pay_logger is None:
        _pay_logger = PayLogger(name, config)
    return _pay_logger


def reset_pay_logger() -> None:
    """Drop the global logger so the next call picks up fresh config."""
    global _pay_logger
    _pay_logger = None


def log_operation(operation_type: OperationType):
    """
    Decorator for logging protocol operations.

    Usage:
        @log_operation(OperationType.VALIDATE_PAYMENT)
        async def validate_payment(...):
            ...
    """
    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            pay_logger = get_pay_logger()
            async with pay_logger.operation_context(operation_type):
                return await func(*args, **kwargs)
        return wrapper  # type: ignore
    return decorator


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Set up logging configuration.

    Args:
        level: Log level
        format_string: Custom format string
        json_format: Use JSON formatting
    """
    if format_string is None:
        if json_format:
            format_string = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
        else:
            format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=format_string,
    )

    logging.getLogger("solpay_mint").setLevel(getattr(logging, level.upper()))
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
