"""Polling helpers for merchants waiting on a payment.

The finder and validators never sleep; these helpers wrap them in a
fixed-interval loop with an overall deadline. Transient errors are
retried, ``ValidationMismatchError`` and ledger errors propagate at once.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar, Union

from solders.pubkey import Pubkey

from .amounts import AmountLike
from .config import get_config
from .exceptions import PollingTimeoutError, is_transient
from .finder import find_reference_signature
from .ledger import CommitmentLike, LedgerView
from .logging_utils import get_pay_logger
from .validation import ValidationResult, validate_payment

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def poll(
    operation: Callable[[], Awaitable[T]],
    timeout_seconds: Optional[float] = None,
    poll_interval: Optional[float] = None,
    description: str = "operation",
) -> T:
    """
    Call ``operation`` until it returns, retrying transient failures.

    Args:
        operation: Zero-argument coroutine factory
        timeout_seconds: Maximum wait time
        poll_interval: Delay between attempts

    Returns:
        The first successful result

    Raises:
        PollingTimeoutError: If no attempt succeeded within the timeout
    """
    config = get_config()
    if timeout_seconds is None:
        timeout_seconds = config.poll_timeout_seconds
    if poll_interval is None:
        poll_interval = config.poll_interval_seconds

    loop = asyncio.get_running_loop()
    start_time = loop.time()
    attempts = 0
    last_error: Optional[BaseException] = None

    while True:
        attempts += 1
        try:
            return await operation()
        except Exception as e:
            if not is_transient(e):
                raise
            last_error = e
            logger.debug(f"{description} attempt {attempts} not ready: {e}")

        elapsed = loop.time() - start_time
        if elapsed + poll_interval > timeout_seconds:
            raise PollingTimeoutError(
                f"{description} did not complete after {timeout_seconds}s: {last_error}",
                timeout_seconds=timeout_seconds,
                attempts=attempts,
            ) from last_error

        await asyncio.sleep(poll_interval)


async def wait_for_signature(
    ledger: LedgerView,
    reference: Pubkey,
    timeout_seconds: Optional[float] = None,
    poll_interval: Optional[float] = None,
    commitment: Optional[CommitmentLike] = None,
) -> str:
    """Poll the finder until a successful transaction tagged ``reference`` appears."""
    signature = await poll(
        lambda: find_reference_signature(ledger, reference, commitment=commitment),
        timeout_seconds=timeout_seconds,
        poll_interval=poll_interval,
        description=f"find reference {reference}",
    )
    logger.info(f"Reference {get_pay_logger().address(reference)} found in {signature}")
    return signature


async def wait_for_payment(
    ledger: LedgerView,
    reference: Pubkey,
    recipient: Pubkey,
    amount: AmountLike,
    spl_token: Optional[Pubkey] = None,
    references: Union[Pubkey, Sequence[Pubkey], None] = None,
    timeout_seconds: Optional[float] = None,
    poll_interval: Optional[float] = None,
    commitment: Optional[CommitmentLike] = None,
) -> ValidationResult:
    """
    Find the transaction tagged ``reference`` and validate it.

    ``references`` defaults to ``reference``; pass the full list to require
    every reference of the request. Validation is retried while the
    transaction is not yet at the required commitment.

    Raises:
        ValidationMismatchError: The transaction does not satisfy the request
        PollingTimeoutError: Nothing valid arrived before the deadline
    """
    if timeout_seconds is None:
        timeout_seconds = get_config().poll_timeout_seconds
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_seconds

    signature = await wait_for_signature(
        ledger, reference,
        timeout_seconds=timeout_seconds,
        poll_interval=poll_interval,
        commitment=commitment,
    )

    expected: Any = references if references is not None else reference
    return await poll(
        lambda: validate_payment(
            ledger, signature, recipient, amount,
            spl_token=spl_token, reference=expected, commitment=commitment,
        ),
        timeout_seconds=max(deadline - loop.time(), 0.0),
        poll_interval=poll_interval,
        description=f"validate {signature}",
    )
