"""
Pytest configuration for solpay-mint tests.
"""
from __future__ import annotations

import pytest

from solpay_mint.config import LoggingConfig, SolanaPayConfig, set_config
from solpay_mint.logging_utils import reset_pay_logger

from tests.ledger_helpers import FakeLedger, key


@pytest.fixture(autouse=True)
def test_config():
    """Fresh configuration and logger for every test."""
    config = SolanaPayConfig(
        rpc_url="https://rpc.test.invalid",
        poll_interval_seconds=0.01,
        poll_timeout_seconds=0.2,
        logging=LoggingConfig(audit_log_enabled=True),
    )
    set_config(config)
    reset_pay_logger()
    yield config
    set_config(None)
    reset_pay_logger()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def payer():
    return key(1)


@pytest.fixture
def merchant():
    return key(2)


@pytest.fixture
def reference():
    return key(3)


@pytest.fixture
def usdc_mint():
    return key(10)
