"""Solana Pay payment and mint requests: encode, build, find, validate."""

from .candy_machine import CandyMachineProgram, CandyMachineState, InventoryProgram
from .client import SolanaClient
from .config import LoggingConfig, SolanaPayConfig, get_config, set_config
from .exceptions import (
    AccountNotFoundError,
    CreateTransactionError,
    InsufficientFundsError,
    InvalidAccountError,
    InvalidAmountError,
    LedgerError,
    MalformedURLError,
    NotFoundError,
    PollingTimeoutError,
    SolanaPayError,
    SolanaRPCError,
    SoldOutError,
    UnconfirmedError,
    ValidationMismatchError,
    is_transient,
)
from .finder import find_reference_signature
from .ledger import Commitment, LedgerView
from .logging_utils import setup_logging
from .mint import build_mint_transaction
from .polling import wait_for_payment, wait_for_signature
from .transaction import (
    BuiltTransaction,
    KeyGenerator,
    RandomKeyGenerator,
    SeededKeyGenerator,
    build_payment_transaction,
)
from .urls import MintIntent, PaymentIntent, encode_url, parse_mint_url, parse_payment_url, parse_url
from .validation import ValidationResult, validate_cleanup, validate_mint, validate_payment

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Intents
    "PaymentIntent",
    "MintIntent",
    "encode_url",
    "parse_url",
    "parse_payment_url",
    "parse_mint_url",
    # Builders
    "BuiltTransaction",
    "KeyGenerator",
    "RandomKeyGenerator",
    "SeededKeyGenerator",
    "build_payment_transaction",
    "build_mint_transaction",
    "CandyMachineProgram",
    "CandyMachineState",
    "InventoryProgram",
    # Finder / validation
    "find_reference_signature",
    "ValidationResult",
    "validate_payment",
    "validate_mint",
    "validate_cleanup",
    "wait_for_signature",
    "wait_for_payment",
    # Ledger
    "Commitment",
    "LedgerView",
    "SolanaClient",
    # Config
    "SolanaPayConfig",
    "LoggingConfig",
    "get_config",
    "set_config",
    "setup_logging",
    # Errors
    "SolanaPayError",
    "MalformedURLError",
    "CreateTransactionError",
    "AccountNotFoundError",
    "InvalidAccountError",
    "InvalidAmountError",
    "InsufficientFundsError",
    "SoldOutError",
    "NotFoundError",
    "UnconfirmedError",
    "ValidationMismatchError",
    "LedgerError",
    "SolanaRPCError",
    "PollingTimeoutError",
    "is_transient",
]
