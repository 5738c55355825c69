"""Payment transaction builder.

Builders only read the ledger and assemble instructions; they never sign
or submit. The returned :class:`BuiltTransaction` is single-use: its
ephemeral keys and the blockhash it is compiled with must not be reused.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Protocol, Sequence, Tuple

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from spl.token.instructions import TransferCheckedParams, transfer_checked

from .accounts import associated_token_address, get_mint, get_token_account, require_account
from .amounts import AmountLike, as_decimal, to_base_units
from .constants import MEMO_PROGRAM_ID, SOL_DECIMALS, SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID
from .exceptions import InsufficientFundsError, InvalidAccountError, InvalidAmountError
from .ledger import LedgerView
from .logging_utils import OperationType, get_pay_logger, log_operation
from .urls import PaymentIntent

logger = logging.getLogger(__name__)


def _unique_signers(instructions: Sequence[Instruction]) -> Tuple[Pubkey, ...]:
    seen: List[Pubkey] = []
    for ix in instructions:
        for meta in ix.accounts:
            if meta.is_signer and meta.pubkey not in seen:
                seen.append(meta.pubkey)
    return tuple(seen)


@dataclass(frozen=True)
class BuiltTransaction:
    """Unsigned instructions plus everything needed to sign them."""
    instructions: Tuple[Instruction, ...]
    cleanup_instructions: Tuple[Instruction, ...] = ()
    ephemeral_signers: Tuple[Keypair, ...] = ()

    @property
    def required_signers(self) -> Tuple[Pubkey, ...]:
        return _unique_signers(self.instructions)

    @property
    def cleanup_required_signers(self) -> Tuple[Pubkey, ...]:
        return _unique_signers(self.cleanup_instructions)

    @property
    def has_cleanup(self) -> bool:
        return bool(self.cleanup_instructions)

    def compile(self, fee_payer: Pubkey, blockhash: Hash) -> Transaction:
        """Unsigned transaction for the primary instructions."""
        message = Message.new_with_blockhash(list(self.instructions), fee_payer, blockhash)
        return Transaction.new_unsigned(message)

    def compile_cleanup(self, fee_payer: Pubkey, blockhash: Hash) -> Optional[Transaction]:
        """Unsigned cleanup transaction, or None when there is nothing to undo."""
        if not self.cleanup_instructions:
            return None
        message = Message.new_with_blockhash(list(self.cleanup_instructions), fee_payer, blockhash)
        return Transaction.new_unsigned(message)


class KeyGenerator(Protocol):
    """Source of fresh keypairs for accounts a builder creates."""

    def generate(self) -> Keypair:
        ...


class RandomKeyGenerator:
    def generate(self) -> Keypair:
        return Keypair()


class SeededKeyGenerator:
    """Deterministic keypairs derived from a seed and a counter."""

    def __init__(self, seed: bytes = b"solpay-mint") -> None:
        self._seed = seed
        self._counter = 0

    def generate(self) -> Keypair:
        self._counter += 1
        digest = hashlib.sha256(self._seed + self._counter.to_bytes(8, "little")).digest()
        return Keypair.from_seed(digest)


def memo_instruction(memo: str) -> Instruction:
    """SPL memo instruction with no signer accounts."""
    return Instruction(MEMO_PROGRAM_ID, memo.encode("utf-8"), [])


def with_references(ix: Instruction, references: Sequence[Pubkey]) -> Instruction:
    """Copy of ``ix`` with each reference appended as a read-only non-signer."""
    if not references:
        return ix
    accounts = list(ix.accounts) + [AccountMeta(ref, False, False) for ref in references]
    return Instruction(ix.program_id, ix.data, accounts)


def _resolve_amount(intent: PaymentIntent, amount: Optional[AmountLike]) -> Decimal:
    value = amount if amount is not None else intent.amount
    if value is None:
        raise InvalidAmountError("amount missing")
    value = as_decimal(value)
    if value < 0:
        raise InvalidAmountError("amount must not be negative", amount=value)
    return value


async def _native_transfer(ledger: LedgerView, payer: Pubkey, recipient: Pubkey, amount: Decimal) -> Instruction:
    # Scale is checked before touching the ledger
    lamports = to_base_units(amount, SOL_DECIMALS)

    payer_info = await require_account(ledger, payer, "payer")
    recipient_info = await require_account(ledger, recipient, "recipient")
    for role, address, info in (
        ("payer", payer, payer_info),
        ("recipient", recipient, recipient_info),
    ):
        if info.owner != SYSTEM_PROGRAM_ID:
            raise InvalidAccountError(f"{role} {address} is not owned by the system program")
        if info.executable:
            raise InvalidAccountError(f"{role} {address} is executable")

    if payer_info.lamports < lamports:
        raise InsufficientFundsError(
            f"payer {payer} has {payer_info.lamports} lamports, needs {lamports}",
            available=payer_info.lamports,
            required=lamports,
        )

    return transfer(TransferParams(from_pubkey=payer, to_pubkey=recipient, lamports=lamports))


async def _token_transfer(
    ledger: LedgerView, payer: Pubkey, recipient: Pubkey, spl_token: Pubkey, amount: Decimal
) -> Instruction:
    await require_account(ledger, payer, "payer")
    await require_account(ledger, recipient, "recipient")

    mint = await get_mint(ledger, spl_token)
    if not mint.is_initialized:
        raise InvalidAccountError(f"mint {mint.address} is not initialized")
    units = to_base_units(amount, mint.decimals)

    payer_ata = await get_token_account(
        ledger, associated_token_address(payer, mint.address), "payer token account"
    )
    recipient_ata = await get_token_account(
        ledger, associated_token_address(recipient, mint.address), "recipient token account"
    )
    for role, account in (("payer", payer_ata), ("recipient", recipient_ata)):
        if not account.is_initialized:
            raise InvalidAccountError(f"{role} token account {account.address} is not initialized")
        if account.is_frozen:
            raise InvalidAccountError(f"{role} token account {account.address} is frozen")

    if payer_ata.amount < units:
        raise InsufficientFundsError(
            f"payer token account {payer_ata.address} has {payer_ata.amount}, needs {units}",
            available=payer_ata.amount,
            required=units,
        )

    return transfer_checked(
        TransferCheckedParams(
            program_id=TOKEN_PROGRAM_ID,
            source=payer_ata.address,
            mint=mint.address,
            dest=recipient_ata.address,
            owner=payer,
            amount=units,
            decimals=mint.decimals,
        )
    )


@log_operation(OperationType.BUILD_PAYMENT)
async def build_payment_transaction(
    ledger: LedgerView,
    payer: Pubkey,
    intent: PaymentIntent,
    amount: Optional[AmountLike] = None,
) -> BuiltTransaction:
    """Build the transfer a wallet signs to satisfy ``intent``.

    Args:
        ledger: Read access to account state
        payer: Account paying (and signing for) the transfer
        intent: Parsed payment request
        amount: Overrides ``intent.amount`` (for requests without one)

    Returns:
        BuiltTransaction with an optional memo instruction followed by the
        transfer, references appended to the transfer's accounts.

    Raises:
        InvalidAmountError: amount missing, negative or too precise
        AccountNotFoundError: payer, recipient, mint or token account missing
        InvalidAccountError: account of the wrong kind, uninitialized or frozen
        InsufficientFundsError: payer cannot cover the amount
    """
    value = _resolve_amount(intent, amount)

    if intent.spl_token is None:
        ix = await _native_transfer(ledger, payer, intent.recipient, value)
    else:
        ix = await _token_transfer(ledger, payer, intent.recipient, intent.spl_token, value)

    instructions: List[Instruction] = []
    if intent.memo is not None:
        instructions.append(memo_instruction(intent.memo))
    instructions.append(with_references(ix, intent.references))

    pay_log = get_pay_logger()
    token = "SOL" if intent.spl_token is None else pay_log.address(intent.spl_token)
    logger.debug(
        f"Built payment of {value} {token} "
        f"to {pay_log.address(intent.recipient)} with {len(intent.references)} reference(s)"
    )
    return BuiltTransaction(instructions=tuple(instructions))
