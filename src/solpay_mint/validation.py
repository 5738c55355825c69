"""Validate confirmed transactions against the request they claim to satisfy.

Validation re-derives what happened from the ledger's balance deltas, not
from the instruction arguments: a transaction naming the right recipient
and amount whose side effects net to something else is rejected.

Each validator either returns a passing :class:`ValidationResult` or
raises. ``NotFoundError`` and ``UnconfirmedError`` mean "ask again later";
``ValidationMismatchError`` is final and names the field that disagreed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field as dc_field
from typing import Any, Dict, List, NoReturn, Optional, Sequence, Union

from solders.pubkey import Pubkey

from .accounts import associated_token_address
from .amounts import AmountLike, to_base_units
from .candy_machine import (
    MINT_NFT_CANDY_MACHINE_INDEX,
    MINT_NFT_MINT_INDEX,
    MINT_NFT_PAYER_INDEX,
    CandyMachineProgram,
    CandyMachineState,
    InventoryProgram,
)
from .config import get_config
from .constants import CANDY_MACHINE_PROGRAM_ID, SOL_DECIMALS, SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID
from .exceptions import InvalidAmountError, NotFoundError, UnconfirmedError, ValidationMismatchError
from .ledger import Commitment, CommitmentLike, ConfirmedTransaction, LedgerView
from .logging_utils import OperationType, get_pay_logger, log_operation

logger = logging.getLogger(__name__)

PAYMENT = "payment"
MINT = "mint"
CLEANUP = "cleanup"

MINT_TO_TYPES = ("mintTo", "mintToChecked")


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one transaction."""
    valid: bool
    signature: str
    field: Optional[str] = None
    reason: Optional[str] = None
    details: Dict[str, Any] = dc_field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "signature": self.signature,
            "field": self.field,
            "reason": self.reason,
            "details": self.details,
        }


def _reject(kind: str, signature: str, field_name: str, reason: str, **details: Any) -> NoReturn:
    result = ValidationResult(
        valid=False, signature=signature, field=field_name, reason=reason, details=details
    )
    get_pay_logger().log_validation(kind, signature, False, field_name=field_name, reason=reason)
    raise ValidationMismatchError(field_name, reason, result=result, details=dict(details))


def _accept(kind: str, signature: str, **details: Any) -> ValidationResult:
    get_pay_logger().log_validation(kind, signature, True)
    return ValidationResult(valid=True, signature=signature, details=details)


async def fetch_confirmed_transaction(
    ledger: LedgerView,
    signature: str,
    commitment: Optional[CommitmentLike] = None,
) -> ConfirmedTransaction:
    """Fetch ``signature`` at the required commitment.

    Raises:
        NotFoundError: the ledger has never seen the signature
        UnconfirmedError: seen, but not yet at the required commitment
    """
    required = Commitment(commitment or get_config().commitment)
    tx = await ledger.get_transaction(signature, required)
    if tx is not None:
        return tx

    status = await ledger.get_signature_status(signature)
    if status is None:
        raise NotFoundError(f"transaction {signature} not found", details={"signature": signature})

    # Transactions are only readable from confirmed onwards
    effective = required if required.satisfies(Commitment.CONFIRMED) else Commitment.CONFIRMED
    current = status.confirmation_status
    raise UnconfirmedError(
        f"transaction {signature} is {current.value if current else 'unconfirmed'}, "
        f"requires {effective.value}",
        signature=signature,
        status=current.value if current else None,
        required=effective.value,
    )


def _check_status(kind: str, tx: ConfirmedTransaction) -> None:
    if not tx.has_meta:
        _reject(kind, tx.signature, "status", "transaction metadata unavailable")
    if tx.err is not None:
        _reject(kind, tx.signature, "status", f"transaction failed: {tx.err}", err=tx.err)


def _as_references(reference: Union[Pubkey, Sequence[Pubkey], None]) -> List[Pubkey]:
    if reference is None:
        return []
    if isinstance(reference, Pubkey):
        return [reference]
    return list(reference)


def _expected_units(signature: str, amount: AmountLike, decimals: int) -> int:
    try:
        return to_base_units(amount, decimals)
    except InvalidAmountError as e:
        _reject(PAYMENT, signature, "amount", e.message, decimals=decimals)


def _native_delta(tx: ConfirmedTransaction, recipient: Pubkey, amount: AmountLike) -> Dict[str, Any]:
    expected = _expected_units(tx.signature, amount, SOL_DECIMALS)
    index = tx.index_of(recipient)
    if index is None or index >= len(tx.post_balances) or index >= len(tx.pre_balances):
        _reject(PAYMENT, tx.signature, "recipient", f"recipient {recipient} not found in transaction")

    received = tx.post_balances[index] - tx.pre_balances[index]
    if received != expected:
        _reject(
            PAYMENT, tx.signature, "amount",
            f"recipient received {received} lamports, expected {expected}",
            received=received, expected=expected,
        )
    return {"received": received, "expected": expected}


def _token_delta(
    tx: ConfirmedTransaction, recipient: Pubkey, amount: AmountLike, spl_token: Pubkey
) -> Dict[str, Any]:
    token_account = associated_token_address(recipient, spl_token)
    index = tx.index_of(token_account)
    if index is None:
        _reject(PAYMENT, tx.signature, "recipient", f"recipient token account {token_account} not found in transaction")

    post = tx.post_token_balance(index)
    if post is None:
        _reject(PAYMENT, tx.signature, "recipient", f"no token balance for {token_account}")
    pre = tx.pre_token_balance(index)

    for balance in (pre, post):
        if balance is None:
            continue
        if balance.mint != spl_token:
            _reject(
                PAYMENT, tx.signature, "spl_token",
                f"token account {token_account} holds {balance.mint}, expected {spl_token}",
            )
        if balance.owner is not None and balance.owner != recipient:
            _reject(
                PAYMENT, tx.signature, "recipient",
                f"token account {token_account} is owned by {balance.owner}, expected {recipient}",
            )

    expected = _expected_units(tx.signature, amount, post.decimals)
    # A missing pre balance means the account was created in this transaction
    received = post.amount - (pre.amount if pre is not None else 0)
    if received != expected:
        _reject(
            PAYMENT, tx.signature, "amount",
            f"recipient received {received} units, expected {expected}",
            received=received, expected=expected,
        )
    return {"received": received, "expected": expected, "token_account": str(token_account)}


@log_operation(OperationType.VALIDATE_PAYMENT)
async def validate_payment(
    ledger: LedgerView,
    signature: str,
    recipient: Pubkey,
    amount: AmountLike,
    spl_token: Optional[Pubkey] = None,
    reference: Union[Pubkey, Sequence[Pubkey], None] = None,
    commitment: Optional[CommitmentLike] = None,
) -> ValidationResult:
    """Check that ``signature`` paid exactly ``amount`` to ``recipient``.

    Args:
        ledger: Read access to confirmed transactions
        signature: Transaction to check (usually from the finder)
        recipient: Expected recipient wallet
        amount: Expected decimal amount, converted exactly as the builder does
        spl_token: Expected token mint, None for native SOL
        reference: One or more references that must appear in the account keys
        commitment: Required commitment, defaults to the configured one

    Returns:
        Passing ValidationResult with received base units and slot

    Raises:
        NotFoundError, UnconfirmedError: transient, retry later
        ValidationMismatchError: field that disagreed, never retried
    """
    tx = await fetch_confirmed_transaction(ledger, signature, commitment)
    _check_status(PAYMENT, tx)

    if spl_token is None:
        details = _native_delta(tx, recipient, amount)
    else:
        details = _token_delta(tx, recipient, amount, spl_token)

    keys = tx.keys
    for ref in _as_references(reference):
        if ref not in keys:
            _reject(PAYMENT, signature, "reference", f"reference {ref} not found in transaction")

    return _accept(PAYMENT, signature, slot=tx.slot, **details)


@log_operation(OperationType.VALIDATE_MINT)
async def validate_mint(
    ledger: LedgerView,
    signature: str,
    payer: Pubkey,
    candy_machine_id: Pubkey,
    commitment: Optional[CommitmentLike] = None,
    program_id: Pubkey = CANDY_MACHINE_PROGRAM_ID,
) -> ValidationResult:
    """Check that ``signature`` minted one new unit from ``candy_machine_id`` to ``payer``."""
    tx = await fetch_confirmed_transaction(ledger, signature, commitment)
    _check_status(MINT, tx)

    mint_ix = next((ix for ix in tx.instructions if ix.program_id == program_id), None)
    if mint_ix is None:
        _reject(MINT, signature, "inventory", f"no {program_id} instruction in transaction")
    if len(mint_ix.accounts) <= MINT_NFT_MINT_INDEX:
        _reject(MINT, signature, "inventory", "mint instruction has too few accounts")
    if mint_ix.accounts[MINT_NFT_CANDY_MACHINE_INDEX] != candy_machine_id:
        _reject(
            MINT, signature, "inventory",
            f"minted from {mint_ix.accounts[MINT_NFT_CANDY_MACHINE_INDEX]}, expected {candy_machine_id}",
        )
    if mint_ix.accounts[MINT_NFT_PAYER_INDEX] != payer:
        _reject(
            MINT, signature, "payer",
            f"paid by {mint_ix.accounts[MINT_NFT_PAYER_INDEX]}, expected {payer}",
        )

    mint = mint_ix.accounts[MINT_NFT_MINT_INDEX]
    created = any(
        ix.program_id == SYSTEM_PROGRAM_ID
        and ix.type == "createAccount"
        and ix.info.get("newAccount") == str(mint)
        and ix.info.get("owner") == str(TOKEN_PROGRAM_ID)
        for ix in tx.instructions
    )
    if not created:
        _reject(MINT, signature, "mint", f"mint {mint} was not created in this transaction")

    if any(b.mint == mint for b in tx.pre_token_balances):
        _reject(MINT, signature, "supply", f"mint {mint} had holders before this transaction")
    holdings = [b for b in tx.post_token_balances if b.mint == mint]
    supply = sum(b.amount for b in holdings)
    if supply != 1:
        _reject(MINT, signature, "supply", f"mint {mint} supply is {supply}, expected 1", supply=supply)
    for balance in holdings:
        if balance.decimals != 0:
            _reject(MINT, signature, "supply", f"mint {mint} has {balance.decimals} decimals, expected 0")
        if balance.amount and balance.owner is not None and balance.owner != payer:
            _reject(MINT, signature, "supply", f"mint {mint} is held by {balance.owner}, expected {payer}")

    targets = [
        ix for ix in tx.instructions
        if ix.program_id == TOKEN_PROGRAM_ID and ix.type in MINT_TO_TYPES and ix.info.get("mint") == str(mint)
    ]
    if not targets:
        _reject(MINT, signature, "owner", f"no mintTo for {mint} in transaction")
    token_account = None
    for ix in targets:
        token_account = ix.info.get("account")
        index = next((i for i, key in enumerate(tx.keys) if str(key) == token_account), None)
        balance = tx.post_token_balance(index) if index is not None else None
        if balance is None or balance.owner != payer:
            _reject(MINT, signature, "owner", f"mintTo target {token_account} is not held by {payer}")

    return _accept(MINT, signature, mint=str(mint), token_account=token_account, slot=tx.slot)


def _delegated_accounts(state: CandyMachineState, payer: Pubkey) -> Dict[str, str]:
    """Payer token accounts a mint against ``state`` leaves delegated, by role."""
    accounts = {}
    if state.token_mint is not None:
        accounts[str(associated_token_address(payer, state.token_mint))] = "price"
    settings = state.whitelist_mint_settings
    if settings is not None and settings.burns:
        accounts[str(associated_token_address(payer, settings.mint))] = "whitelist"
    return accounts


@log_operation(OperationType.VALIDATE_CLEANUP)
async def validate_cleanup(
    ledger: LedgerView,
    signature: str,
    payer: Pubkey,
    candy_machine_id: Pubkey,
    commitment: Optional[CommitmentLike] = None,
    program: Optional[InventoryProgram] = None,
) -> ValidationResult:
    """Check that ``signature`` only revoked the delegations a mint from
    ``candy_machine_id`` leaves on ``payer``'s token accounts."""
    tx = await fetch_confirmed_transaction(ledger, signature, commitment)
    _check_status(CLEANUP, tx)

    if not tx.instructions:
        _reject(CLEANUP, signature, "instruction", "cleanup transaction has no instructions")
    state = await (program or CandyMachineProgram()).fetch_state(ledger, candy_machine_id)
    allowed = _delegated_accounts(state, payer)

    revoked = []
    for ix in tx.instructions:
        if ix.program_id != TOKEN_PROGRAM_ID or ix.type != "revoke":
            _reject(
                CLEANUP, signature, "instruction",
                f"unexpected {ix.program or ix.program_id} {ix.type or 'instruction'} in cleanup",
            )
        if ix.info.get("owner") != str(payer):
            _reject(CLEANUP, signature, "instruction", f"revoke owner {ix.info.get('owner')} is not {payer}")
        source = ix.info.get("source")
        if source not in allowed:
            _reject(
                CLEANUP, signature, "instruction",
                f"revoked {source} is not delegated by minting from {candy_machine_id}",
                source=source,
            )
        revoked.append(source)

    pre_tokens = {b.account_index: b.amount for b in tx.pre_token_balances}
    post_tokens = {b.account_index: b.amount for b in tx.post_token_balances}
    if pre_tokens != post_tokens:
        _reject(CLEANUP, signature, "balance", "token balances changed during cleanup")

    for i, (pre, post) in enumerate(zip(tx.pre_balances, tx.post_balances)):
        expected = pre - tx.fee if i == 0 else pre
        if post != expected:
            _reject(
                CLEANUP, signature, "balance",
                f"account {tx.keys[i] if i < len(tx.keys) else i} went from {pre} to {post}",
            )

    return _accept(
        CLEANUP, signature,
        candy_machine_id=str(candy_machine_id), revoked=revoked, slot=tx.slot,
    )
