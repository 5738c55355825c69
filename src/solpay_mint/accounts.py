"""Typed account readers on top of a :class:`LedgerView`."""
from __future__ import annotations

import logging
from typing import Optional

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from .constants import TOKEN_PROGRAM_ID
from .exceptions import AccountNotFoundError, InvalidAccountError
from .layouts import decode_mint, decode_token_account
from .ledger import AccountInfo, LedgerView, MintInfo, TokenAccountInfo
from .logging_utils import get_pay_logger

logger = logging.getLogger(__name__)


async def require_account(ledger: LedgerView, address: Pubkey, role: str) -> AccountInfo:
    """Fetch an account or raise AccountNotFoundError naming its role."""
    info = await ledger.get_account_info(address)
    if info is None:
        raise AccountNotFoundError(role, address)
    return info


async def get_mint(ledger: LedgerView, address: Pubkey) -> MintInfo:
    """Fetch and decode an SPL mint owned by the token program."""
    info = await require_account(ledger, address, "mint")
    if info.owner != TOKEN_PROGRAM_ID:
        raise InvalidAccountError(f"mint {address} is not owned by the token program")
    return decode_mint(address, info.data)


async def get_token_account(
    ledger: LedgerView, address: Pubkey, role: str = "token account"
) -> TokenAccountInfo:
    """Fetch and decode an SPL token account owned by the token program."""
    info = await require_account(ledger, address, role)
    if info.owner != TOKEN_PROGRAM_ID:
        raise InvalidAccountError(f"{role} {address} is not owned by the token program")
    return decode_token_account(address, info.data)


def associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    """Associated token account address for ``owner`` holding ``mint``."""
    return get_associated_token_address(owner, mint)


async def find_associated_token_account(
    ledger: LedgerView, owner: Pubkey, mint: Pubkey
) -> Optional[TokenAccountInfo]:
    """The owner's associated token account for ``mint``, or None if absent."""
    address = associated_token_address(owner, mint)
    info = await ledger.get_account_info(address)
    if info is None:
        pay_log = get_pay_logger()
        logger.debug(
            f"No associated token account {pay_log.address(address)} "
            f"for owner={pay_log.address(owner)} mint={pay_log.address(mint)}"
        )
        return None
    return decode_token_account(address, info.data)
