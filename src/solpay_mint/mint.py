"""Mint transaction builder for candy machine drops.

The fixed prefix creates the new mint and issues its single unit to the
payer. Optional program features (allow-list gate, token-priced mint,
collection) are handled by independent contributors, each a function of a
prefetched :class:`MintContext`, applied in a fixed order before the
program's ``mint_nft`` instruction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account
from spl.token.instructions import (
    ApproveParams,
    InitializeMintParams,
    MintToParams,
    RevokeParams,
    approve,
    create_associated_token_account,
    initialize_mint,
    mint_to,
    revoke,
)

from .accounts import associated_token_address, require_account
from .candy_machine import CandyMachineProgram, CandyMachineState, CollectionInfo, InventoryProgram, MintAccounts
from .constants import MINT_SIZE, TOKEN_PROGRAM_ID
from .exceptions import SoldOutError
from .ledger import LedgerView
from .logging_utils import OperationType, get_pay_logger, log_operation
from .transaction import BuiltTransaction, KeyGenerator, RandomKeyGenerator, with_references
from .urls import MintIntent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MintContext:
    """Everything contributors may look at, fetched before assembly."""
    payer: Pubkey
    mint: Pubkey
    state: CandyMachineState
    program: InventoryProgram
    key_generator: KeyGenerator
    whitelist_token_exists: bool = False
    collection: Optional[CollectionInfo] = None


@dataclass(frozen=True)
class Contribution:
    """Instructions, signers and ``mint_nft`` remaining accounts for one feature."""
    instructions: Tuple[Instruction, ...] = ()
    cleanup_instructions: Tuple[Instruction, ...] = ()
    signers: Tuple[Keypair, ...] = ()
    remaining_accounts: Tuple[AccountMeta, ...] = ()


Contributor = Callable[[MintContext], Optional[Contribution]]


def whitelist_contributor(ctx: MintContext) -> Optional[Contribution]:
    """Allow-list gate. Burn mode delegates one whitelist token to a fresh key."""
    settings = ctx.state.whitelist_mint_settings
    if settings is None:
        return None

    whitelist_token = associated_token_address(ctx.payer, settings.mint)
    remaining = [AccountMeta(whitelist_token, False, True)]
    if not settings.burns:
        return Contribution(remaining_accounts=tuple(remaining))

    burn_authority = ctx.key_generator.generate()
    remaining.append(AccountMeta(settings.mint, False, True))
    remaining.append(AccountMeta(burn_authority.pubkey(), True, False))

    instructions: Tuple[Instruction, ...] = ()
    cleanup: Tuple[Instruction, ...] = ()
    if ctx.whitelist_token_exists:
        instructions = (
            approve(ApproveParams(
                program_id=TOKEN_PROGRAM_ID,
                source=whitelist_token,
                delegate=burn_authority.pubkey(),
                owner=ctx.payer,
                amount=1,
            )),
        )
        cleanup = (
            revoke(RevokeParams(program_id=TOKEN_PROGRAM_ID, account=whitelist_token, owner=ctx.payer)),
        )
    return Contribution(
        instructions=instructions,
        cleanup_instructions=cleanup,
        signers=(burn_authority,),
        remaining_accounts=tuple(remaining),
    )


def token_payment_contributor(ctx: MintContext) -> Optional[Contribution]:
    """Token-priced mint: approve ``price`` to a fresh transfer authority."""
    if ctx.state.token_mint is None:
        return None

    transfer_authority = ctx.key_generator.generate()
    token_account = associated_token_address(ctx.payer, ctx.state.token_mint)
    return Contribution(
        instructions=(
            approve(ApproveParams(
                program_id=TOKEN_PROGRAM_ID,
                source=token_account,
                delegate=transfer_authority.pubkey(),
                owner=ctx.payer,
                amount=ctx.state.price,
            )),
        ),
        cleanup_instructions=(
            revoke(RevokeParams(program_id=TOKEN_PROGRAM_ID, account=token_account, owner=ctx.payer)),
        ),
        signers=(transfer_authority,),
        remaining_accounts=(
            AccountMeta(token_account, False, True),
            AccountMeta(transfer_authority.pubkey(), True, False),
        ),
    )


def collection_contributor(ctx: MintContext) -> Optional[Contribution]:
    """Collection membership accounts, when the machine has a collection PDA."""
    if ctx.collection is None:
        return None

    collection_mint = ctx.collection.mint
    return Contribution(
        remaining_accounts=(
            AccountMeta(ctx.collection.address, False, True),
            AccountMeta(collection_mint, False, False),
            AccountMeta(ctx.program.metadata_address(collection_mint), False, True),
            AccountMeta(ctx.program.master_edition_address(collection_mint), False, False),
            AccountMeta(
                ctx.program.collection_authority_record_address(collection_mint, ctx.collection.address),
                False,
                False,
            ),
        ),
    )


DEFAULT_CONTRIBUTORS: Tuple[Contributor, ...] = (
    whitelist_contributor,
    token_payment_contributor,
    collection_contributor,
)


def _mint_prefix(payer: Pubkey, mint: Pubkey, token: Pubkey, rent: int) -> List[Instruction]:
    return [
        create_account(CreateAccountParams(
            from_pubkey=payer,
            to_pubkey=mint,
            lamports=rent,
            space=MINT_SIZE,
            owner=TOKEN_PROGRAM_ID,
        )),
        initialize_mint(InitializeMintParams(
            decimals=0,
            program_id=TOKEN_PROGRAM_ID,
            mint=mint,
            mint_authority=payer,
            freeze_authority=payer,
        )),
        create_associated_token_account(payer, payer, mint),
        mint_to(MintToParams(
            program_id=TOKEN_PROGRAM_ID,
            mint=mint,
            dest=token,
            mint_authority=payer,
            amount=1,
        )),
    ]


@log_operation(OperationType.BUILD_MINT)
async def build_mint_transaction(
    ledger: LedgerView,
    payer: Pubkey,
    intent: MintIntent,
    program: Optional[InventoryProgram] = None,
    key_generator: Optional[KeyGenerator] = None,
    contributors: Sequence[Contributor] = DEFAULT_CONTRIBUTORS,
) -> BuiltTransaction:
    """Build the transaction minting one item from ``intent.candy_machine_id``.

    Instruction order: create mint account, initialize mint, create the
    payer's token account, mint one unit, contributor approvals, mint_nft.
    References are appended to the mint_to instruction.

    Raises:
        AccountNotFoundError: payer or candy machine missing
        InvalidAccountError: candy machine account malformed
        SoldOutError: no items remaining
    """
    program = program or CandyMachineProgram()
    key_generator = key_generator or RandomKeyGenerator()

    await require_account(ledger, payer, "payer")
    state = await program.fetch_state(ledger, intent.candy_machine_id)
    if state.sold_out:
        raise SoldOutError(
            f"candy machine {state.address} has no items left to mint",
            details={"items_available": state.items_available, "items_redeemed": state.items_redeemed},
        )
    shown = get_pay_logger().address(state.address)
    logger.info(f"Candy machine {shown} has {state.items_remaining} item(s) left to mint")
    if state.go_live_date is not None and not state.is_live(datetime.now(timezone.utc)):
        logger.warning(f"Candy machine {shown} goes live at {state.go_live_date.isoformat()}")
    if intent.memo is not None:
        logger.debug("Memo is not included in mint transactions")

    mint_keypair = key_generator.generate()
    mint = mint_keypair.pubkey()
    token = associated_token_address(payer, mint)
    rent = await ledger.get_minimum_balance_for_rent_exemption(MINT_SIZE)

    whitelist_token_exists = False
    if state.whitelist_mint_settings is not None:
        whitelist_token = associated_token_address(payer, state.whitelist_mint_settings.mint)
        whitelist_token_exists = await ledger.get_account_info(whitelist_token) is not None
    collection = await program.fetch_collection(ledger, state.address)

    ctx = MintContext(
        payer=payer,
        mint=mint,
        state=state,
        program=program,
        key_generator=key_generator,
        whitelist_token_exists=whitelist_token_exists,
        collection=collection,
    )

    instructions = _mint_prefix(payer, mint, token, rent)
    instructions[-1] = with_references(instructions[-1], intent.references)
    cleanup: List[Instruction] = []
    signers: List[Keypair] = [mint_keypair]
    remaining: List[AccountMeta] = []
    for contributor in contributors:
        contribution = contributor(ctx)
        if contribution is None:
            continue
        instructions.extend(contribution.instructions)
        cleanup.extend(contribution.cleanup_instructions)
        signers.extend(contribution.signers)
        remaining.extend(contribution.remaining_accounts)

    creator, creator_bump = program.creator_address(state.address)
    accounts = MintAccounts(
        payer=payer,
        mint=mint,
        metadata=program.metadata_address(mint),
        master_edition=program.master_edition_address(mint),
        creator=creator,
        creator_bump=creator_bump,
    )
    instructions.append(program.build_mint_instruction(state, accounts, remaining))

    return BuiltTransaction(
        instructions=tuple(instructions),
        cleanup_instructions=tuple(cleanup),
        ephemeral_signers=tuple(signers),
    )
