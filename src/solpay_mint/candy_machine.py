"""Candy machine v2 collaborator: state fetch, address derivation, mint_nft.

Only the parts of the program a buyer needs are modelled here. State is
decoded with the borsh layouts in :mod:`solpay_mint.layouts` instead of
fetching the program IDL at runtime.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol, Sequence, Tuple

from construct import ConstructError
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from .accounts import require_account
from .constants import (
    CANDY_MACHINE_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    SYSVAR_CLOCK_ID,
    SYSVAR_INSTRUCTIONS_ID,
    SYSVAR_RENT_ID,
    SYSVAR_SLOT_HASHES_ID,
    TOKEN_METADATA_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from .exceptions import InvalidAccountError
from .layouts import (
    CANDY_MACHINE_DISCRIMINATOR,
    CANDY_MACHINE_LAYOUT,
    COLLECTION_PDA_DISCRIMINATOR,
    COLLECTION_PDA_LAYOUT,
    instruction_discriminator,
    to_pubkey,
)
from .ledger import LedgerView
from .logging_utils import get_pay_logger

logger = logging.getLogger(__name__)

MINT_NFT_DISCRIMINATOR = instruction_discriminator("mint_nft")

SEED_METADATA = b"metadata"
SEED_EDITION = b"edition"
SEED_CANDY_MACHINE = b"candy_machine"
SEED_COLLECTION = b"collection"
SEED_COLLECTION_AUTHORITY = b"collection_authority"


class WhitelistMode(int, Enum):
    BURN_EVERY_TIME = 0
    NEVER_BURN = 1


@dataclass(frozen=True)
class WhitelistMintSettings:
    """Allow-list gate: holders of ``mint`` may mint (optionally burning one)."""
    mode: WhitelistMode
    mint: Pubkey
    presale: bool = False
    discount_price: Optional[int] = None

    @property
    def burns(self) -> bool:
        return self.mode == WhitelistMode.BURN_EVERY_TIME


@dataclass(frozen=True)
class CandyMachineState:
    """Decoded candy machine account."""
    address: Pubkey
    authority: Pubkey
    wallet: Pubkey
    items_available: int
    items_redeemed: int
    price: int
    token_mint: Optional[Pubkey] = None
    go_live_date: Optional[datetime] = None
    whitelist_mint_settings: Optional[WhitelistMintSettings] = None
    gatekeeper_network: Optional[Pubkey] = None
    symbol: str = ""

    @property
    def items_remaining(self) -> int:
        return max(self.items_available - self.items_redeemed, 0)

    @property
    def sold_out(self) -> bool:
        return self.items_remaining == 0

    def is_live(self, now: Optional[datetime] = None) -> bool:
        if self.go_live_date is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.go_live_date


@dataclass(frozen=True)
class CollectionInfo:
    """Collection PDA of a candy machine and the collection mint it points at."""
    address: Pubkey
    mint: Pubkey


@dataclass(frozen=True)
class MintAccounts:
    """Per-mint accounts of the ``mint_nft`` instruction."""
    payer: Pubkey
    mint: Pubkey
    metadata: Pubkey
    master_edition: Pubkey
    creator: Pubkey
    creator_bump: int


class InventoryProgram(Protocol):
    """What the mint builder needs from an inventory program."""

    program_id: Pubkey

    async def fetch_state(self, ledger: LedgerView, address: Pubkey) -> CandyMachineState:
        ...

    async def fetch_collection(self, ledger: LedgerView, candy_machine: Pubkey) -> Optional[CollectionInfo]:
        ...

    def derive_address(self, *seeds: bytes, program_id: Optional[Pubkey] = None) -> Tuple[Pubkey, int]:
        ...

    def metadata_address(self, mint: Pubkey) -> Pubkey:
        ...

    def master_edition_address(self, mint: Pubkey) -> Pubkey:
        ...

    def creator_address(self, candy_machine: Pubkey) -> Tuple[Pubkey, int]:
        ...

    def collection_authority_record_address(self, mint: Pubkey, authority: Pubkey) -> Pubkey:
        ...

    def build_mint_instruction(
        self,
        state: CandyMachineState,
        accounts: MintAccounts,
        remaining_accounts: Sequence[AccountMeta] = (),
    ) -> Instruction:
        ...


def _decode_state(address: Pubkey, data: bytes) -> CandyMachineState:
    if data[:8] != CANDY_MACHINE_DISCRIMINATOR:
        raise InvalidAccountError(f"candy machine {address} has an unexpected discriminator")
    try:
        parsed = CANDY_MACHINE_LAYOUT.parse(data[8:])
    except ConstructError as e:
        raise InvalidAccountError(f"candy machine {address} could not be decoded") from e

    data_ = parsed.data
    whitelist = None
    if data_.whitelist_mint_settings is not None:
        wl = data_.whitelist_mint_settings
        try:
            mode = WhitelistMode(wl.mode)
        except ValueError as e:
            raise InvalidAccountError(f"candy machine {address} has unknown whitelist mode {wl.mode}") from e
        whitelist = WhitelistMintSettings(
            mode=mode,
            mint=to_pubkey(wl.mint),
            presale=bool(wl.presale),
            discount_price=wl.discount_price,
        )

    go_live = None
    if data_.go_live_date is not None:
        go_live = datetime.fromtimestamp(data_.go_live_date, tz=timezone.utc)

    return CandyMachineState(
        address=address,
        authority=to_pubkey(parsed.authority),
        wallet=to_pubkey(parsed.wallet),
        items_available=data_.items_available,
        items_redeemed=parsed.items_redeemed,
        price=data_.price,
        token_mint=to_pubkey(parsed.token_mint) if parsed.token_mint is not None else None,
        go_live_date=go_live,
        whitelist_mint_settings=whitelist,
        gatekeeper_network=(
            to_pubkey(data_.gatekeeper.gatekeeper_network) if data_.gatekeeper is not None else None
        ),
        symbol=data_.symbol,
    )


class CandyMachineProgram:
    """Candy machine v2 over a :class:`LedgerView`."""

    def __init__(
        self,
        program_id: Pubkey = CANDY_MACHINE_PROGRAM_ID,
        metadata_program_id: Pubkey = TOKEN_METADATA_PROGRAM_ID,
    ) -> None:
        self.program_id = program_id
        self.metadata_program_id = metadata_program_id

    async def fetch_state(self, ledger: LedgerView, address: Pubkey) -> CandyMachineState:
        info = await require_account(ledger, address, "candy machine")
        if info.owner != self.program_id:
            raise InvalidAccountError(f"candy machine {address} is not owned by {self.program_id}")
        state = _decode_state(address, info.data)
        logger.debug(
            f"Candy machine {get_pay_logger().address(address)}: "
            f"{state.items_redeemed}/{state.items_available} redeemed"
        )
        return state

    async def fetch_collection(self, ledger: LedgerView, candy_machine: Pubkey) -> Optional[CollectionInfo]:
        """The collection PDA of ``candy_machine``, or None when it has none."""
        address, _ = self.collection_address(candy_machine)
        info = await ledger.get_account_info(address)
        if info is None:
            return None
        if info.data[:8] != COLLECTION_PDA_DISCRIMINATOR:
            raise InvalidAccountError(f"collection PDA {address} has an unexpected discriminator")
        try:
            parsed = COLLECTION_PDA_LAYOUT.parse(info.data[8:])
        except ConstructError as e:
            raise InvalidAccountError(f"collection PDA {address} could not be decoded") from e
        return CollectionInfo(address=address, mint=to_pubkey(parsed.mint))

    def derive_address(self, *seeds: bytes, program_id: Optional[Pubkey] = None) -> Tuple[Pubkey, int]:
        return Pubkey.find_program_address(list(seeds), program_id or self.program_id)

    def metadata_address(self, mint: Pubkey) -> Pubkey:
        return self.derive_address(
            SEED_METADATA, bytes(self.metadata_program_id), bytes(mint),
            program_id=self.metadata_program_id,
        )[0]

    def master_edition_address(self, mint: Pubkey) -> Pubkey:
        return self.derive_address(
            SEED_METADATA, bytes(self.metadata_program_id), bytes(mint), SEED_EDITION,
            program_id=self.metadata_program_id,
        )[0]

    def creator_address(self, candy_machine: Pubkey) -> Tuple[Pubkey, int]:
        return self.derive_address(SEED_CANDY_MACHINE, bytes(candy_machine))

    def collection_address(self, candy_machine: Pubkey) -> Tuple[Pubkey, int]:
        return self.derive_address(SEED_COLLECTION, bytes(candy_machine))

    def collection_authority_record_address(self, mint: Pubkey, authority: Pubkey) -> Pubkey:
        return self.derive_address(
            SEED_METADATA, bytes(self.metadata_program_id), bytes(mint),
            SEED_COLLECTION_AUTHORITY, bytes(authority),
            program_id=self.metadata_program_id,
        )[0]

    def build_mint_instruction(
        self,
        state: CandyMachineState,
        accounts: MintAccounts,
        remaining_accounts: Sequence[AccountMeta] = (),
    ) -> Instruction:
        """Anchor ``mint_nft(creator_bump)``."""
        metas = [
            AccountMeta(state.address, False, True),
            AccountMeta(accounts.creator, False, False),
            AccountMeta(accounts.payer, True, True),
            AccountMeta(state.wallet, False, True),
            AccountMeta(accounts.metadata, False, True),
            AccountMeta(accounts.mint, False, True),
            AccountMeta(accounts.payer, True, False),  # mint authority
            AccountMeta(accounts.payer, True, False),  # update authority
            AccountMeta(accounts.master_edition, False, True),
            AccountMeta(self.metadata_program_id, False, False),
            AccountMeta(TOKEN_PROGRAM_ID, False, False),
            AccountMeta(SYSTEM_PROGRAM_ID, False, False),
            AccountMeta(SYSVAR_RENT_ID, False, False),
            AccountMeta(SYSVAR_CLOCK_ID, False, False),
            AccountMeta(SYSVAR_SLOT_HASHES_ID, False, False),
            AccountMeta(SYSVAR_INSTRUCTIONS_ID, False, False),
        ]
        metas.extend(remaining_accounts)
        data = MINT_NFT_DISCRIMINATOR + bytes([accounts.creator_bump])
        return Instruction(self.program_id, data, metas)


# Account positions within mint_nft, used when reading a confirmed mint back
MINT_NFT_CANDY_MACHINE_INDEX = 0
MINT_NFT_PAYER_INDEX = 2
MINT_NFT_MINT_INDEX = 5
