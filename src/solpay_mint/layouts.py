"""Binary layouts for the on-chain accounts this library reads.

SPL accounts use the 4-byte ``COption`` tag rather than borsh's 1-byte
``Option``; candy machine accounts are plain Anchor/borsh.
"""
from __future__ import annotations

import hashlib
from typing import Optional

from borsh_construct import Bool, CStruct, I64, Option, String, U8, U16, U32, U64, Vec
from construct import ConstructError
from solders.pubkey import Pubkey

from .constants import MINT_SIZE, TOKEN_ACCOUNT_SIZE
from .exceptions import InvalidAccountError
from .ledger import MintInfo, TokenAccountInfo, TokenAccountState

PUBKEY = U8[32]

MINT_LAYOUT = CStruct(
    "mint_authority_option" / U32,
    "mint_authority" / PUBKEY,
    "supply" / U64,
    "decimals" / U8,
    "is_initialized" / Bool,
    "freeze_authority_option" / U32,
    "freeze_authority" / PUBKEY,
)

TOKEN_ACCOUNT_LAYOUT = CStruct(
    "mint" / PUBKEY,
    "owner" / PUBKEY,
    "amount" / U64,
    "delegate_option" / U32,
    "delegate" / PUBKEY,
    "state" / U8,
    "is_native_option" / U32,
    "is_native" / U64,
    "delegated_amount" / U64,
    "close_authority_option" / U32,
    "close_authority" / PUBKEY,
)

# Candy machine v2 (unit enums encode as a single u8 tag)
END_SETTINGS_LAYOUT = CStruct(
    "end_setting_type" / U8,  # 0 = Date, 1 = Amount
    "number" / U64,
)

CREATOR_LAYOUT = CStruct(
    "address" / PUBKEY,
    "verified" / Bool,
    "share" / U8,
)

HIDDEN_SETTINGS_LAYOUT = CStruct(
    "name" / String,
    "uri" / String,
    "hash" / U8[32],
)

WHITELIST_MINT_SETTINGS_LAYOUT = CStruct(
    "mode" / U8,  # 0 = BurnEveryTime, 1 = NeverBurn
    "mint" / PUBKEY,
    "presale" / Bool,
    "discount_price" / Option(U64),
)

GATEKEEPER_LAYOUT = CStruct(
    "gatekeeper_network" / PUBKEY,
    "expire_on_use" / Bool,
)

CANDY_MACHINE_DATA_LAYOUT = CStruct(
    "uuid" / String,
    "price" / U64,
    "symbol" / String,
    "seller_fee_basis_points" / U16,
    "max_supply" / U64,
    "is_mutable" / Bool,
    "retain_authority" / Bool,
    "go_live_date" / Option(I64),
    "end_settings" / Option(END_SETTINGS_LAYOUT),
    "creators" / Vec(CREATOR_LAYOUT),
    "hidden_settings" / Option(HIDDEN_SETTINGS_LAYOUT),
    "whitelist_mint_settings" / Option(WHITELIST_MINT_SETTINGS_LAYOUT),
    "items_available" / U64,
    "gatekeeper" / Option(GATEKEEPER_LAYOUT),
)

CANDY_MACHINE_LAYOUT = CStruct(
    "authority" / PUBKEY,
    "wallet" / PUBKEY,
    "token_mint" / Option(PUBKEY),
    "items_redeemed" / U64,
    "data" / CANDY_MACHINE_DATA_LAYOUT,
)

COLLECTION_PDA_LAYOUT = CStruct(
    "mint" / PUBKEY,
    "candy_machine" / PUBKEY,
)


def account_discriminator(name: str) -> bytes:
    """Anchor account discriminator: first 8 bytes of sha256("account:<Name>")."""
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


def instruction_discriminator(name: str) -> bytes:
    """Anchor instruction discriminator: first 8 bytes of sha256("global:<name>")."""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


CANDY_MACHINE_DISCRIMINATOR = account_discriminator("CandyMachine")
COLLECTION_PDA_DISCRIMINATOR = account_discriminator("CollectionPDA")


def to_pubkey(raw) -> Pubkey:
    return Pubkey.from_bytes(bytes(raw))


def optional_pubkey(tag: int, raw) -> Optional[Pubkey]:
    return to_pubkey(raw) if tag else None


def decode_mint(address: Pubkey, data: bytes) -> MintInfo:
    """Decode an SPL mint account."""
    if len(data) != MINT_SIZE:
        raise InvalidAccountError(f"mint {address} has invalid size {len(data)}")
    try:
        parsed = MINT_LAYOUT.parse(data)
    except ConstructError as e:
        raise InvalidAccountError(f"mint {address} could not be decoded") from e
    return MintInfo(
        address=address,
        decimals=parsed.decimals,
        supply=parsed.supply,
        is_initialized=bool(parsed.is_initialized),
        mint_authority=optional_pubkey(parsed.mint_authority_option, parsed.mint_authority),
        freeze_authority=optional_pubkey(parsed.freeze_authority_option, parsed.freeze_authority),
    )


def decode_token_account(address: Pubkey, data: bytes) -> TokenAccountInfo:
    """Decode an SPL token account."""
    if len(data) != TOKEN_ACCOUNT_SIZE:
        raise InvalidAccountError(f"token account {address} has invalid size {len(data)}")
    try:
        parsed = TOKEN_ACCOUNT_LAYOUT.parse(data)
        state = TokenAccountState(parsed.state)
    except (ConstructError, ValueError) as e:
        raise InvalidAccountError(f"token account {address} could not be decoded") from e
    return TokenAccountInfo(
        address=address,
        mint=to_pubkey(parsed.mint),
        owner=to_pubkey(parsed.owner),
        amount=parsed.amount,
        state=state,
        delegate=optional_pubkey(parsed.delegate_option, parsed.delegate),
        delegated_amount=parsed.delegated_amount,
    )


def encode_mint(
    supply: int,
    decimals: int,
    is_initialized: bool = True,
    mint_authority: Optional[Pubkey] = None,
    freeze_authority: Optional[Pubkey] = None,
) -> bytes:
    """Serialize an SPL mint account (used by in-memory ledgers)."""
    return MINT_LAYOUT.build({
        "mint_authority_option": 1 if mint_authority else 0,
        "mint_authority": list(bytes(mint_authority or Pubkey.default())),
        "supply": supply,
        "decimals": decimals,
        "is_initialized": is_initialized,
        "freeze_authority_option": 1 if freeze_authority else 0,
        "freeze_authority": list(bytes(freeze_authority or Pubkey.default())),
    })


def encode_token_account(
    mint: Pubkey,
    owner: Pubkey,
    amount: int,
    state: TokenAccountState = TokenAccountState.INITIALIZED,
    delegate: Optional[Pubkey] = None,
    delegated_amount: int = 0,
) -> bytes:
    """Serialize an SPL token account (used by in-memory ledgers)."""
    return TOKEN_ACCOUNT_LAYOUT.build({
        "mint": list(bytes(mint)),
        "owner": list(bytes(owner)),
        "amount": amount,
        "delegate_option": 1 if delegate else 0,
        "delegate": list(bytes(delegate or Pubkey.default())),
        "state": int(state),
        "is_native_option": 0,
        "is_native": 0,
        "delegated_amount": delegated_amount,
        "close_authority_option": 0,
        "close_authority": list(bytes(Pubkey.default())),
    })
