"""Protocol constants and well-known Solana program ids."""
from __future__ import annotations

from solders.pubkey import Pubkey

URL_PROTOCOL = "solana:"
URL_SCHEME = "solana"
MAX_URL_LENGTH = 2048

# Native SOL precision: 1 SOL = 10**9 lamports
SOL_DECIMALS = 9

# Sized accounts (bytes)
MINT_SIZE = 82
TOKEN_ACCOUNT_SIZE = 165

SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")
TOKEN_METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")
CANDY_MACHINE_PROGRAM_ID = Pubkey.from_string("cndy3Z4yapfJBmL3ShUp5exZKqR3z33thTzeNMm2gRZ")

SYSVAR_RENT_ID = Pubkey.from_string("SysvarRent111111111111111111111111111111111")
SYSVAR_CLOCK_ID = Pubkey.from_string("SysvarC1ock11111111111111111111111111111111")
SYSVAR_SLOT_HASHES_ID = Pubkey.from_string("SysvarS1otHashes111111111111111111111111111")
SYSVAR_INSTRUCTIONS_ID = Pubkey.from_string("Sysvar1nstructions1111111111111111111111111")
