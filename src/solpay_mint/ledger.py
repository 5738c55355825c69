"""Ledger collaborator interface and the typed records it returns.

Everything the core reads from the ledger passes through :class:`LedgerView`.
RPC payloads are decoded into the dataclasses below exactly once, at the
boundary (``from_rpc`` constructors), so the builders and validators never
poke at untyped JSON.
"""
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import Transaction, VersionedTransaction

from .exceptions import LedgerError


class Commitment(str, Enum):
    """Durability level requested when reading ledger state."""
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"

    @property
    def rank(self) -> int:
        return _COMMITMENT_RANK[self]

    def satisfies(self, required: "Commitment") -> bool:
        """True when this level is at least as durable as ``required``."""
        return self.rank >= Commitment(required).rank


_COMMITMENT_RANK = {
    Commitment.PROCESSED: 0,
    Commitment.CONFIRMED: 1,
    Commitment.FINALIZED: 2,
}


def _pubkey(value: Any, what: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except (TypeError, ValueError) as e:
        raise LedgerError(f"Ledger returned invalid {what}: {value!r}") from e


@dataclass(frozen=True)
class AccountInfo:
    """Raw account state."""
    lamports: int
    owner: Pubkey
    executable: bool
    data: bytes = b""
    rent_epoch: Optional[int] = None

    @classmethod
    def from_rpc(cls, value: Dict[str, Any]) -> "AccountInfo":
        data = value.get("data") or ["", "base64"]
        if isinstance(data, list):
            if len(data) != 2 or data[1] != "base64":
                raise LedgerError(f"Unsupported account data encoding: {data[1:]}")
            raw = base64.b64decode(data[0])
        else:
            raise LedgerError("Account data must be requested with base64 encoding")
        return cls(
            lamports=int(value["lamports"]),
            owner=_pubkey(value["owner"], "account owner"),
            executable=bool(value.get("executable", False)),
            data=raw,
            rent_epoch=value.get("rentEpoch"),
        )


class TokenAccountState(int, Enum):
    """SPL token account state tag."""
    UNINITIALIZED = 0
    INITIALIZED = 1
    FROZEN = 2


@dataclass(frozen=True)
class MintInfo:
    """Decoded SPL mint."""
    address: Pubkey
    decimals: int
    supply: int
    is_initialized: bool
    mint_authority: Optional[Pubkey] = None
    freeze_authority: Optional[Pubkey] = None


@dataclass(frozen=True)
class TokenAccountInfo:
    """Decoded SPL token (holding) account."""
    address: Pubkey
    mint: Pubkey
    owner: Pubkey
    amount: int
    state: TokenAccountState
    delegate: Optional[Pubkey] = None
    delegated_amount: int = 0

    @property
    def is_initialized(self) -> bool:
        return self.state != TokenAccountState.UNINITIALIZED

    @property
    def is_frozen(self) -> bool:
        return self.state == TokenAccountState.FROZEN


@dataclass(frozen=True)
class SignatureInfo:
    """One entry of getSignaturesForAddress, newest first."""
    signature: str
    slot: int
    err: Optional[Any] = None
    memo: Optional[str] = None
    block_time: Optional[int] = None
    confirmation_status: Optional[Commitment] = None

    @property
    def ok(self) -> bool:
        return self.err is None

    @classmethod
    def from_rpc(cls, value: Dict[str, Any]) -> "SignatureInfo":
        status = value.get("confirmationStatus")
        return cls(
            signature=value["signature"],
            slot=int(value.get("slot", 0)),
            err=value.get("err"),
            memo=value.get("memo"),
            block_time=value.get("blockTime"),
            confirmation_status=Commitment(status) if status else None,
        )


@dataclass(frozen=True)
class SignatureStatus:
    """Result of getSignatureStatuses for a single signature."""
    slot: int
    confirmation_status: Optional[Commitment]
    err: Optional[Any] = None

    @classmethod
    def from_rpc(cls, value: Dict[str, Any]) -> "SignatureStatus":
        status = value.get("confirmationStatus")
        return cls(
            slot=int(value.get("slot", 0)),
            confirmation_status=Commitment(status) if status else None,
            err=value.get("err"),
        )


@dataclass(frozen=True)
class AccountKey:
    """Account referenced by a transaction message."""
    pubkey: Pubkey
    signer: bool = False
    writable: bool = False


@dataclass(frozen=True)
class ParsedInstruction:
    """Top-level instruction as returned by jsonParsed encoding.

    ``type``/``info`` are set for programs the RPC node knows how to parse
    (system, spl-token, spl-memo). Other programs carry raw ``accounts``
    and base58 ``data``.
    """
    program_id: Pubkey
    program: Optional[str] = None
    type: Optional[str] = None
    info: Dict[str, Any] = field(default_factory=dict)
    accounts: Tuple[Pubkey, ...] = ()
    data: Optional[str] = None

    @classmethod
    def from_rpc(cls, value: Dict[str, Any]) -> "ParsedInstruction":
        parsed = value.get("parsed")
        if isinstance(parsed, str):
            # spl-memo parses to the bare memo text
            kind, info = "memo", {"memo": parsed}
        elif isinstance(parsed, dict):
            kind, info = parsed.get("type"), dict(parsed.get("info") or {})
        else:
            kind, info = None, {}
        return cls(
            program_id=_pubkey(value["programId"], "program id"),
            program=value.get("program"),
            type=kind,
            info=info,
            accounts=tuple(_pubkey(a, "instruction account") for a in value.get("accounts", [])),
            data=value.get("data"),
        )


@dataclass(frozen=True)
class TokenBalance:
    """Pre/post token balance entry for one account index."""
    account_index: int
    mint: Pubkey
    amount: int
    decimals: int
    owner: Optional[Pubkey] = None

    @classmethod
    def from_rpc(cls, value: Dict[str, Any]) -> "TokenBalance":
        ui = value["uiTokenAmount"]
        owner = value.get("owner")
        return cls(
            account_index=int(value["accountIndex"]),
            mint=_pubkey(value["mint"], "token balance mint"),
            amount=int(ui["amount"]),
            decimals=int(ui["decimals"]),
            owner=_pubkey(owner, "token balance owner") if owner else None,
        )


@dataclass(frozen=True)
class ConfirmedTransaction:
    """A confirmed transaction with the balance deltas needed for validation."""
    signature: str
    slot: int
    fee: int
    err: Optional[Any]
    account_keys: Tuple[AccountKey, ...]
    instructions: Tuple[ParsedInstruction, ...]
    pre_balances: Tuple[int, ...]
    post_balances: Tuple[int, ...]
    pre_token_balances: Tuple[TokenBalance, ...] = ()
    post_token_balances: Tuple[TokenBalance, ...] = ()
    block_time: Optional[int] = None
    has_meta: bool = True

    @property
    def keys(self) -> Tuple[Pubkey, ...]:
        return tuple(k.pubkey for k in self.account_keys)

    def index_of(self, pubkey: Pubkey) -> Optional[int]:
        for i, key in enumerate(self.account_keys):
            if key.pubkey == pubkey:
                return i
        return None

    def pre_token_balance(self, index: int) -> Optional[TokenBalance]:
        return next((b for b in self.pre_token_balances if b.account_index == index), None)

    def post_token_balance(self, index: int) -> Optional[TokenBalance]:
        return next((b for b in self.post_token_balances if b.account_index == index), None)

    @classmethod
    def from_rpc(cls, signature: str, result: Dict[str, Any]) -> "ConfirmedTransaction":
        try:
            message = result["transaction"]["message"]
            raw_keys = message["accountKeys"]
            meta = result.get("meta")
        except (KeyError, TypeError) as e:
            raise LedgerError(f"Malformed transaction payload for {signature}") from e

        keys = []
        for key in raw_keys:
            if isinstance(key, str):
                keys.append(AccountKey(pubkey=_pubkey(key, "account key")))
            else:
                keys.append(
                    AccountKey(
                        pubkey=_pubkey(key["pubkey"], "account key"),
                        signer=bool(key.get("signer", False)),
                        writable=bool(key.get("writable", False)),
                    )
                )

        meta = meta or {}
        return cls(
            signature=signature,
            slot=int(result.get("slot", 0)),
            fee=int(meta.get("fee", 0)),
            err=meta.get("err"),
            account_keys=tuple(keys),
            instructions=tuple(ParsedInstruction.from_rpc(i) for i in message.get("instructions", [])),
            pre_balances=tuple(int(b) for b in meta.get("preBalances", [])),
            post_balances=tuple(int(b) for b in meta.get("postBalances", [])),
            pre_token_balances=tuple(TokenBalance.from_rpc(b) for b in meta.get("preTokenBalances") or []),
            post_token_balances=tuple(TokenBalance.from_rpc(b) for b in meta.get("postTokenBalances") or []),
            block_time=result.get("blockTime"),
            has_meta=bool(result.get("meta")),
        )


CommitmentLike = Union[Commitment, str]


@runtime_checkable
class LedgerView(Protocol):
    """Narrow read/submit interface onto the ledger.

    :class:`solpay_mint.client.SolanaClient` implements it over JSON-RPC;
    tests implement it in memory.
    """

    async def get_account_info(
        self, address: Pubkey, commitment: Optional[CommitmentLike] = None
    ) -> Optional[AccountInfo]:
        ...

    async def get_minimum_balance_for_rent_exemption(self, data_size: int) -> int:
        ...

    async def get_latest_blockhash(self) -> Hash:
        ...

    async def get_signatures_for_address(
        self,
        address: Pubkey,
        before: Optional[str] = None,
        until: Optional[str] = None,
        limit: Optional[int] = None,
        commitment: Optional[CommitmentLike] = None,
    ) -> Sequence[SignatureInfo]:
        ...

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        ...

    async def get_transaction(
        self, signature: str, commitment: Optional[CommitmentLike] = None
    ) -> Optional[ConfirmedTransaction]:
        ...

    async def send_transaction(
        self, transaction: Union[Transaction, VersionedTransaction]
    ) -> str:
        ...
