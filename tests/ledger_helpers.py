"""In-memory ledger and transaction factories shared by the test modules."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import decode_transfer
from spl.token.instructions import decode_transfer_checked, get_associated_token_address

from solpay_mint.candy_machine import WhitelistMode
from solpay_mint.constants import (
    CANDY_MACHINE_PROGRAM_ID,
    MEMO_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from solpay_mint.layouts import (
    CANDY_MACHINE_DISCRIMINATOR,
    CANDY_MACHINE_LAYOUT,
    COLLECTION_PDA_DISCRIMINATOR,
    COLLECTION_PDA_LAYOUT,
    decode_mint,
    decode_token_account,
    encode_mint,
    encode_token_account,
)
from solpay_mint.ledger import (
    AccountInfo,
    AccountKey,
    Commitment,
    ConfirmedTransaction,
    ParsedInstruction,
    SignatureInfo,
    SignatureStatus,
    TokenAccountState,
    TokenBalance,
)
from solpay_mint.transaction import BuiltTransaction

DEFAULT_FEE = 5000
MINT_RENT = 1_461_600
TOKEN_ACCOUNT_RENT = 2_039_280


def keypair(n: int) -> Keypair:
    return Keypair.from_seed(bytes([n]) * 32)


def key(n: int) -> Pubkey:
    return keypair(n).pubkey()


def signature_for(n: int) -> str:
    """A well-formed base58 signature string."""
    return str(keypair(n).sign_message(b"solpay-mint"))


def encode_candy_machine(
    authority: Pubkey,
    wallet: Pubkey,
    items_available: int,
    items_redeemed: int = 0,
    price: int = 1_000_000_000,
    token_mint: Optional[Pubkey] = None,
    go_live_date: Optional[datetime] = None,
    whitelist_mint: Optional[Pubkey] = None,
    whitelist_mode: WhitelistMode = WhitelistMode.BURN_EVERY_TIME,
) -> bytes:
    whitelist = None
    if whitelist_mint is not None:
        whitelist = {
            "mode": int(whitelist_mode),
            "mint": list(bytes(whitelist_mint)),
            "presale": False,
            "discount_price": None,
        }
    body = CANDY_MACHINE_LAYOUT.build({
        "authority": list(bytes(authority)),
        "wallet": list(bytes(wallet)),
        "token_mint": list(bytes(token_mint)) if token_mint is not None else None,
        "items_redeemed": items_redeemed,
        "data": {
            "uuid": "SPAY01",
            "price": price,
            "symbol": "SPAY",
            "seller_fee_basis_points": 500,
            "max_supply": 0,
            "is_mutable": True,
            "retain_authority": True,
            "go_live_date": int(go_live_date.timestamp()) if go_live_date is not None else None,
            "end_settings": None,
            "creators": [{"address": list(bytes(authority)), "verified": True, "share": 100}],
            "hidden_settings": None,
            "whitelist_mint_settings": whitelist,
            "items_available": items_available,
            "gatekeeper": None,
        },
    })
    return CANDY_MACHINE_DISCRIMINATOR + body


class FakeLedger:
    """LedgerView over dictionaries. Records every read in ``calls``."""

    def __init__(self, rent: int = MINT_RENT) -> None:
        self.accounts: Dict[Pubkey, AccountInfo] = {}
        self.history: Dict[Pubkey, List[SignatureInfo]] = {}
        self.transactions: Dict[str, ConfirmedTransaction] = {}
        self.statuses: Dict[str, SignatureStatus] = {}
        self.rent = rent
        self.blockhash = Hash.new_unique()
        self.sent: List[object] = []
        self.calls: List[Tuple[str, object]] = []
        self.slot = 100

    # -- setup -----------------------------------------------------------

    def add_wallet(self, address: Pubkey, lamports: int = 10 * 10**9) -> Pubkey:
        self.accounts[address] = AccountInfo(lamports=lamports, owner=SYSTEM_PROGRAM_ID, executable=False)
        return address

    def add_program(self, address: Pubkey) -> Pubkey:
        self.accounts[address] = AccountInfo(lamports=1, owner=key(250), executable=True)
        return address

    def add_mint(self, address: Pubkey, decimals: int, supply: int = 10**12, initialized: bool = True) -> Pubkey:
        self.accounts[address] = AccountInfo(
            lamports=MINT_RENT,
            owner=TOKEN_PROGRAM_ID,
            executable=False,
            data=encode_mint(supply, decimals, is_initialized=initialized, mint_authority=key(251)),
        )
        return address

    def add_token_account(
        self,
        owner: Pubkey,
        mint: Pubkey,
        amount: int,
        state: TokenAccountState = TokenAccountState.INITIALIZED,
    ) -> Pubkey:
        address = get_associated_token_address(owner, mint)
        self.accounts[address] = AccountInfo(
            lamports=TOKEN_ACCOUNT_RENT,
            owner=TOKEN_PROGRAM_ID,
            executable=False,
            data=encode_token_account(mint, owner, amount, state=state),
        )
        return address

    def add_candy_machine(self, address: Pubkey, **kwargs) -> Pubkey:
        kwargs.setdefault("authority", key(240))
        kwargs.setdefault("wallet", key(241))
        self.accounts[address] = AccountInfo(
            lamports=10**9,
            owner=CANDY_MACHINE_PROGRAM_ID,
            executable=False,
            data=encode_candy_machine(**kwargs),
        )
        return address

    def add_collection(self, pda: Pubkey, collection_mint: Pubkey, candy_machine: Pubkey) -> None:
        data = COLLECTION_PDA_DISCRIMINATOR + COLLECTION_PDA_LAYOUT.build({
            "mint": list(bytes(collection_mint)),
            "candy_machine": list(bytes(candy_machine)),
        })
        self.accounts[pda] = AccountInfo(
            lamports=10**6, owner=CANDY_MACHINE_PROGRAM_ID, executable=False, data=data
        )

    def record(
        self,
        tx: ConfirmedTransaction,
        tagged: Sequence[Pubkey] = (),
        status: Commitment = Commitment.FINALIZED,
    ) -> str:
        """Store ``tx`` as confirmed and index it under each tagged address."""
        self.transactions[tx.signature] = tx
        self.statuses[tx.signature] = SignatureStatus(slot=tx.slot, confirmation_status=status, err=tx.err)
        for address in tagged:
            self.tag(address, tx.signature, slot=tx.slot, err=tx.err)
        return tx.signature

    def tag(self, address: Pubkey, signature: str, slot: int = 0, err: Optional[object] = None) -> None:
        info = SignatureInfo(
            signature=signature,
            slot=slot,
            err=err,
            confirmation_status=Commitment.FINALIZED,
        )
        self.history.setdefault(address, []).insert(0, info)

    # -- LedgerView ------------------------------------------------------

    async def get_account_info(self, address, commitment=None):
        self.calls.append(("get_account_info", address))
        return self.accounts.get(address)

    async def get_minimum_balance_for_rent_exemption(self, data_size):
        self.calls.append(("get_minimum_balance_for_rent_exemption", data_size))
        return self.rent

    async def get_latest_blockhash(self):
        self.calls.append(("get_latest_blockhash", None))
        return self.blockhash

    async def get_signatures_for_address(self, address, before=None, until=None, limit=None, commitment=None):
        self.calls.append(("get_signatures_for_address", address))
        history = list(self.history.get(address, []))
        names = [info.signature for info in history]
        if before is not None and before in names:
            history = history[names.index(before) + 1:]
            names = [info.signature for info in history]
        if until is not None and until in names:
            history = history[:names.index(until)]
        if limit is not None:
            history = history[:limit]
        return history

    async def get_signature_status(self, signature):
        self.calls.append(("get_signature_status", signature))
        return self.statuses.get(signature)

    async def get_transaction(self, signature, commitment=None):
        self.calls.append(("get_transaction", signature))
        return self.transactions.get(signature)

    async def send_transaction(self, transaction):
        self.calls.append(("send_transaction", None))
        self.sent.append(transaction)
        return str(transaction.signatures[0])


def _without_references(ix: Instruction, count: int) -> Instruction:
    return Instruction(ix.program_id, ix.data, list(ix.accounts)[:count])


def _is_writable(message: Message, index: int) -> bool:
    """Writability from the header counts; keys past the message are redirect targets."""
    header = message.header
    total = len(message.account_keys)
    if index >= total:
        return True
    if index < header.num_required_signatures:
        return index < header.num_required_signatures - header.num_readonly_signed_accounts
    return index < total - header.num_readonly_unsigned_accounts


def _parse(ix: Instruction) -> ParsedInstruction:
    accounts = tuple(meta.pubkey for meta in ix.accounts)
    if ix.program_id == SYSTEM_PROGRAM_ID:
        params = decode_transfer(_without_references(ix, 2))
        return ParsedInstruction(
            program_id=SYSTEM_PROGRAM_ID,
            program="system",
            type="transfer",
            info={
                "source": str(params["from_pubkey"]),
                "destination": str(params["to_pubkey"]),
                "lamports": params["lamports"],
            },
        )
    if ix.program_id == TOKEN_PROGRAM_ID:
        params = decode_transfer_checked(_without_references(ix, 4))
        return ParsedInstruction(
            program_id=TOKEN_PROGRAM_ID,
            program="spl-token",
            type="transferChecked",
            info={
                "source": str(params.source),
                "mint": str(params.mint),
                "destination": str(params.dest),
                "authority": str(params.owner),
            },
        )
    if ix.program_id == MEMO_PROGRAM_ID:
        return ParsedInstruction(
            program_id=MEMO_PROGRAM_ID, program="spl-memo", type="memo",
            info={"memo": bytes(ix.data).decode("utf-8")},
        )
    return ParsedInstruction(program_id=ix.program_id, accounts=accounts)


def settle_payment(
    ledger: FakeLedger,
    built: BuiltTransaction,
    payer: Pubkey,
    signature: str,
    fee: int = DEFAULT_FEE,
    redirect_to: Optional[Pubkey] = None,
) -> ConfirmedTransaction:
    """Apply a built payment to ``ledger`` and record the confirmed result.

    Supports system transfers and SPL transferChecked. ``redirect_to``
    sends native value somewhere other than the instruction's destination,
    modelling a transaction whose declared arguments lie about its effect.
    """
    message = built.compile(payer, ledger.blockhash).message
    keys = list(message.account_keys)
    if redirect_to is not None and redirect_to not in keys:
        keys.append(redirect_to)

    pre_lamports = [ledger.accounts[k].lamports if k in ledger.accounts else 0 for k in keys]
    post_lamports = list(pre_lamports)
    post_lamports[0] -= fee

    pre_tokens: Dict[int, TokenBalance] = {}
    for i, k in enumerate(keys):
        info = ledger.accounts.get(k)
        if info is not None and info.owner == TOKEN_PROGRAM_ID and len(info.data) == 165:
            account = decode_token_account(k, info.data)
            decimals = decode_mint(account.mint, ledger.accounts[account.mint].data).decimals
            pre_tokens[i] = TokenBalance(i, account.mint, account.amount, decimals, account.owner)
    post_amounts = {i: b.amount for i, b in pre_tokens.items()}

    for ix in built.instructions:
        if ix.program_id == SYSTEM_PROGRAM_ID:
            params = decode_transfer(_without_references(ix, 2))
            dest = redirect_to or params["to_pubkey"]
            post_lamports[keys.index(params["from_pubkey"])] -= params["lamports"]
            post_lamports[keys.index(dest)] += params["lamports"]
        elif ix.program_id == TOKEN_PROGRAM_ID:
            params = decode_transfer_checked(_without_references(ix, 4))
            post_amounts[keys.index(params.source)] -= params.amount
            post_amounts[keys.index(params.dest)] += params.amount

    for i, k in enumerate(keys):
        if k in ledger.accounts:
            info = ledger.accounts[k]
            data = info.data
            if i in pre_tokens:
                b = pre_tokens[i]
                data = encode_token_account(b.mint, b.owner, post_amounts[i])
            ledger.accounts[k] = AccountInfo(post_lamports[i], info.owner, info.executable, data)

    signer_count = message.header.num_required_signatures
    tx = ConfirmedTransaction(
        signature=signature,
        slot=ledger.slot,
        fee=fee,
        err=None,
        account_keys=tuple(
            AccountKey(pubkey=k, signer=i < signer_count, writable=_is_writable(message, i))
            for i, k in enumerate(keys)
        ),
        instructions=tuple(_parse(ix) for ix in built.instructions),
        pre_balances=tuple(pre_lamports),
        post_balances=tuple(post_lamports),
        pre_token_balances=tuple(pre_tokens.values()),
        post_token_balances=tuple(
            TokenBalance(i, b.mint, post_amounts[i], b.decimals, b.owner) for i, b in pre_tokens.items()
        ),
    )
    ledger.slot += 1
    return tx


def native_transfer_tx(
    signature: str,
    payer: Pubkey,
    recipient: Pubkey,
    lamports: int,
    references: Sequence[Pubkey] = (),
    fee: int = DEFAULT_FEE,
    err: Optional[object] = None,
    slot: int = 100,
) -> ConfirmedTransaction:
    """Confirmed system transfer with the given balance effect."""
    keys = [AccountKey(payer, True, True), AccountKey(recipient, False, True)]
    keys += [AccountKey(ref) for ref in references]
    keys.append(AccountKey(SYSTEM_PROGRAM_ID))
    pre = [100 * 10**9, 10**9] + [0] * len(references) + [1]
    post = list(pre)
    if err is None:
        post[0] -= lamports + fee
        post[1] += lamports
    else:
        post[0] -= fee
    return ConfirmedTransaction(
        signature=signature,
        slot=slot,
        fee=fee,
        err=err,
        account_keys=tuple(keys),
        instructions=(
            ParsedInstruction(
                program_id=SYSTEM_PROGRAM_ID, program="system", type="transfer",
                info={"source": str(payer), "destination": str(recipient), "lamports": lamports},
            ),
        ),
        pre_balances=tuple(pre),
        post_balances=tuple(post),
    )


def mint_tx(
    signature: str,
    payer: Pubkey,
    candy_machine: Pubkey,
    mint: Pubkey,
    minted: int = 1,
    holder: Optional[Pubkey] = None,
    create_owner: Pubkey = TOKEN_PROGRAM_ID,
    decimals: int = 0,
    preexisting: bool = False,
    fee: int = DEFAULT_FEE,
) -> ConfirmedTransaction:
    """Confirmed candy machine mint as returned by jsonParsed getTransaction."""
    holder = holder or payer
    token = get_associated_token_address(holder, mint)
    keys = (
        AccountKey(payer, True, True),
        AccountKey(mint, True, True),
        AccountKey(token, False, True),
        AccountKey(candy_machine, False, True),
        AccountKey(SYSTEM_PROGRAM_ID),
        AccountKey(TOKEN_PROGRAM_ID),
        AccountKey(CANDY_MACHINE_PROGRAM_ID),
    )
    mint_nft_accounts = (
        candy_machine, key(230), payer, key(241), key(231), mint, payer, payer, key(232),
    )
    instructions = (
        ParsedInstruction(
            program_id=SYSTEM_PROGRAM_ID, program="system", type="createAccount",
            info={
                "source": str(payer), "newAccount": str(mint),
                "lamports": MINT_RENT, "space": 82, "owner": str(create_owner),
            },
        ),
        ParsedInstruction(
            program_id=TOKEN_PROGRAM_ID, program="spl-token", type="initializeMint",
            info={"mint": str(mint), "decimals": 0, "mintAuthority": str(payer)},
        ),
        ParsedInstruction(
            program_id=TOKEN_PROGRAM_ID, program="spl-token", type="mintTo",
            info={"mint": str(mint), "account": str(token), "mintAuthority": str(payer), "amount": str(minted)},
        ),
        ParsedInstruction(program_id=CANDY_MACHINE_PROGRAM_ID, accounts=mint_nft_accounts, data="3"),
    )
    pre_tokens = (TokenBalance(2, mint, 0, decimals, holder),) if preexisting else ()
    return ConfirmedTransaction(
        signature=signature,
        slot=200,
        fee=fee,
        err=None,
        account_keys=keys,
        instructions=instructions,
        pre_balances=(50 * 10**9, 0, 0, 10**9, 1, 1, 1),
        post_balances=(50 * 10**9 - fee - MINT_RENT - TOKEN_ACCOUNT_RENT, MINT_RENT, TOKEN_ACCOUNT_RENT, 10**9, 1, 1, 1),
        pre_token_balances=pre_tokens,
        post_token_balances=(TokenBalance(2, mint, minted, decimals, holder),),
    )


def cleanup_tx(
    signature: str,
    payer: Pubkey,
    revoked: Sequence[Pubkey],
    fee: int = DEFAULT_FEE,
    owner: Optional[Pubkey] = None,
    extra: Sequence[ParsedInstruction] = (),
    lamport_leak: int = 0,
    token_change: int = 0,
) -> ConfirmedTransaction:
    """Confirmed cleanup transaction revoking delegates on ``revoked``."""
    owner = owner or payer
    keys = [AccountKey(payer, True, True)] + [AccountKey(a, False, True) for a in revoked]
    keys.append(AccountKey(TOKEN_PROGRAM_ID))
    pre = [10 * 10**9] + [TOKEN_ACCOUNT_RENT] * len(revoked) + [1]
    post = list(pre)
    post[0] -= fee + lamport_leak
    if lamport_leak and len(post) > 2:
        post[1] += lamport_leak
    mint = key(220)
    pre_tokens = tuple(TokenBalance(i + 1, mint, 5, 0, payer) for i in range(len(revoked)))
    post_tokens = tuple(
        TokenBalance(b.account_index, b.mint, b.amount + (token_change if i == 0 else 0), b.decimals, b.owner)
        for i, b in enumerate(pre_tokens)
    )
    instructions = tuple(
        ParsedInstruction(
            program_id=TOKEN_PROGRAM_ID, program="spl-token", type="revoke",
            info={"source": str(a), "owner": str(owner)},
        )
        for a in revoked
    ) + tuple(extra)
    return ConfirmedTransaction(
        signature=signature,
        slot=300,
        fee=fee,
        err=None,
        account_keys=tuple(keys),
        instructions=instructions,
        pre_balances=tuple(pre),
        post_balances=tuple(post),
        pre_token_balances=pre_tokens,
        post_token_balances=post_tokens,
    )
