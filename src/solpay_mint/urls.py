"""Encode and parse ``solana:`` payment and mint request URLs.

Wire format::

    solana:<recipient>?amount=1.5&spl-token=<mint>&reference=<r1>&reference=<r2>
        &label=Shop&message=Thanks&memo=Order%2342

    solana:<recipient>?candy-machine=<id>&reference=<r1>&label=Drop

``reference`` is repeatable and order-significant: discovery depends on
the full list, so it is never collapsed or reordered.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import parse_qsl, quote, unquote, urlsplit

from solders.pubkey import Pubkey

from .amounts import as_decimal, format_amount
from .constants import MAX_URL_LENGTH, URL_PROTOCOL, URL_SCHEME
from .exceptions import InvalidAmountError, MalformedURLError

logger = logging.getLogger(__name__)

# ASCII digits only, matched against the whole value
AMOUNT_PATTERN = re.compile(r"[0-9]+(\.[0-9]+)?")

PARAM_AMOUNT = "amount"
PARAM_SPL_TOKEN = "spl-token"
PARAM_REFERENCE = "reference"
PARAM_LABEL = "label"
PARAM_MESSAGE = "message"
PARAM_MEMO = "memo"
PARAM_CANDY_MACHINE = "candy-machine"

SINGLE_VALUED = (
    PARAM_AMOUNT,
    PARAM_SPL_TOKEN,
    PARAM_LABEL,
    PARAM_MESSAGE,
    PARAM_MEMO,
    PARAM_CANDY_MACHINE,
)

PubkeyLike = Union[Pubkey, str]


def _coerce_pubkey(value: PubkeyLike) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    return Pubkey.from_string(value)


def _coerce_references(value: Union[PubkeyLike, Iterable[PubkeyLike], None]) -> Tuple[Pubkey, ...]:
    if value is None:
        return ()
    if isinstance(value, (Pubkey, str)):
        return (_coerce_pubkey(value),)
    return tuple(_coerce_pubkey(v) for v in value)


@dataclass(frozen=True)
class PaymentIntent:
    """A request to pay ``amount`` of SOL or ``spl_token`` to ``recipient``."""
    recipient: Pubkey
    amount: Optional[Decimal] = None
    spl_token: Optional[Pubkey] = None
    references: Tuple[Pubkey, ...] = ()
    label: Optional[str] = None
    message: Optional[str] = None
    memo: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "recipient", _coerce_pubkey(self.recipient))
        if self.spl_token is not None:
            object.__setattr__(self, "spl_token", _coerce_pubkey(self.spl_token))
        if self.amount is not None:
            try:
                amount = as_decimal(self.amount)
            except InvalidAmountError as e:
                raise ValueError(e.message) from e
            if amount < 0:
                raise ValueError("amount must not be negative")
            object.__setattr__(self, "amount", amount)
        object.__setattr__(self, "references", _coerce_references(self.references))


@dataclass(frozen=True)
class MintIntent:
    """A request to mint one item from an inventory (candy machine) program."""
    recipient: Pubkey
    candy_machine_id: Pubkey
    references: Tuple[Pubkey, ...] = ()
    label: Optional[str] = None
    message: Optional[str] = None
    memo: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "recipient", _coerce_pubkey(self.recipient))
        object.__setattr__(self, "candy_machine_id", _coerce_pubkey(self.candy_machine_id))
        object.__setattr__(self, "references", _coerce_references(self.references))


Intent = Union[PaymentIntent, MintIntent]


def _encode_params(params: List[Tuple[str, str]]) -> str:
    return "&".join(f"{key}={quote(value, safe='')}" for key, value in params)


def _common_params(intent: Intent) -> List[Tuple[str, str]]:
    params = [(PARAM_REFERENCE, str(ref)) for ref in intent.references]
    if intent.label is not None:
        params.append((PARAM_LABEL, intent.label))
    if intent.message is not None:
        params.append((PARAM_MESSAGE, intent.message))
    if intent.memo is not None:
        params.append((PARAM_MEMO, intent.memo))
    return params


def encode_url(intent: Intent) -> str:
    """Encode a payment or mint intent as a ``solana:`` URL."""
    url = URL_PROTOCOL + quote(str(intent.recipient), safe="")

    params: List[Tuple[str, str]] = []
    if isinstance(intent, MintIntent):
        params.append((PARAM_CANDY_MACHINE, str(intent.candy_machine_id)))
    else:
        if intent.amount is not None:
            params.append((PARAM_AMOUNT, format_amount(intent.amount)))
        if intent.spl_token is not None:
            params.append((PARAM_SPL_TOKEN, str(intent.spl_token)))
    params.extend(_common_params(intent))

    if params:
        url += "?" + _encode_params(params)
    return url


def _parse_pubkey(value: str, parameter: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except (TypeError, ValueError) as e:
        raise MalformedURLError(f"{parameter} invalid: {value!r}", parameter=parameter) from e


def _parse_amount(value: str) -> Decimal:
    if not AMOUNT_PATTERN.fullmatch(value):
        raise MalformedURLError(f"amount invalid: {value!r}", parameter=PARAM_AMOUNT)
    return Decimal(value)


def _collect_params(query: str) -> Dict[str, List[str]]:
    collected: Dict[str, List[str]] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        collected.setdefault(key, []).append(value)
    for key in SINGLE_VALUED:
        if len(collected.get(key, [])) > 1:
            raise MalformedURLError(f"{key} must appear at most once", parameter=key)
    return collected


def _first(params: Dict[str, List[str]], key: str) -> Optional[str]:
    values = params.get(key)
    return values[0] if values else None


def parse_url(url: str) -> Intent:
    """Parse a ``solana:`` URL into a PaymentIntent or MintIntent.

    Raises:
        MalformedURLError: wrong scheme, invalid recipient, amount or
            account parameter, repeated single-valued parameter, or a URL
            mixing payment and mint parameters.
    """
    if not isinstance(url, str):
        raise MalformedURLError("url must be a string")
    if len(url) > MAX_URL_LENGTH:
        raise MalformedURLError(f"url length exceeds {MAX_URL_LENGTH}")

    parts = urlsplit(url)
    if parts.scheme != URL_SCHEME:
        raise MalformedURLError(f"protocol invalid: {parts.scheme!r}", parameter="scheme")
    if not parts.path:
        raise MalformedURLError("recipient missing", parameter="recipient")

    recipient = _parse_pubkey(unquote(parts.path), "recipient")
    params = _collect_params(parts.query)

    references = tuple(_parse_pubkey(v, PARAM_REFERENCE) for v in params.get(PARAM_REFERENCE, []))
    common: Dict[str, Any] = {
        "references": references,
        "label": _first(params, PARAM_LABEL),
        "message": _first(params, PARAM_MESSAGE),
        "memo": _first(params, PARAM_MEMO),
    }

    candy_machine = _first(params, PARAM_CANDY_MACHINE)
    if candy_machine is not None:
        for key in (PARAM_AMOUNT, PARAM_SPL_TOKEN):
            if key in params:
                raise MalformedURLError(
                    f"{key} is not allowed in a mint request", parameter=key
                )
        return MintIntent(
            recipient=recipient,
            candy_machine_id=_parse_pubkey(candy_machine, PARAM_CANDY_MACHINE),
            **common,
        )

    amount = _first(params, PARAM_AMOUNT)
    spl_token = _first(params, PARAM_SPL_TOKEN)
    return PaymentIntent(
        recipient=recipient,
        amount=_parse_amount(amount) if amount is not None else None,
        spl_token=_parse_pubkey(spl_token, PARAM_SPL_TOKEN) if spl_token is not None else None,
        **common,
    )


def parse_payment_url(url: str) -> PaymentIntent:
    """Parse a URL that must be a payment request."""
    intent = parse_url(url)
    if not isinstance(intent, PaymentIntent):
        raise MalformedURLError("expected a payment request, got a mint request")
    return intent


def parse_mint_url(url: str) -> MintIntent:
    """Parse a URL that must be a mint request."""
    intent = parse_url(url)
    if not isinstance(intent, MintIntent):
        raise MalformedURLError("expected a mint request", parameter=PARAM_CANDY_MACHINE)
    return intent
