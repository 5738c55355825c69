"""
Tests for solpay_mint.urls.

Tests cover:
- Encoding payment and mint requests
- Parsing, including repeated references in order
- Malformed URLs
- Round trips
"""
from __future__ import annotations

from decimal import Decimal

import pytest

from solpay_mint.exceptions import MalformedURLError
from solpay_mint.urls import (
    MintIntent,
    PaymentIntent,
    encode_url,
    parse_mint_url,
    parse_payment_url,
    parse_url,
)

from tests.ledger_helpers import key

RECIPIENT = key(2)
REF1 = key(3)
REF2 = key(4)
MINT = key(10)
CANDY_MACHINE = key(20)


class TestEncodeURL:
    """Tests for encode_url."""

    def test_recipient_only(self):
        """Should emit no query when only the recipient is set."""
        assert encode_url(PaymentIntent(recipient=RECIPIENT)) == f"solana:{RECIPIENT}"

    def test_all_payment_fields_in_order(self):
        """Should emit payment keys in the fixed order."""
        intent = PaymentIntent(
            recipient=RECIPIENT,
            amount=Decimal("1.5"),
            spl_token=MINT,
            references=(REF1, REF2),
            label="Coffee Shop",
            message="Thanks for your order!",
            memo="OrderId#1234",
        )

        url = encode_url(intent)

        assert url == (
            f"solana:{RECIPIENT}?amount=1.5&spl-token={MINT}"
            f"&reference={REF1}&reference={REF2}"
            "&label=Coffee%20Shop&message=Thanks%20for%20your%20order%21&memo=OrderId%231234"
        )

    def test_amount_without_padding_or_exponent(self):
        """Should write exactly the fractional digits present."""
        assert "amount=1.5&" in encode_url(PaymentIntent(RECIPIENT, amount=Decimal("1.50"), label="x"))
        assert encode_url(PaymentIntent(RECIPIENT, amount=Decimal("1E+2"))).endswith("amount=100")
        assert encode_url(PaymentIntent(RECIPIENT, amount=Decimal("0.000000001"))).endswith(
            "amount=0.000000001"
        )
        assert encode_url(PaymentIntent(RECIPIENT, amount=Decimal("0"))).endswith("amount=0")

    def test_mint_request_uses_candy_machine_key(self):
        """Should tag the candy machine with its own key, never spl-token."""
        url = encode_url(MintIntent(recipient=RECIPIENT, candy_machine_id=CANDY_MACHINE, label="Drop"))

        assert url == f"solana:{RECIPIENT}?candy-machine={CANDY_MACHINE}&label=Drop"
        assert "spl-token" not in url

    def test_string_keys_are_coerced(self):
        """Should accept base58 strings for keys."""
        intent = PaymentIntent(recipient=str(RECIPIENT), references=str(REF1))
        assert intent.recipient == RECIPIENT
        assert intent.references == (REF1,)

    def test_negative_amount_rejected(self):
        """Should refuse negative amounts at construction."""
        with pytest.raises(ValueError):
            PaymentIntent(recipient=RECIPIENT, amount=Decimal("-1"))

    @pytest.mark.parametrize("amount", [0.1, Decimal("Infinity"), Decimal("NaN"), "abc"])
    def test_inexact_or_non_finite_amount_rejected(self, amount):
        """Should refuse floats and amounts that cannot be written in a URL."""
        with pytest.raises(ValueError):
            PaymentIntent(recipient=RECIPIENT, amount=amount)

    def test_string_amount_is_coerced(self):
        """Should accept decimal strings and encode them exactly."""
        intent = PaymentIntent(recipient=RECIPIENT, amount="0.1")
        assert intent.amount == Decimal("0.1")
        assert encode_url(intent) == f"solana:{RECIPIENT}?amount=0.1"


class TestParseURL:
    """Tests for parse_url."""

    def test_parse_payment(self):
        """Should decode every payment field."""
        url = (
            f"solana:{RECIPIENT}?amount=0.01&spl-token={MINT}&reference={REF1}"
            "&label=Michael&message=Thanks%20for%20all%20the%20fish&memo=OrderId5678"
        )

        intent = parse_url(url)

        assert isinstance(intent, PaymentIntent)
        assert intent.recipient == RECIPIENT
        assert intent.amount == Decimal("0.01")
        assert intent.spl_token == MINT
        assert intent.references == (REF1,)
        assert intent.label == "Michael"
        assert intent.message == "Thanks for all the fish"
        assert intent.memo == "OrderId5678"

    def test_references_keep_url_order(self):
        """Should keep every reference in URL order."""
        intent = parse_url(f"solana:{RECIPIENT}?reference={REF2}&reference={REF1}")
        assert intent.references == (REF2, REF1)

    def test_parse_mint(self):
        """Should decode a mint request."""
        intent = parse_url(f"solana:{RECIPIENT}?candy-machine={CANDY_MACHINE}&reference={REF1}")

        assert isinstance(intent, MintIntent)
        assert intent.candy_machine_id == CANDY_MACHINE
        assert intent.references == (REF1,)

    def test_unknown_keys_ignored(self):
        """Should ignore keys outside the protocol."""
        intent = parse_url(f"solana:{RECIPIENT}?amount=1&utm_source=newsletter")
        assert intent.amount == Decimal("1")

    def test_typed_variants(self):
        """Should reject the other request kind."""
        mint_url = f"solana:{RECIPIENT}?candy-machine={CANDY_MACHINE}"
        payment_url = f"solana:{RECIPIENT}?amount=1"

        assert isinstance(parse_mint_url(mint_url), MintIntent)
        assert isinstance(parse_payment_url(payment_url), PaymentIntent)
        with pytest.raises(MalformedURLError):
            parse_payment_url(mint_url)
        with pytest.raises(MalformedURLError):
            parse_mint_url(payment_url)

    @pytest.mark.parametrize(
        "url,parameter",
        [
            (f"bitcoin:{RECIPIENT}", "scheme"),
            ("solana:", "recipient"),
            ("solana:not-a-key", "recipient"),
            (f"solana:{RECIPIENT}?amount=-1", "amount"),
            (f"solana:{RECIPIENT}?amount=1e3", "amount"),
            (f"solana:{RECIPIENT}?amount=.5", "amount"),
            (f"solana:{RECIPIENT}?amount=1.", "amount"),
            (f"solana:{RECIPIENT}?amount=", "amount"),
            (f"solana:{RECIPIENT}?amount=1.5%0A", "amount"),
            (f"solana:{RECIPIENT}?amount=%D9%A1", "amount"),
            (f"solana:{RECIPIENT}?spl-token=xyz", "spl-token"),
            (f"solana:{RECIPIENT}?reference={REF1}&reference=bad", "reference"),
            (f"solana:{RECIPIENT}?amount=1&amount=2", "amount"),
            (f"solana:{RECIPIENT}?label=a&label=b", "label"),
            (f"solana:{RECIPIENT}?candy-machine=zzz", "candy-machine"),
            (f"solana:{RECIPIENT}?candy-machine={CANDY_MACHINE}&amount=1", "amount"),
            (f"solana:{RECIPIENT}?candy-machine={CANDY_MACHINE}&spl-token={MINT}", "spl-token"),
        ],
    )
    def test_malformed(self, url, parameter):
        """Should raise MalformedURLError naming the bad parameter."""
        with pytest.raises(MalformedURLError) as exc_info:
            parse_url(url)
        assert exc_info.value.parameter == parameter

    def test_too_long(self):
        """Should refuse URLs over 2048 characters."""
        url = f"solana:{RECIPIENT}?label=" + "a" * 2048
        with pytest.raises(MalformedURLError):
            parse_url(url)


class TestRoundTrip:
    """decode(encode(i)) == i."""

    @pytest.mark.parametrize(
        "intent",
        [
            PaymentIntent(recipient=RECIPIENT),
            PaymentIntent(recipient=RECIPIENT, amount=Decimal("1.5"), references=(REF1, REF2)),
            PaymentIntent(
                recipient=RECIPIENT,
                amount=Decimal("9.999999999"),
                spl_token=MINT,
                references=(REF2, REF1),
                label="Café & Bar",
                message="100% = done?",
                memo="",
            ),
            MintIntent(recipient=RECIPIENT, candy_machine_id=CANDY_MACHINE),
            MintIntent(
                recipient=RECIPIENT,
                candy_machine_id=CANDY_MACHINE,
                references=(REF1,),
                label="Drop",
                message="gm",
            ),
        ],
    )
    def test_round_trip(self, intent):
        """Should decode to an equal intent."""
        assert parse_url(encode_url(intent)) == intent
