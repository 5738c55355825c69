"""
End-to-end payment flow against the in-memory ledger.

Merchant encodes a request, wallet parses and builds it, the ledger
settles it, and the merchant finds and validates the result.
"""
from __future__ import annotations

from decimal import Decimal

import pytest

from solpay_mint import (
    PaymentIntent,
    build_payment_transaction,
    encode_url,
    find_reference_signature,
    parse_payment_url,
    validate_payment,
)
from solpay_mint.exceptions import ValidationMismatchError

from tests.ledger_helpers import key, settle_payment, signature_for


class TestNativeFlow:
    """SOL payments."""

    @pytest.fixture
    def request_url(self, merchant, reference):
        return encode_url(
            PaymentIntent(
                recipient=merchant,
                amount=Decimal("1.5"),
                references=(reference,),
                label="Coffee Shop",
                message="Thanks for your order!",
                memo="OID-5",
            )
        )

    @pytest.mark.asyncio
    async def test_happy_path(self, ledger, payer, merchant, reference, request_url):
        """Should find and validate the settled payment."""
        ledger.add_wallet(payer)
        ledger.add_wallet(merchant)

        intent = parse_payment_url(request_url)
        built = await build_payment_transaction(ledger, payer, intent)
        settled = settle_payment(ledger, built, payer, signature_for(1))
        ledger.record(settled, tagged=[reference])

        flags = {k.pubkey: (k.signer, k.writable) for k in settled.account_keys}
        assert flags[payer] == (True, True)
        assert flags[merchant] == (False, True)
        assert flags[reference] == (False, False)

        signature = await find_reference_signature(ledger, reference)
        result = await validate_payment(
            ledger, signature, merchant, Decimal("1.5"), reference=reference
        )

        assert signature == signature_for(1)
        assert result.valid
        assert result.details["received"] == 1_500_000_000

    @pytest.mark.asyncio
    async def test_wrong_expected_amount(self, ledger, payer, merchant, reference, request_url):
        """Should reject the same payment checked against 1.6 SOL."""
        ledger.add_wallet(payer)
        ledger.add_wallet(merchant)

        built = await build_payment_transaction(ledger, payer, parse_payment_url(request_url))
        ledger.record(settle_payment(ledger, built, payer, signature_for(1)), tagged=[reference])
        signature = await find_reference_signature(ledger, reference)

        with pytest.raises(ValidationMismatchError) as exc_info:
            await validate_payment(ledger, signature, merchant, Decimal("1.6"), reference=reference)
        assert exc_info.value.field == "amount"

    @pytest.mark.asyncio
    async def test_declared_arguments_do_not_count(self, ledger, payer, merchant, reference, request_url):
        """Should judge by balance effects when value went elsewhere."""
        ledger.add_wallet(payer)
        ledger.add_wallet(merchant)

        built = await build_payment_transaction(ledger, payer, parse_payment_url(request_url))
        settled = settle_payment(ledger, built, payer, signature_for(1), redirect_to=key(66))
        ledger.record(settled, tagged=[reference])

        with pytest.raises(ValidationMismatchError) as exc_info:
            await validate_payment(ledger, signature_for(1), merchant, Decimal("1.5"), reference=reference)
        assert exc_info.value.field == "amount"
        assert exc_info.value.result.details["received"] == 0


class TestTokenFlow:
    """SPL token payments."""

    @pytest.mark.asyncio
    async def test_usdc_payment(self, ledger, payer, merchant, reference, usdc_mint):
        """Should validate a USDC transfer end to end."""
        ledger.add_wallet(payer)
        ledger.add_wallet(merchant)
        ledger.add_mint(usdc_mint, 6)
        ledger.add_token_account(payer, usdc_mint, 50_000_000)
        ledger.add_token_account(merchant, usdc_mint, 3_000_000)

        url = encode_url(
            PaymentIntent(recipient=merchant, amount=Decimal("12.34"), spl_token=usdc_mint, references=(reference,))
        )
        intent = parse_payment_url(url)
        built = await build_payment_transaction(ledger, payer, intent)
        ledger.record(settle_payment(ledger, built, payer, signature_for(2)), tagged=[reference])

        signature = await find_reference_signature(ledger, reference)
        result = await validate_payment(
            ledger, signature, merchant, intent.amount, spl_token=usdc_mint, reference=intent.references
        )

        assert result.details["received"] == 12_340_000
        with pytest.raises(ValidationMismatchError):
            await validate_payment(ledger, signature, merchant, Decimal("12.33"), spl_token=usdc_mint)

    @pytest.mark.asyncio
    async def test_newer_failed_attempt_is_skipped(self, ledger, payer, merchant, reference):
        """Should validate the successful payment behind a newer failure."""
        ledger.add_wallet(payer)
        ledger.add_wallet(merchant)
        built = await build_payment_transaction(
            ledger, payer, PaymentIntent(recipient=merchant, amount=Decimal("1"), references=(reference,))
        )
        ledger.record(settle_payment(ledger, built, payer, signature_for(1)), tagged=[reference])
        ledger.tag(reference, signature_for(2), slot=500, err={"InstructionError": [0, "Custom"]})

        signature = await find_reference_signature(ledger, reference)

        assert signature == signature_for(1)
        assert (await validate_payment(ledger, signature, merchant, 1, reference=reference)).valid
