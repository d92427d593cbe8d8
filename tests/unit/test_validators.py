from datetime import date
from decimal import Decimal

import pytest

from chatflow.errors import StepValidationError
from chatflow.validators import (
    parse_amount,
    parse_choice,
    parse_due_date,
    parse_email,
    parse_quantity,
    parse_text,
    parse_token,
    parse_wallet_address,
)

TODAY = date(2024, 1, 1)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("500 USD", (Decimal("500"), "USD")),
        ("200000 NGN", (Decimal("200000"), "NGN")),
        ("500", (Decimal("500"), "USD")),
        ("1,500.50 ngn", (Decimal("1500.50"), "NGN")),
        ("₦20000", (Decimal("20000"), "NGN")),
        ("$99.99", (Decimal("99.99"), "USD")),
    ],
)
def test_parse_amount_accepts_number_and_currency(raw, expected):
    assert parse_amount(raw) == expected


def test_parse_amount_uses_configured_default_currency():
    assert parse_amount("750", default_currency="ngn") == (Decimal("750"), "NGN")


@pytest.mark.parametrize("raw", ["five hundred", "", "USD", "0", "-5 USD"])
def test_parse_amount_rejects_invalid_input(raw):
    with pytest.raises(StepValidationError):
        parse_amount(raw)


def test_parse_amount_error_message_gives_example():
    with pytest.raises(StepValidationError) as exc:
        parse_amount("lots")
    assert "1500 USD" in str(exc.value)


def test_parse_due_date_relative_days():
    assert parse_due_date("in 30 days", today=TODAY) == date(2024, 1, 31)
    assert parse_due_date("15 days", today=TODAY) == date(2024, 1, 16)
    assert parse_due_date("in 2 weeks", today=TODAY) == date(2024, 1, 15)


def test_parse_due_date_iso_passes_through():
    assert parse_due_date("2024-02-15", today=TODAY) == date(2024, 2, 15)


@pytest.mark.parametrize("raw", ["next month", "2024-02-30", "15/02/2024", "tomorrow", "in 1234567890 days"])
def test_parse_due_date_rejects_other_forms(raw):
    with pytest.raises(StepValidationError):
        parse_due_date(raw, today=TODAY)


def test_parse_email():
    assert parse_email("  client@acme.com ") == "client@acme.com"
    with pytest.raises(StepValidationError) as exc:
        parse_email("client@acme")
    assert str(exc.value) == "❌ Please enter a valid email address"


def test_parse_quantity():
    assert parse_quantity("12") == 12
    for raw in ("0", "1.5", "ten", "²", "①", "1" * 40):
        with pytest.raises(StepValidationError):
            parse_quantity(raw)


def test_parse_text_trims_and_bounds_length():
    assert parse_text("  Acme Corp ") == "Acme Corp"
    with pytest.raises(StepValidationError):
        parse_text("   ")
    with pytest.raises(StepValidationError):
        parse_text("x" * 20, max_length=10)


def test_parse_choice_matches_canonical_and_aliases():
    choices = {"base": ("base network",), "celo": ()}
    assert parse_choice("BASE", choices, "pick one") == "base"
    assert parse_choice("base network", choices, "pick one") == "base"
    with pytest.raises(StepValidationError) as exc:
        parse_choice("polygon", choices, "Please choose base or celo")
    assert "Please choose base or celo" in str(exc.value)


def test_parse_wallet_address_and_token():
    evm = "0x" + "ab" * 20
    solana = "7EcDhSYGxXyscszYEp35KHN8vvw3svAuLKTzXwCFLtV"
    assert parse_wallet_address(evm) == evm
    assert parse_wallet_address(solana) == solana
    with pytest.raises(StepValidationError):
        parse_wallet_address("0x1234")
    assert parse_token("usdc") == "USDC"
    with pytest.raises(StepValidationError):
        parse_token("10")


@pytest.mark.parametrize("raw", ["in 99999999 days", "999999999 weeks"])
def test_parse_due_date_out_of_range_is_a_validation_error(raw):
    with pytest.raises(StepValidationError) as exc:
        parse_due_date(raw, today=TODAY)
    assert str(exc.value) == "❌ That date is too far in the future"
