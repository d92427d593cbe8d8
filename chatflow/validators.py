"""Answer parsers used by workflow steps.

Every parser takes the raw user text and either returns a normalised value or
raises :class:`~chatflow.errors.StepValidationError` with a message that can be
shown to the user as-is.
"""

from __future__ import annotations

import re
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Iterable, Mapping, Optional, Tuple

from .constants import DEFAULT_CURRENCY
from .errors import StepValidationError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
AMOUNT_RE = re.compile(
    r"^(?P<prefix>[$₦€£])?\s*(?P<number>\d+(?:\.\d+)?)\s*(?P<currency>[A-Za-z][A-Za-z0-9]{1,9}|[$₦€£])?$"
)
RELATIVE_DATE_RE = re.compile(
    r"^(?:in\s+)?(?P<count>\d{1,9})\s+(?P<unit>days?|weeks?)$", re.ASCII
)
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$", re.ASCII)
QUANTITY_RE = re.compile(r"\d{1,9}", re.ASCII)
EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
SOLANA_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")

CURRENCY_SYMBOLS = {"$": "USD", "₦": "NGN", "€": "EUR", "£": "GBP"}

MAX_TEXT_LENGTH = 500


def parse_text(raw: str, field_label: str = "a value", max_length: int = MAX_TEXT_LENGTH) -> str:
    value = raw.strip()
    if not value:
        raise StepValidationError(f"❌ Please enter {field_label}.")
    if len(value) > max_length:
        raise StepValidationError(
            f"❌ That's too long. Please keep it under {max_length} characters."
        )
    return value


def parse_email(raw: str) -> str:
    value = raw.strip()
    if not EMAIL_RE.match(value):
        raise StepValidationError("❌ Please enter a valid email address")
    return value


def parse_quantity(raw: str) -> int:
    value = raw.strip()
    if not QUANTITY_RE.fullmatch(value) or int(value) <= 0:
        raise StepValidationError("❌ Please enter a valid quantity (positive number)")
    return int(value)


def parse_amount(raw: str, default_currency: str = DEFAULT_CURRENCY) -> Tuple[Decimal, str]:
    """Parse ``"500 USD"`` style input into ``(Decimal("500"), "USD")``.

    Thousands separators and a leading or trailing currency symbol are
    accepted. A bare number takes ``default_currency``.
    """
    cleaned = raw.strip().replace(",", "")
    match = AMOUNT_RE.match(cleaned)
    if not match:
        raise StepValidationError(
            "❌ Please enter a valid amount (e.g., 1500 USD or 600000 NGN)"
        )
    try:
        amount = Decimal(match.group("number"))
    except InvalidOperation:  # pragma: no cover - regex guarantees a number
        raise StepValidationError("❌ Please enter a valid amount")
    if amount <= 0:
        raise StepValidationError("❌ The amount must be greater than zero")

    token = match.group("currency") or match.group("prefix")
    if token is None:
        currency = default_currency.upper()
    else:
        currency = CURRENCY_SYMBOLS.get(token, token).upper()
    return amount, currency


def parse_due_date(raw: str, today: Optional[date] = None) -> date:
    """Resolve ``"in 30 days"`` or a strict ``YYYY-MM-DD`` date."""
    today = today or date.today()
    value = raw.strip().lower()

    relative = RELATIVE_DATE_RE.match(value)
    if relative:
        count = int(relative.group("count"))
        days = count * 7 if relative.group("unit").startswith("week") else count
        try:
            return today + timedelta(days=days)
        except OverflowError:
            raise StepValidationError("❌ That date is too far in the future") from None

    if ISO_DATE_RE.match(value):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
    raise StepValidationError(
        '❌ Please enter a valid date (YYYY-MM-DD format, "X days", or "in X days")'
    )


def parse_choice(raw: str, choices: Mapping[str, Iterable[str]], prompt_hint: str) -> str:
    """Map ``raw`` onto one of ``choices`` (canonical value -> accepted aliases)."""
    value = raw.strip().lower()
    for canonical, aliases in choices.items():
        if value == canonical or value in aliases:
            return canonical
    raise StepValidationError(f"❌ {prompt_hint}")


def parse_wallet_address(raw: str) -> str:
    value = raw.strip()
    if EVM_ADDRESS_RE.match(value) or SOLANA_ADDRESS_RE.match(value):
        return value
    raise StepValidationError(
        "❌ That doesn't look like a wallet address. Send a 0x… address or a Solana address."
    )


def parse_token(raw: str) -> str:
    value = raw.strip()
    if not re.match(r"^[A-Za-z][A-Za-z0-9]{1,9}$", value):
        raise StepValidationError("❌ Please enter a token symbol (e.g., USDC, ETH, cUSD)")
    return value.upper()


def is_solana_address(value: str) -> bool:
    return bool(SOLANA_ADDRESS_RE.match(value)) and not value.startswith("0x")
