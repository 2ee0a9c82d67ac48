"""
Ledger arithmetic for client balances.

A client's balance is never stored. It is the signed sum of the client's
tickets: deposits add, withdrawals subtract. All amounts are fixed-point
``Decimal`` values with at most two fractional digits (one cent).
"""

import random
from datetime import datetime, timedelta, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from .exceptions import InvalidAmountError
from .models import Ticket

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Largest single ticket amount; keeps cent values well inside a signed 64-bit column
MAX_AMOUNT = Decimal("999999999999.99")


def validate_amount(amount) -> Decimal:
    """Return ``amount`` as a two-place Decimal or raise InvalidAmountError."""
    if isinstance(amount, bool) or amount is None:
        raise InvalidAmountError("Invalid amount")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError(f"Invalid amount: {amount!r}") from e

    if not value.is_finite():
        raise InvalidAmountError(f"Invalid amount: {amount!r}")
    if value <= 0:
        raise InvalidAmountError("Invalid amount: must be greater than zero")
    if value > MAX_AMOUNT:
        raise InvalidAmountError(f"Invalid amount: must not exceed {MAX_AMOUNT}")
    try:
        quantized = value.quantize(CENT)
    except InvalidOperation as e:
        raise InvalidAmountError(f"Invalid amount: {amount!r}") from e
    if value != quantized:
        raise InvalidAmountError(f"Invalid amount: {amount!r} has more than two decimal places")
    return quantized


def signed_amount(ticket: Ticket) -> Decimal:
    return ticket.type.sign * ticket.amount


def compute_balance(tickets: Iterable[Ticket]) -> Decimal:
    return sum((signed_amount(t) for t in tickets), ZERO)


def is_withdrawal_permitted(amount: Decimal, balance: Decimal) -> bool:
    return amount > 0 and amount <= balance


def to_cents(amount: Decimal) -> int:
    return int(amount.quantize(CENT) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def generate_ticket_code(
    client_id: int,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Build a human-readable ticket code: ``TICK-<client:05d>-<epoch ms>-<nnn>``.

    Codes are not unique by construction; the store's uniqueness constraint
    is the source of truth and callers regenerate on a collision.
    """
    now = now or datetime.now(timezone.utc)
    rng = rng or random
    epoch_millis = int(now.timestamp() * 1000)
    return f"TICK-{client_id:05d}-{epoch_millis}-{rng.randint(0, 999):03d}"


def day_bounds(now: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    """Return [local midnight, next local midnight) around ``now``, as UTC instants."""
    local = now.astimezone(tz)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    # Re-anchor through the calendar so DST days still end at midnight
    next_day = (start + timedelta(days=1)).date()
    end = datetime(next_day.year, next_day.month, next_day.day, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
