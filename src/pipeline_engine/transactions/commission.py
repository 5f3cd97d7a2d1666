"""Commission calculation and status."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum

from ..exceptions import InvalidCommissionInputError
from .stages import Stage

CENTS = Decimal("0.01")
HUNDRED = Decimal("100")


class CommissionStatus(Enum):
    """Whether the commission has been earned yet."""
    EARNED = "earned"
    PENDING = "pending"


def to_decimal(value, field: str) -> Decimal:
    """Convert an int, float, string or Decimal to a finite Decimal."""
    if isinstance(value, bool):
        raise InvalidCommissionInputError(f"{field} must be a number, got {value!r}", field=field, value=value)
    if isinstance(value, float):
        # str() keeps 3.1 as 3.1 rather than its binary expansion
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidCommissionInputError(
            f"{field} must be a number, got {value!r}", field=field, value=value
        ) from None
    if not result.is_finite():
        raise InvalidCommissionInputError(f"{field} must be finite, got {value!r}", field=field, value=value)
    return result


def validate_amount(amount) -> Decimal:
    """Deal amounts are non-negative. The value is kept exactly as given."""
    result = to_decimal(amount, "amount")
    if result < 0:
        raise InvalidCommissionInputError(f"Amount must not be negative, got {amount}", field="amount", value=amount)
    return result


def validate_rate(rate_percent) -> Decimal:
    """Commission rates are percentages between 0 and 100."""
    result = to_decimal(rate_percent, "rate")
    if not 0 <= result <= HUNDRED:
        raise InvalidCommissionInputError(
            f"Commission rate must be between 0 and 100, got {rate_percent}",
            field="rate", value=rate_percent,
        )
    return result


def compute_commission(amount, rate_percent) -> Decimal:
    """Commission due on a deal.

    Args:
        amount: Deal price, must not be negative
        rate_percent: Commission rate as a percentage (3.0 for 3%)

    Returns:
        amount * rate_percent / 100, rounded half-up to cents

    Raises:
        InvalidCommissionInputError: negative amount or rate outside 0-100
    """
    deal_amount = validate_amount(amount)
    rate = validate_rate(rate_percent)
    return (deal_amount * rate / HUNDRED).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Commission:
    """Commission rate and amount on the deal price, plus its payout flag."""
    rate: Decimal
    amount: Decimal
    paid: bool = False

    @classmethod
    def create(cls, deal_amount, rate_percent, paid: bool = False) -> "Commission":
        """Build a commission with its amount derived from the deal price."""
        return cls(
            rate=validate_rate(rate_percent),
            amount=compute_commission(deal_amount, rate_percent),
            paid=paid,
        )


def commission_status(transaction) -> CommissionStatus:
    """Commission is earned only once the deal is Closed Won.

    Closed Lost deals stay pending here; writing them off is up to reporting.
    """
    if transaction.stage == Stage.CLOSED_WON:
        return CommissionStatus.EARNED
    return CommissionStatus.PENDING
