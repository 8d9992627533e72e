"""Amount-based approval policy for ACH transfers.

Both thresholds are strict greater-than comparisons:
  - amount > approval_threshold (10,000.00)       -> approval required
  - amount > dual_approval_threshold (50,000.00)  -> two approval levels
So exactly 10,000.00 goes straight to Approved and exactly 50,000.00
needs a single approval.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Tuple

from finops.errors import ValidationError
from finops.models import Settings

CENT = Decimal("0.01")


def parse_amount(raw: Any) -> Decimal:
    """Convert ``raw`` to a positive two-decimal Decimal or raise ValidationError."""
    try:
        amount = raw if isinstance(raw, Decimal) else Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount '{raw}'")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    try:
        quantized = amount.quantize(CENT)
    except InvalidOperation:
        raise ValidationError(f"Amount '{raw}' is out of range")
    if quantized != amount:
        raise ValidationError("Amount must have at most two decimal places")
    return quantized


def approval_requirements(amount: Decimal, settings: Settings) -> Tuple[bool, int]:
    """Return (requires_approval, required_approval_level) for an amount."""
    requires_approval = amount > settings.approval_threshold
    required_level = 2 if amount > settings.dual_approval_threshold else 1
    return requires_approval, required_level
