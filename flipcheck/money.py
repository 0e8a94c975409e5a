"""Boundary parsing for prices and costs.

Upstream sources and callers describe costs as numbers, numeric strings
("$5.99", "+$12.00 shipping") or sentinels ("Free", "Unknown",
"Calculated"). Everything is normalized here into a ``Cost`` so the rest of
the pipeline works on ``Decimal`` values and an explicit kind tag.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

CENTS = Decimal("0.01")

_NUMERIC_RE = re.compile(r"-?\d[\d,]*(?:\.\d+)?|-?\.\d+")


class CostKind(str, Enum):
    KNOWN = "known"
    FREE = "free"
    UNKNOWN = "unknown"
    CALCULATED = "calculated"


class Cost(BaseModel):
    """A cost with an explicit reason when the amount is not a plain number."""

    model_config = ConfigDict(frozen=True)

    amount: Optional[Decimal] = None
    kind: CostKind = CostKind.UNKNOWN

    @classmethod
    def known(cls, amount: Decimal) -> "Cost":
        if amount <= 0:
            return cls.free()
        return cls(amount=amount, kind=CostKind.KNOWN)

    @classmethod
    def free(cls) -> "Cost":
        return cls(amount=Decimal("0"), kind=CostKind.FREE)

    @classmethod
    def unknown(cls) -> "Cost":
        return cls(amount=None, kind=CostKind.UNKNOWN)

    @classmethod
    def calculated(cls) -> "Cost":
        return cls(amount=None, kind=CostKind.CALCULATED)

    def value_or_zero(self) -> Decimal:
        if self.kind == CostKind.KNOWN and self.amount is not None:
            return self.amount
        return Decimal("0")

    @property
    def needs_verification(self) -> bool:
        """Calculated and unknown costs count as zero but should be checked by hand."""
        return self.kind in (CostKind.UNKNOWN, CostKind.CALCULATED)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a number or numeric string into a Decimal. Returns None when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        try:
            parsed = Decimal(str(value))
        except InvalidOperation:
            return None
        return parsed if parsed.is_finite() else None

    match = _NUMERIC_RE.search(str(value))
    if not match:
        return None
    try:
        return Decimal(match.group(0).replace(",", ""))
    except InvalidOperation:
        return None


def parse_price(value: Any) -> Decimal:
    """Parse an upstream price; missing or malformed values become zero."""
    parsed = to_decimal(value)
    if parsed is None or parsed < 0:
        return Decimal("0")
    return parsed


def parse_cost(value: Any) -> Cost:
    """Normalize a cost input (number, numeric string or sentinel) into a Cost."""
    if isinstance(value, Cost):
        return value
    if value is None:
        return Cost.unknown()
    if isinstance(value, str):
        text = value.strip().lower()
        if not text or text == "unknown":
            return Cost.unknown()
        if text.startswith("free"):
            return Cost.free()
        if text.startswith("calculated"):
            return Cost.calculated()

    amount = to_decimal(value)
    if amount is None:
        return Cost.unknown()
    return Cost.known(amount)


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)
