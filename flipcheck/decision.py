"""Margin decision engine.

Turns an expected sale price and the buyer's costs into a flip/skip verdict
with a step-by-step trace. Pure: the same input always gives the same
decision, and bad input produces a skip with an explanation, never an
exception.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from flipcheck.models.comps import Confidence
from flipcheck.money import parse_cost, quantize, to_decimal

PLATFORM_FEE_RATE = Decimal("0.13")
OUTBOUND_SHIPPING = Decimal("0")
TARGET_MARGIN = Decimal("0.25")

FLIP_LABEL = "Flip IT!"
SKIP_LABEL = "Skip IT"

HUNDRED = Decimal("100")


class Verdict(str, Enum):
    FLIP = "flip"
    SKIP = "skip"


class SkipReason(str, Enum):
    NO_MARKET_DATA = "no_market_data"
    INVALID_BUY_PRICE = "invalid_buy_price"
    NEGATIVE_PROFIT = "negative_profit"


class DecisionInput(BaseModel):
    """Buyer costs accept numbers, numeric strings or "Free"/"Unknown"/"Calculated"."""

    model_config = ConfigDict(frozen=True)

    buy_price: Decimal = Decimal("0")
    shipping_in: Decimal = Decimal("0")
    expected_sale_price: Optional[Decimal] = None
    platform_fee_rate: Decimal = PLATFORM_FEE_RATE
    outbound_shipping: Decimal = OUTBOUND_SHIPPING
    source_confidence: Optional[Confidence] = None

    @field_validator("buy_price", "shipping_in", "outbound_shipping", mode="before")
    @classmethod
    def _normalize_cost(cls, value: Any) -> Decimal:
        return parse_cost(value).value_or_zero()

    @field_validator("expected_sale_price", mode="before")
    @classmethod
    def _normalize_sale_price(cls, value: Any) -> Optional[Decimal]:
        return to_decimal(value)

    @field_validator("platform_fee_rate", mode="before")
    @classmethod
    def _normalize_fee_rate(cls, value: Any) -> Decimal:
        rate = to_decimal(value)
        if rate is None or rate < 0 or rate >= 1:
            return PLATFORM_FEE_RATE
        return rate


class MarginDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    verdict: Verdict
    label: str
    margin_percent: Decimal
    raw_margin_percent: Decimal
    confidence: int
    max_buy_price: Optional[Decimal] = None
    market_value: Optional[Decimal] = None
    net_proceeds: Decimal = Decimal("0")
    net_profit: Decimal = Decimal("0")
    platform_fees: Decimal = Decimal("0")
    margin_band: Optional[str] = None
    skip_reason: Optional[SkipReason] = None
    trace: list[str] = Field(default_factory=list)


def _money(value: Decimal) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(quantize(value))}"


def _base_confidence(margin_percent: Decimal, sale_price: Decimal) -> int:
    confidence = 50
    if sale_price > 0:
        confidence += 15

    distance = abs(margin_percent - TARGET_MARGIN * HUNDRED)
    if distance > 20:
        confidence += 25
    elif distance > 10:
        confidence += 15
    else:
        confidence += 5

    return min(95, max(25, confidence))


def decision_confidence(
    margin_percent: Decimal,
    sale_price: Optional[Decimal],
    source_confidence: Optional[Confidence],
) -> int:
    """
    0-100 trust score for a decision.

    Margins far from the target (clearly good or clearly bad) are trusted
    more than borderline ones; weaker comp sources knock points off.
    """
    if sale_price is None or sale_price <= 0:
        return 0

    base = _base_confidence(margin_percent, sale_price)
    if source_confidence == Confidence.MEDIUM:
        return max(25, base - 15)
    if source_confidence == Confidence.LOW:
        return max(25, base - 25)
    return base


def margin_band(margin_percent: Decimal, target_margin: Decimal = TARGET_MARGIN) -> str:
    """Describe a margin relative to the target margin."""
    ratio = margin_percent / (target_margin * HUNDRED)
    if ratio >= 2:
        return "Well above target"
    if ratio >= Decimal("1.4"):
        return "Above target margin"
    if ratio >= 1:
        return "Meets target margin"
    if ratio >= Decimal("0.6"):
        return "Below target margin"
    if ratio >= Decimal("0.2"):
        return "Minimal margin"
    return "Below minimum threshold"


def _skip(reason: SkipReason, trace: list[str], market_value: Optional[Decimal] = None) -> MarginDecision:
    return MarginDecision(
        verdict=Verdict.SKIP,
        label=SKIP_LABEL,
        margin_percent=Decimal("0"),
        raw_margin_percent=Decimal("0"),
        confidence=0,
        market_value=market_value,
        skip_reason=reason,
        trace=trace,
    )


def calculate_decision(data: DecisionInput) -> MarginDecision:
    """
    Compute the flip/skip decision.

    net proceeds = sale x (1 - fee rate) - outbound shipping
    net profit   = net proceeds - buy price - shipping in
    margin       = net profit / buy price x 100
    max buy      = (net proceeds - shipping in) / (1 + target margin)

    The verdict is flip exactly when net profit is positive. Max buy is the
    purchase price that would still leave the target margin on the buy price.
    """
    sale = data.expected_sale_price

    if sale is None or sale <= 0:
        return _skip(
            SkipReason.NO_MARKET_DATA,
            [
                "No valid expected sale price: no comparable sales found",
                "Cannot calculate profit without market data",
                f"Verdict: {SKIP_LABEL}",
            ],
        )

    if data.buy_price <= 0:
        return _skip(
            SkipReason.INVALID_BUY_PRICE,
            [
                f"Expected sale price: {_money(sale)}",
                "Buy price must be greater than $0 to calculate margin",
                f"Verdict: {SKIP_LABEL}",
            ],
            market_value=quantize(sale),
        )

    fees = sale * data.platform_fee_rate
    net_proceeds = sale - fees - data.outbound_shipping
    net_profit = net_proceeds - data.buy_price - data.shipping_in
    raw_margin = net_profit / data.buy_price * HUNDRED
    display_margin = min(HUNDRED, max(Decimal("0"), raw_margin))

    verdict = Verdict.FLIP if net_profit > 0 else Verdict.SKIP
    label = FLIP_LABEL if verdict == Verdict.FLIP else SKIP_LABEL
    max_buy = max(Decimal("0"), (net_proceeds - data.shipping_in) / (1 + TARGET_MARGIN))

    fee_percent = (data.platform_fee_rate * HUNDRED).normalize()
    trace = [
        f"Expected sale price: {_money(sale)}",
        f"Platform fees ({fee_percent:f}%): {_money(-fees)}",
        f"Shipping in: {_money(-data.shipping_in)}",
        f"Outbound shipping: {_money(-data.outbound_shipping)}",
        f"Net profit: {_money(net_profit)} on a {_money(data.buy_price)} buy",
        f"Margin: {quantize(raw_margin)}% of buy price",
        f"Verdict: {label} (net profit {'is positive' if verdict == Verdict.FLIP else 'is not positive'})",
        f"Max buy for {(TARGET_MARGIN * HUNDRED).normalize():f}% margin: {_money(max_buy)}",
    ]

    return MarginDecision(
        verdict=verdict,
        label=label,
        margin_percent=quantize(display_margin),
        raw_margin_percent=quantize(raw_margin),
        confidence=decision_confidence(raw_margin, sale, data.source_confidence),
        max_buy_price=quantize(max_buy),
        market_value=quantize(sale),
        net_proceeds=quantize(net_proceeds),
        net_profit=quantize(net_profit),
        platform_fees=quantize(fees),
        margin_band=margin_band(raw_margin),
        skip_reason=None if verdict == Verdict.FLIP else SkipReason.NEGATIVE_PROFIT,
        trace=trace,
    )
