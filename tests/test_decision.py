from decimal import Decimal

import pytest

from flipcheck.decision import (
    FLIP_LABEL,
    SKIP_LABEL,
    DecisionInput,
    SkipReason,
    Verdict,
    calculate_decision,
    decision_confidence,
    margin_band,
)
from flipcheck.models.comps import Confidence


def test_profitable_flip():
    decision = calculate_decision(
        DecisionInput(buy_price=20, shipping_in=5, expected_sale_price=60, platform_fee_rate="0.13", outbound_shipping=0)
    )

    assert decision.verdict == Verdict.FLIP
    assert decision.label == FLIP_LABEL
    assert decision.platform_fees == Decimal("7.80")
    assert decision.net_proceeds == Decimal("52.20")
    assert decision.net_profit == Decimal("27.20")
    assert decision.raw_margin_percent == Decimal("136.00")
    assert decision.margin_percent == Decimal("100.00")
    assert decision.max_buy_price == Decimal("37.76")
    assert decision.market_value == Decimal("60.00")
    assert decision.confidence == 90
    assert decision.margin_band == "Well above target"
    assert decision.skip_reason is None


def test_trace_lists_each_step_in_order():
    decision = calculate_decision(DecisionInput(buy_price=20, shipping_in=5, expected_sale_price=60))

    assert decision.trace == [
        "Expected sale price: $60.00",
        "Platform fees (13%): -$7.80",
        "Shipping in: -$5.00",
        "Outbound shipping: $0.00",
        "Net profit: $27.20 on a $20.00 buy",
        "Margin: 136.00% of buy price",
        f"Verdict: {FLIP_LABEL} (net profit is positive)",
        "Max buy for 25% margin: $37.76",
    ]


def test_same_input_same_decision():
    data = DecisionInput(buy_price="12.50", shipping_in="Free", expected_sale_price="45", source_confidence="medium")

    assert calculate_decision(data) == calculate_decision(data)


def test_loss_is_a_skip():
    decision = calculate_decision(
        DecisionInput(buy_price=50, shipping_in=5, expected_sale_price=40, source_confidence=Confidence.LOW)
    )

    assert decision.verdict == Verdict.SKIP
    assert decision.label == SKIP_LABEL
    assert decision.skip_reason == SkipReason.NEGATIVE_PROFIT
    assert decision.net_profit == Decimal("-20.20")
    assert decision.raw_margin_percent == Decimal("-40.40")
    assert decision.margin_percent == Decimal("0.00")
    assert decision.confidence == 65
    assert "Net profit: -$20.20 on a $50.00 buy" in decision.trace


def test_break_even_is_a_skip():
    decision = calculate_decision(DecisionInput(buy_price=80, shipping_in=7, expected_sale_price=100))

    assert decision.net_profit == Decimal("0.00")
    assert decision.verdict == Verdict.SKIP


def test_missing_market_data_skips_with_zero_confidence():
    decision = calculate_decision(DecisionInput(buy_price=20, expected_sale_price=None))

    assert decision.verdict == Verdict.SKIP
    assert decision.skip_reason == SkipReason.NO_MARKET_DATA
    assert decision.confidence == 0
    assert decision.max_buy_price is None
    assert decision.trace[-1] == f"Verdict: {SKIP_LABEL}"


@pytest.mark.parametrize("sale", [0, -10, "n/a"])
def test_non_positive_sale_price_is_no_market_data(sale):
    decision = calculate_decision(DecisionInput(buy_price=20, expected_sale_price=sale))

    assert decision.skip_reason == SkipReason.NO_MARKET_DATA


@pytest.mark.parametrize("buy", [0, "Free", "Unknown", None])
def test_unusable_buy_price_is_a_skip(buy):
    decision = calculate_decision(DecisionInput(buy_price=buy, expected_sale_price=60))

    assert decision.skip_reason == SkipReason.INVALID_BUY_PRICE
    assert decision.market_value == Decimal("60.00")
    assert decision.confidence == 0


def test_cost_sentinels_count_as_zero():
    data = DecisionInput(buy_price="$20.00", shipping_in="Calculated", outbound_shipping="Unknown", expected_sale_price="$60")

    assert data.buy_price == Decimal("20.00")
    assert data.shipping_in == Decimal("0")
    assert data.outbound_shipping == Decimal("0")
    assert calculate_decision(data).net_profit == Decimal("32.20")


@pytest.mark.parametrize("rate", [1.5, -0.1, 1, "abc"])
def test_out_of_range_fee_rate_uses_default(rate):
    assert DecisionInput(platform_fee_rate=rate).platform_fee_rate == Decimal("0.13")


def test_custom_fee_rate():
    decision = calculate_decision(DecisionInput(buy_price=20, expected_sale_price=100, platform_fee_rate=0.1))

    assert decision.platform_fees == Decimal("10.00")
    assert "Platform fees (10%): -$10.00" in decision.trace


def test_max_buy_never_negative():
    decision = calculate_decision(DecisionInput(buy_price=1, shipping_in=10, expected_sale_price=3))

    assert decision.max_buy_price == Decimal("0.00")


def test_confidence_penalizes_weaker_sources():
    assert decision_confidence(Decimal("24"), Decimal("60"), None) == 70
    assert decision_confidence(Decimal("24"), Decimal("60"), Confidence.HIGH) == 70
    assert decision_confidence(Decimal("24"), Decimal("60"), Confidence.MEDIUM) == 55
    assert decision_confidence(Decimal("24"), Decimal("60"), Confidence.LOW) == 45
    assert decision_confidence(Decimal("40"), Decimal("60"), None) == 80
    assert decision_confidence(Decimal("40"), None, None) == 0


@pytest.mark.parametrize(
    "margin, band",
    [
        (Decimal("60"), "Well above target"),
        (Decimal("40"), "Above target margin"),
        (Decimal("25"), "Meets target margin"),
        (Decimal("18"), "Below target margin"),
        (Decimal("10"), "Minimal margin"),
        (Decimal("-5"), "Below minimum threshold"),
    ],
)
def test_margin_band(margin, band):
    assert margin_band(margin) == band
