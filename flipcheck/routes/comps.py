"""Comps, decision and cache monitoring routes."""

import logging
from decimal import Decimal
from typing import Optional, Union

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from flipcheck.decision import DecisionInput, MarginDecision, calculate_decision
from flipcheck.errors import AppError, ErrorCode
from flipcheck.models.comps import AggregatedCompsResult, SearchQuery
from flipcheck.pipeline.aggregator import CompsAggregator
from flipcheck.pipeline.cache import CacheLayer
from flipcheck.pipeline.conditions import price_for_condition
from flipcheck.pipeline.links import build_search_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

CostValue = Union[float, str, None]

CONDITIONS = ("new", "used")


def get_aggregator(request: Request) -> CompsAggregator:
    return request.app.state.aggregator


def get_cache(request: Request) -> CacheLayer:
    return request.app.state.cache


class CompsRequest(BaseModel):
    """A comps lookup."""

    query: str
    category: Optional[str] = None
    min_price: Optional[Decimal] = Field(default=None, ge=0)
    max_price: Optional[Decimal] = Field(default=None, ge=0)
    limit: int = Field(default=30, ge=1, le=100)
    condition: Optional[str] = None
    item_title: Optional[str] = None

    def to_search_query(self) -> SearchQuery:
        text = self.query.strip()
        if not text:
            raise AppError(ErrorCode.INVALID_INPUT, "query must not be empty")

        condition = self.condition.strip().lower() if self.condition else None
        if condition and condition not in CONDITIONS:
            raise AppError(ErrorCode.INVALID_INPUT, f"condition must be one of {', '.join(CONDITIONS)}")

        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise AppError(ErrorCode.INVALID_INPUT, "min_price is greater than max_price")

        return SearchQuery(
            text=text,
            category=self.category,
            min_price=self.min_price,
            max_price=self.max_price,
            limit=self.limit,
            condition=condition,
            item_title=self.item_title,
        )


class EvaluateRequest(CompsRequest):
    """A comps lookup plus the buyer's costs."""

    buy_price: CostValue = 0
    shipping_in: CostValue = 0
    item_condition: Optional[str] = None
    platform_fee_rate: CostValue = None
    outbound_shipping: CostValue = None


class EvaluateResponse(BaseModel):
    comps: AggregatedCompsResult
    expected_sale_price: Optional[Decimal] = None
    decision: MarginDecision


@router.post("/comps", response_model=AggregatedCompsResult)
async def resolve_comps(
    body: CompsRequest,
    aggregator: CompsAggregator = Depends(get_aggregator),
):
    """Resolve sold comps for an item."""
    return await aggregator.resolve(body.to_search_query())


@router.post("/decision", response_model=MarginDecision)
async def decide(body: DecisionInput):
    """Flip/skip decision from explicit inputs."""
    return calculate_decision(body)


@router.post("/evaluate", response_model=EvaluateResponse)
async def evaluate(
    body: EvaluateRequest,
    aggregator: CompsAggregator = Depends(get_aggregator),
):
    """
    Resolve comps, price the item for its condition and decide.

    An item without ``item_condition`` is priced as used. New-like and used
    sales are never blended into one expected sale price.
    """
    result = await aggregator.resolve(body.to_search_query())
    sale_price = price_for_condition(result.buckets, body.item_condition)

    inputs = {
        "buy_price": body.buy_price,
        "shipping_in": body.shipping_in,
        "expected_sale_price": sale_price,
        "source_confidence": result.confidence if result.has_data else None,
    }
    if body.platform_fee_rate is not None:
        inputs["platform_fee_rate"] = body.platform_fee_rate
    if body.outbound_shipping is not None:
        inputs["outbound_shipping"] = body.outbound_shipping

    decision = calculate_decision(DecisionInput(**inputs))
    logger.info(f"Evaluated \"{body.query}\": {decision.label} at {sale_price} ({result.source.value})")

    return EvaluateResponse(comps=result, expected_sale_price=sale_price, decision=decision)


@router.get("/cache/stats")
async def cache_stats(
    cache: CacheLayer = Depends(get_cache),
    aggregator: CompsAggregator = Depends(get_aggregator),
):
    """Cache tiers and outbound call metrics."""
    return {
        "cache": cache.stats(),
        "sources": aggregator.metrics.snapshot(),
    }


@router.get("/search-url")
async def search_url(query: str, category: Optional[str] = None, sold_only: bool = True):
    """Manual eBay search link."""
    if not query.strip():
        raise AppError(ErrorCode.INVALID_INPUT, "query must not be empty")
    return {"url": build_search_url(query.strip(), category, sold_only)}
