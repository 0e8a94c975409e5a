"""SerpApi eBay engine client for sold items.

Paid fallback for sold comps when the free search comes up short. Calls are
counted against a monthly quota. Docs: https://serpapi.com/ebay-search-api
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from flipcheck.api.base import SourceAdapter, SourceResult, as_list
from flipcheck.models.comps import ComparableSale, CompsSource, SearchQuery
from flipcheck.money import Cost, parse_cost, parse_price

logger = logging.getLogger(__name__)


def _current_month() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m")


class MonthlyQuota:
    """Counts paid HTTP calls per calendar month. Every attempt is billed, retries included."""

    def __init__(self, limit: int, month: Callable[[], str] = _current_month):
        self.limit = limit
        self._month = month
        self._period = month()
        self.used = 0

    def _roll(self) -> None:
        period = self._month()
        if period != self._period:
            self._period = period
            self.used = 0

    @property
    def remaining(self) -> int:
        self._roll()
        return max(self.limit - self.used, 0)

    def has_capacity(self) -> bool:
        return self.remaining > 0

    def charge(self) -> None:
        self._roll()
        self.used += 1


def normalize_condition(raw: Optional[str]) -> str:
    if not raw:
        return "Used"
    lowered = raw.lower()
    if "new" in lowered:
        return "New"
    if "used" in lowered or "pre-owned" in lowered or "open box" in lowered:
        return "Used"
    return raw


class SerpApiSoldAPI(SourceAdapter):
    """Paid sold-listings search."""

    name = "serpapi"
    source = CompsSource.PAID_SEARCH

    def __init__(self, *args, quota: Optional[MonthlyQuota] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.quota = quota or MonthlyQuota(self.settings.serpapi_monthly_quota)

    def is_configured(self) -> bool:
        return bool(self.settings.serpapi_api_key)

    def build_params(self, query: SearchQuery) -> dict[str, Any]:
        params: dict[str, Any] = {
            "engine": "ebay",
            "_nkw": query.text,
            "LH_Sold": "1",
            "LH_Complete": "1",
            "ebay_domain": "ebay.com",
            "api_key": self.settings.serpapi_api_key,
        }
        if query.min_price is not None:
            params["_udlo"] = str(query.min_price)
        if query.max_price is not None:
            params["_udhi"] = str(query.max_price)
        return params

    async def _search(self, query: SearchQuery, category: Optional[str]) -> SourceResult:
        if not self.quota.has_capacity():
            logger.warning(f"SerpApi: monthly quota of {self.quota.limit} calls exhausted")
            return SourceResult.unavailable(self.source, "quota_exhausted")

        logger.info(f"SerpApi: fetching sold items for \"{query.text}\" ({self.quota.remaining} calls left)")
        async with self.client() as client:
            response = await self.get(
                client,
                self.settings.serpapi_base_url,
                params=self.build_params(query),
                on_attempt=self.quota.charge,
            )

        if response.status_code != 200:
            return self._http_unavailable(response)

        data = response.json()
        if not isinstance(data, dict):
            return self._bad_response(f"body is {type(data).__name__}")
        if data.get("error"):
            logger.warning(f"SerpApi: {data['error']}")
            return SourceResult.unavailable(self.source, "bad_response")

        wanted = (query.condition or "").lower()
        comps: list[ComparableSale] = []
        for item in as_list(data.get("organic_results")):
            if not isinstance(item, dict):
                continue
            comp = self._parse_item(item)
            if comp is None:
                continue
            if wanted in ("new", "used") and comp.condition.lower() != wanted:
                continue
            comps.append(comp)
            if len(comps) >= query.limit:
                break

        logger.info(f"SerpApi: {len(comps)} sold comps")
        return SourceResult(source=self.source, comps=comps)

    def _parse_item(self, item: dict[str, Any]) -> Optional[ComparableSale]:
        price_node = item.get("price")
        if isinstance(price_node, dict):
            price = parse_price(price_node.get("extracted", price_node.get("raw")))
        else:
            price = parse_price(price_node)
        if price <= 0:
            return None

        shipping_node = item.get("shipping")
        if isinstance(shipping_node, dict):
            shipping = parse_cost(shipping_node.get("extracted", shipping_node.get("raw")))
        elif isinstance(shipping_node, str):
            shipping = parse_cost(shipping_node)
        else:
            shipping = Cost.free()

        date_sold = item.get("sold_date") or item.get("date_sold") or "Recently"

        return ComparableSale(
            price=price,
            shipping=shipping,
            condition=normalize_condition(str(item.get("condition") or "")),
            date_sold=str(date_sold),
            title=str(item.get("title") or ""),
            image_url=item.get("thumbnail") if isinstance(item.get("thumbnail"), str) else None,
        )
