"""eBay Finding API client for sold/completed item comps.

Uses `findCompletedItems` to get sold market prices at no cost.
Docs: https://developer.ebay.com/devzone/finding/callref/findCompletedItems.html
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from flipcheck.api.base import SourceAdapter, SourceResult, as_list, first, first_dict
from flipcheck.models.comps import ComparableSale, CompsSource, SearchQuery
from flipcheck.money import Cost, parse_cost, parse_price
from flipcheck.pipeline.categories import ebay_category_id

logger = logging.getLogger(__name__)

SOLD_STATE = "EndedWithSales"

CONDITION_FILTERS = {"new": "New", "used": "Used"}


class EbayFindingSoldAPI(SourceAdapter):
    """Free sold-listings search."""

    name = "ebay_finding"
    source = CompsSource.FREE_SEARCH

    def is_configured(self) -> bool:
        return bool(self.settings.ebay_app_id)

    def build_params(self, query: SearchQuery, category: Optional[str]) -> dict[str, Any]:
        # Finding API uses name/value itemFilter pairs with a running index.
        params: dict[str, Any] = {
            "OPERATION-NAME": "findCompletedItems",
            "SERVICE-VERSION": "1.13.0",
            "SECURITY-APPNAME": self.settings.ebay_app_id,
            "RESPONSE-DATA-FORMAT": "JSON",
            "REST-PAYLOAD": "",
            "keywords": query.text,
            "paginationInput.entriesPerPage": min(int(query.limit), 100),
            "paginationInput.pageNumber": 1,
            "sortOrder": "EndTimeSoonest",
            "itemFilter(0).name": "SoldItemsOnly",
            "itemFilter(0).value": "true",
        }

        category_id = ebay_category_id(category)
        if category_id:
            params["categoryId"] = category_id

        filters = []
        if query.min_price is not None:
            filters.append(("MinPrice", str(query.min_price)))
        if query.max_price is not None:
            filters.append(("MaxPrice", str(query.max_price)))
        condition = CONDITION_FILTERS.get((query.condition or "").lower())
        if condition:
            filters.append(("Condition", condition))

        for index, (name, value) in enumerate(filters, start=1):
            params[f"itemFilter({index}).name"] = name
            params[f"itemFilter({index}).value"] = value

        return params

    async def _search(self, query: SearchQuery, category: Optional[str]) -> SourceResult:
        params = self.build_params(query, category)

        logger.info(f"Finding API: fetching sold items for \"{query.text}\" (limit: {query.limit})")
        async with self.client() as client:
            response = await self.get(
                client,
                self.settings.ebay_finding_url,
                params=params,
                headers={"Accept": "application/json"},
            )

        if response.status_code != 200:
            return self._http_unavailable(response)

        data = response.json()
        if not isinstance(data, dict):
            return self._bad_response(f"body is {type(data).__name__}")

        search_result = first_dict(first_dict(data.get("findCompletedItemsResponse")).get("searchResult"))
        items = as_list(search_result.get("item"))

        comps: list[ComparableSale] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            comp = self._parse_item(item)
            if comp is not None:
                comps.append(comp)

        logger.info(f"Finding API: parsed {len(comps)} sold items out of {len(items)}")
        return SourceResult(source=self.source, comps=comps)

    def _parse_item(self, item: dict[str, Any]) -> Optional[ComparableSale]:
        selling_status = first_dict(item.get("sellingStatus"))
        # Completed listings include unsold ones; keep only actual sales.
        if first(selling_status.get("sellingState")) != SOLD_STATE:
            return None

        price = parse_price(first_dict(selling_status.get("currentPrice")).get("__value__"))

        shipping_info = first_dict(item.get("shippingInfo"))
        if first(shipping_info.get("shippingType")) == "FreePickup":
            shipping = Cost.free()
        else:
            shipping = parse_cost(first_dict(shipping_info.get("shippingServiceCost")).get("__value__"))

        condition = first(first_dict(item.get("condition")).get("conditionDisplayName"), "Unknown")

        return ComparableSale(
            price=price,
            shipping=shipping,
            condition=str(condition or "Unknown"),
            date_sold=self._format_end_time(first(first_dict(item.get("listingInfo")).get("endTime"))),
            title=str(first(item.get("title"), "") or "").strip(),
            image_url=str(first(item.get("galleryURL")) or "") or None,
        )

    def _format_end_time(self, value: Optional[str]) -> str:
        if not value:
            return "Unknown"
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date().isoformat()
        except (ValueError, TypeError):
            return "Unknown"
