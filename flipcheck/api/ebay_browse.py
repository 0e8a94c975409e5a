"""eBay Browse API client for active listings.

Last resort when no sold data exists. Asking prices overstate what items
actually sell for, so the aggregator discounts these comps.
"""

import logging
from typing import Optional

from flipcheck.api.base import SourceAdapter, SourceResult, as_list
from flipcheck.api.ebay_auth import EbayAuth
from flipcheck.models.comps import ACTIVE_LISTING, ComparableSale, CompsSource, SearchQuery
from flipcheck.money import Cost, parse_cost, parse_price
from flipcheck.pipeline.categories import ebay_category_id

logger = logging.getLogger(__name__)

CONDITION_FILTERS = {"new": "NEW", "used": "USED"}


class EbayBrowseAPI(SourceAdapter):
    """Client for eBay Browse API to fetch active Buy It Now listings."""

    name = "ebay_browse"
    source = CompsSource.ACTIVE_LISTING_FALLBACK

    def __init__(self, *args, auth: Optional[EbayAuth] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.auth = auth or EbayAuth(
            settings=self.settings,
            retry=self.retry,
            rate_limiter=self.rate_limiter,
            throttle_name=self.name,
            transport=self._transport,
        )

    @property
    def base_url(self) -> str:
        return f"{self.settings.ebay_api_base_url}/buy/browse/v1"

    def is_configured(self) -> bool:
        return self.auth.is_configured

    def build_params(self, query: SearchQuery, category: Optional[str]) -> dict:
        filters = ["buyingOptions:{FIXED_PRICE}"]
        condition = CONDITION_FILTERS.get((query.condition or "").lower())
        if condition:
            filters.append(f"conditions:{{{condition}}}")
        if query.min_price is not None or query.max_price is not None:
            low = "" if query.min_price is None else str(query.min_price)
            high = "" if query.max_price is None else str(query.max_price)
            filters.append(f"price:[{low}..{high}],priceCurrency:USD")

        params = {
            "q": query.text,
            "filter": ",".join(filters),
            "sort": "price",
            "limit": min(query.limit, 200),
        }
        category_id = ebay_category_id(category)
        if category_id:
            params["category_ids"] = category_id
        return params

    async def _search(self, query: SearchQuery, category: Optional[str]) -> SourceResult:
        access_token = await self.auth.get_client_credentials_token()
        if not access_token:
            return SourceResult.unavailable(self.source, "not_configured")

        headers = {
            "Authorization": f"Bearer {access_token}",
            "X-EBAY-C-MARKETPLACE-ID": self.settings.ebay_marketplace_id,
            "Accept": "application/json",
        }

        logger.info(f"Browse API: fetching active listings for \"{query.text}\"")
        async with self.client() as client:
            response = await self.get(
                client,
                f"{self.base_url}/item_summary/search",
                params=self.build_params(query, category),
                headers=headers,
            )

        if response.status_code != 200:
            return self._http_unavailable(response)

        data = response.json()
        if not isinstance(data, dict):
            return self._bad_response(f"body is {type(data).__name__}")

        comps = self.parse_listings(data)
        logger.info(f"Browse API: {len(comps)} active listings")
        return SourceResult(source=self.source, comps=comps)

    def parse_listings(self, api_response: dict) -> list[ComparableSale]:
        """Parse a Browse API response into active-listing comps."""
        listings = []
        for item in as_list(api_response.get("itemSummaries")):
            if not isinstance(item, dict):
                continue
            listing = self._parse_single_listing(item)
            if listing is not None:
                listings.append(listing)
        return listings

    def _parse_single_listing(self, item: dict) -> Optional[ComparableSale]:
        price_node = item.get("price")
        price = parse_price(price_node.get("value") if isinstance(price_node, dict) else price_node)
        if price <= 0:
            return None

        # Shipping cost (best-effort)
        shipping = Cost.unknown()
        shipping_options = as_list(item.get("shippingOptions"))
        if shipping_options and isinstance(shipping_options[0], dict):
            ship_cost = shipping_options[0].get("shippingCost")
            if isinstance(ship_cost, dict):
                shipping = parse_cost(ship_cost.get("value"))

        image_url = None
        for node in [item.get("image")] + as_list(item.get("thumbnailImages")):
            if isinstance(node, dict) and node.get("imageUrl"):
                image_url = node["imageUrl"]
                break

        return ComparableSale(
            price=price,
            shipping=shipping,
            condition=str(item.get("condition") or "Not specified"),
            date_sold=ACTIVE_LISTING,
            title=str(item.get("title") or ""),
            image_url=str(image_url) if image_url else None,
        )
