"""PriceCharting API client for curated catalog prices.

Covers video games and trading-card-game singles. Prices come back in
pennies. Docs: https://www.pricecharting.com/api-documentation
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from flipcheck.api.base import SourceAdapter, SourceResult
from flipcheck.models.comps import ComparableSale, CompsSource, SearchQuery
from flipcheck.money import Cost, to_decimal
from flipcheck.pipeline.categories import is_curated_eligible

logger = logging.getLogger(__name__)

# (response field, condition, title suffix, date label)
PRICE_FIELDS = (
    ("loose-price", "Used", "Loose", "PriceCharting (loose)"),
    ("cib-price", "Used - Complete", "Complete in Box", "PriceCharting (CIB)"),
    ("new-price", "New", "Sealed", "PriceCharting (new/sealed)"),
    ("graded-price", "Graded", "Graded", "PriceCharting (graded)"),
)


def pennies_to_dollars(value: Any) -> Optional[Decimal]:
    pennies = to_decimal(value)
    if pennies is None or pennies <= 0:
        return None
    return pennies / 100


class PriceChartingAPI(SourceAdapter):
    """Curated price database. Highest priority, exact catalog matches only."""

    name = "pricecharting"
    source = CompsSource.CURATED_DATABASE

    def is_configured(self) -> bool:
        return bool(self.settings.pricecharting_api_key)

    def is_eligible(self, query: SearchQuery, category: Optional[str]) -> bool:
        return is_curated_eligible(query.title_text)

    async def _search(self, query: SearchQuery, category: Optional[str]) -> SourceResult:
        params = {"t": self.settings.pricecharting_api_key, "q": query.text}
        url = f"{self.settings.pricecharting_base_url}/product"

        logger.info(f"PriceCharting: searching for \"{query.text}\"")
        async with self.client() as client:
            response = await self.get(client, url, params=params)

        if response.status_code != 200:
            return self._http_unavailable(response)

        data = response.json()
        if not isinstance(data, dict):
            return self._bad_response(f"body is {type(data).__name__}")
        if data.get("status") == "error":
            logger.warning(f"PriceCharting: {data.get('message') or 'API error'}")
            return SourceResult.unavailable(self.source, "bad_response")

        comps = self.parse_product(data, query.text)
        logger.info(f"PriceCharting: {len(comps)} price points for \"{data.get('product-name') or query.text}\"")
        return SourceResult(source=self.source, comps=comps)

    def parse_product(self, data: dict, fallback_name: str) -> list[ComparableSale]:
        """Turn one catalog product into up to four comps, one per price tier."""
        product_name = str(data.get("product-name") or fallback_name)
        comps = []
        for field, condition, suffix, label in PRICE_FIELDS:
            price = pennies_to_dollars(data.get(field))
            if price is None:
                continue
            comps.append(
                ComparableSale(
                    price=price,
                    shipping=Cost.free(),
                    condition=condition,
                    date_sold=label,
                    title=f"{product_name} ({suffix})",
                )
            )
        return comps
