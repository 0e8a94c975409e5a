"""Manual search links for when the pipeline has nothing to show."""

from typing import Optional
from urllib.parse import quote

from flipcheck.pipeline.categories import ebay_category_id

EBAY_SEARCH_URL = "https://www.ebay.com/sch/i.html"


def build_search_url(query: str, category: Optional[str] = None, sold_only: bool = True) -> str:
    """
    Build an eBay search URL the user can open to check comps by hand.

    Sold searches add the sold/completed filters and ``rt=nc``; results are
    sorted by most recently ended (``_sop=13``).
    """
    url = f"{EBAY_SEARCH_URL}?_nkw={quote(query, safe='')}"
    if sold_only:
        url += "&LH_Sold=1&LH_Complete=1&rt=nc"
    url += "&_sop=13"

    category_id = ebay_category_id(category)
    if category_id:
        url += f"&_sacat={category_id}"
    return url
