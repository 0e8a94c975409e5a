"""Category detection and marketplace category ids."""

import logging
import re
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

OTHER = "Other"

# Display category -> eBay category id (used for search filters and links)
EBAY_CATEGORY_IDS: dict[str, str] = {
    "Trading Cards": "212",
    "Watches": "14324",
    "Men's Watches": "31387",
    "Women's Watches": "31388",
    "Electronics": "293",
    "Shoes": "93427",
    "Household": "11700",
    "Video Games": "139973",
    "Video Game Consoles": "139971",
    "Video Game Controllers": "117042",
    "Gaming": "139973",
    "Controllers": "117042",
    "Phones": "9355",
    "Cell Phones": "9355",
    "Smartphones": "9355",
    "Tablets": "171485",
    "Laptops": "175672",
    "Computers": "58058",
    "Cameras": "625",
    "Audio": "293",
    "Headphones": "112529",
    "Speakers": "14990",
    "Collectibles": "1",
    "Toys": "220",
    "Action Figures": "246",
    "Funko Pop": "246",
    "LEGO": "19006",
    "Clothing": "11450",
    "Apparel": "11450",
    "Handbags": "169291",
    "Jewelry": "281",
    "Tools": "631",
    "Home & Garden": "159907",
    "Sporting Goods": "888",
    "Musical Instruments": "619",
    OTHER: "",
}

GAMING_BRANDS = ("xbox", "playstation", "ps5", "ps4", "nintendo", "switch")
PHONE_KEYWORDS = ("iphone", "samsung galaxy", "pixel", "smartphone")
SHOE_KEYWORDS = ("shoe", "sneaker", "jordan", "nike", "yeezy", "dunk")
CARD_KEYWORDS = (
    "pokemon",
    "magic the gathering",
    "yugioh",
    "tcg",
    "topps",
    "panini",
    "baseball card",
    "football card",
    "basketball card",
    "marvel",
)
CAMERA_KEYWORDS = ("camera", "canon", "nikon", "sony")
TOOL_KEYWORDS = ("dewalt", "milwaukee", "makita", "drill", "saw")

ACCESSORY_RE = re.compile(
    r"\b(controller|headset|headphones|charging|dock|stand|cable|adapter|skin|case|grip|"
    r"thumbstick|joystick|gamepad|remote)\b",
    re.IGNORECASE,
)
SPORTS_CARD_RE = re.compile(
    r"\b(topps|panini|bowman|fleer|donruss|upper deck|prizm|select|optic|mosaic|score|"
    r"stadium club)\b",
    re.IGNORECASE,
)
TCG_RE = re.compile(r"\b(pokemon|magic the gathering|yugioh|mtg)\b", re.IGNORECASE)
VIDEO_GAME_RE = re.compile(
    r"\b(nintendo|playstation|ps1|ps2|ps3|ps4|ps5|psx|xbox|sega|genesis|dreamcast|saturn|"
    r"gamecube|wii|switch|n64|nes|snes|gameboy|game boy|gba|ds|3ds|atari|neo geo|"
    r"turbografx|pc engine|master system|game disc|game cartridge|cib|complete in box|"
    r"sealed game|retro game|video game|console game)\b",
    re.IGNORECASE,
)


def _has_any(text: str, keywords) -> bool:
    return any(k in text for k in keywords)


def detect_category(title: str) -> str:
    """
    Guess a display category from an item title using keyword rules.

    Returns an empty string when nothing matches.
    """
    t = (title or "").lower()

    if "controller" in t and _has_any(t, GAMING_BRANDS):
        return "Video Game Controllers"
    if _has_any(t, GAMING_BRANDS) or "gaming" in t:
        return "Video Games"

    if _has_any(t, PHONE_KEYWORDS):
        return "Cell Phones"

    if "apple watch" in t:
        return "Electronics"
    if "watch" in t:
        # "women" contains "men", so check it first
        if "women" in t:
            return "Women's Watches"
        if "men" in t:
            return "Men's Watches"
        return "Watches"

    if _has_any(t, SHOE_KEYWORDS):
        return "Shoes"

    if _has_any(t, CARD_KEYWORDS):
        return "Trading Cards"

    if "laptop" in t or "macbook" in t:
        return "Laptops"
    if "ipad" in t or "tablet" in t:
        return "Tablets"
    if _has_any(t, ("headphone", "airpod", "earbuds")):
        return "Headphones"
    if "speaker" in t or "soundbar" in t:
        return "Speakers"
    if _has_any(t, CAMERA_KEYWORDS):
        return "Cameras"

    if "lego" in t:
        return "LEGO"
    if "funko" in t or "pop!" in t or ("pop" in t and _has_any(t, ("vinyl", "figure", "#"))):
        return "Funko Pop"

    if _has_any(t, TOOL_KEYWORDS):
        return "Tools"

    return ""


def needs_detection(category: Optional[str]) -> bool:
    return not category or category == OTHER or category not in EBAY_CATEGORY_IDS


def effective_category(category: Optional[str], title: str) -> Optional[str]:
    """Use the caller's category when it is known, otherwise detect one from the title."""
    if not needs_detection(category):
        return category

    detected = detect_category(title)
    if detected:
        logger.info(f"Auto-detected category: {detected} from title")
        return detected
    return category or None


def ebay_category_id(category: Optional[str]) -> Optional[str]:
    if not category:
        return None
    return EBAY_CATEGORY_IDS.get(category) or None


def normalize_category(category: Optional[str]) -> str:
    return re.sub(r"[^a-z]", "", (category or "").lower())


def lookup_by_category(table: Mapping[str, Any], category: Optional[str], default: Any) -> Any:
    """First table value whose key is contained in the normalized category name."""
    normalized = normalize_category(category)
    if not normalized:
        return default
    for key, value in table.items():
        if key in normalized:
            return value
    return default


def is_gaming_accessory(text: str) -> bool:
    return bool(ACCESSORY_RE.search(text or ""))


def is_sports_card(text: str) -> bool:
    return bool(SPORTS_CARD_RE.search(text or ""))


def is_trading_card_game(text: str) -> bool:
    return bool(TCG_RE.search(text or ""))


def is_likely_video_game(text: str) -> bool:
    return bool(VIDEO_GAME_RE.search(text or ""))


def is_curated_eligible(text: str) -> bool:
    """
    Whether the curated price catalog should be consulted for this item.

    The catalog covers packaged video games and trading-card-game singles.
    Accessories and sports cards return unrelated products there, and an
    accessory keyword wins over a TCG keyword ("pokemon switch case").
    """
    if is_gaming_accessory(text) or is_sports_card(text):
        return False
    return is_trading_card_game(text) or is_likely_video_game(text)
