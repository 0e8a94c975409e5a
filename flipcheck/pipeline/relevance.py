"""Relevance filtering for sold-listing comps.

Search engines return plenty of near misses: accessories for the product,
other product lines from the same brand, bundles, parts units and fakes.
Comps matching an exclusion pattern are dropped, the rest are scored by
token overlap with the item title, and controller searches are additionally
checked for product-family compatibility (a standard pad never prices an
Elite, and vice versa). ``drop_price_outliers`` then trims totals far away
from the median.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from statistics import median_high
from typing import Optional, Sequence

from flipcheck.models.comps import ComparableSale
from flipcheck.pipeline.categories import lookup_by_category

logger = logging.getLogger(__name__)

CONTROLLER_MIN_SCORE = 0.25
DEFAULT_MIN_SCORE = 0.35
MIN_KEPT = 3
FALLBACK_TOP_N = 5
MIN_PARTIAL_LENGTH = 3

STOPWORDS = frozenset({
    "the", "and", "for", "with", "new", "used", "like", "very", "good", "great",
    "excellent", "condition", "free", "shipping", "oem", "authentic", "genuine",
    "original", "brand", "sealed", "box", "in", "on", "at", "to", "of", "a", "an",
})

BUNDLE_RE = re.compile(
    r"\b(bundle|lot of \d+|lot|set of \d+|\d+\s*(?:pcs?|pieces?|items?)|bulk|wholesale|"
    r"collection of|pack of \d+)\b",
    re.IGNORECASE,
)

# Listings that are not a working, complete, genuine unit of anything.
UNIVERSAL_EXCLUSIONS: tuple[re.Pattern, ...] = (
    BUNDLE_RE,
    re.compile(r"\b(parts?|repair|for parts|broken|not working|needs work|non.?working|damaged|as.?is)\b", re.I),
    re.compile(r"\b(box only|papers only|certificate only|manual only)\b", re.I),
    re.compile(r"\b(display|dummy|replica|fake|counterfeit|knock.?off)\b", re.I),
    re.compile(r"\b(empty box|no watch|no item)\b", re.I),
)

# Keyed by substring of the normalized category name, first match wins.
CATEGORY_EXCLUSIONS: dict[str, tuple[re.Pattern, ...]] = {
    "watch": (
        re.compile(r"\b(band only|strap only|case only|dial only|movement only|bezel only|crown only)\b", re.I),
        re.compile(r"\b(replacement band|spare strap|extra band)\b", re.I),
        re.compile(r"\b(charger|charging cable|dock|stand)\b", re.I),
        re.compile(r"\b(screen protector|tempered glass|film)\b", re.I),
    ),
    "shoe": (
        re.compile(r"\b(insole|sole only|laces only|box only)\b", re.I),
        re.compile(r"\b(cleaning kit|shoe tree|shoe horn)\b", re.I),
        re.compile(r"\b(left shoe only|right shoe only|single shoe)\b", re.I),
        re.compile(r"\b(display|sample|factory second|defect)\b", re.I),
    ),
    "cards": (
        re.compile(r"\b(empty binder|binder only|sleeve|top loader|case)\b", re.I),
        re.compile(r"\b(repack|mystery pack|grab bag)\b", re.I),
        re.compile(r"\b(damaged|creased|corner ding|whitening)\b", re.I),
        re.compile(r"\b(common|bulk commons|base lot)\b", re.I),
    ),
    "collectible": (
        re.compile(r"\b(box only|no figure|empty box|damaged box)\b", re.I),
        re.compile(r"\b(loose|out of box|oob|no packaging)\b", re.I),
        re.compile(r"\b(custom|repaint|kitbash|bootleg)\b", re.I),
    ),
    "electronics": (
        re.compile(r"\b(charger only|cable only|adapter only|power supply)\b", re.I),
        re.compile(r"\b(case|cover|screen protector|film)\b", re.I),
        re.compile(r"\b(for parts|not working|broken screen|cracked)\b", re.I),
        re.compile(r"\b(locked|icloud locked|blacklisted|bad esn)\b", re.I),
    ),
}

# Price sanity bounds relative to the median total.
MAX_PRICE_MULTIPLIER = Decimal("5")
MIN_PRICE_MULTIPLIER = Decimal("0.1")

# Applied in order, before punctuation is stripped.
_VARIANT_PATTERNS = (
    (re.compile(r"x\s*[|/]\s*s"), "x s"),
    (re.compile(r"series\s*x\s*s\b"), "series x s"),
    (re.compile(r"series\s*xs\b"), "series x s"),
    (re.compile(r"series\s*2"), "series2"),
    (re.compile(r"elite\s*2"), "elite2"),
)
_PUNCTUATION_RE = re.compile(r"[|\\/\-_,.:;!?'\"()\[\]{}]")
_WHITESPACE_RE = re.compile(r"\s+")


class ControllerFamily(str, Enum):
    XBOX_STANDARD = "xbox_standard"
    XBOX_ELITE = "xbox_elite"
    PS_STANDARD = "ps_standard"
    PS_EDGE = "ps_edge"
    THIRD_PARTY_PREMIUM = "third_party_premium"
    NINTENDO = "nintendo"
    GENERIC = "generic"


@dataclass(frozen=True)
class FamilyRule:
    """
    Title pattern for one controller family.

    ``require`` is a list of clauses; every clause needs at least one of its
    terms in the title. Any ``exclude`` term disqualifies the title. Terms
    are substrings of the space-padded normalized title, so a term written
    with surrounding spaces only matches a whole word.
    """

    family: ControllerFamily
    require: tuple[tuple[str, ...], ...]
    exclude: tuple[str, ...] = ()

    def matches(self, normalized: str) -> bool:
        padded = f" {normalized} "
        if any(term in padded for term in self.exclude):
            return False
        return all(any(term in padded for term in clause) for clause in self.require)


# Most specific first; the first matching rule wins.
FAMILY_RULES: tuple[FamilyRule, ...] = (
    FamilyRule(ControllerFamily.PS_EDGE, require=(("dualsense",), ("edge",))),
    FamilyRule(ControllerFamily.XBOX_ELITE, require=(("xbox", "microsoft"), ("elite", "series2"))),
    FamilyRule(ControllerFamily.THIRD_PARTY_PREMIUM, require=(("victrix", "bfg", "scuf", "razer", "pdp"),)),
    FamilyRule(
        ControllerFamily.PS_STANDARD,
        require=(("dualsense", "ps5", "playstation"), ("dualsense", "controller")),
        exclude=("edge", "scuf", "razer", " pro "),
    ),
    FamilyRule(
        ControllerFamily.XBOX_STANDARD,
        require=(("xbox", "series x", "series s"), ("controller", "wireless", "gamepad")),
        exclude=("elite", "series2", "victrix", "bfg", "scuf", "razer", "pdp", "pro controller"),
    ),
    FamilyRule(ControllerFamily.NINTENDO, require=(("nintendo", "switch", "joy con", "joycon"),)),
    FamilyRule(ControllerFamily.GENERIC, require=(("controller",),)),
)

FAMILY_COMPATIBILITY: dict[ControllerFamily, frozenset[ControllerFamily]] = {
    ControllerFamily.XBOX_STANDARD: frozenset({ControllerFamily.XBOX_STANDARD, ControllerFamily.GENERIC}),
    ControllerFamily.XBOX_ELITE: frozenset({ControllerFamily.XBOX_ELITE}),
    ControllerFamily.PS_STANDARD: frozenset({ControllerFamily.PS_STANDARD, ControllerFamily.GENERIC}),
    ControllerFamily.PS_EDGE: frozenset({ControllerFamily.PS_EDGE}),
    ControllerFamily.THIRD_PARTY_PREMIUM: frozenset({ControllerFamily.THIRD_PARTY_PREMIUM}),
    ControllerFamily.NINTENDO: frozenset({ControllerFamily.NINTENDO, ControllerFamily.GENERIC}),
    # An unbranded query says nothing about the product line.
    ControllerFamily.GENERIC: frozenset(ControllerFamily),
}

CONTROLLER_TERMS = ("controller", "dualsense", "joy con", "joycon", "gamepad")


def normalize_title(title: str) -> str:
    text = (title or "").lower()
    for pattern, replacement in _VARIANT_PATTERNS:
        text = pattern.sub(replacement, text)
    text = _PUNCTUATION_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def extract_tokens(title: str) -> list[str]:
    """Key product tokens: no stopwords, no single letters (single digits are kept)."""
    return [
        t for t in normalize_title(title).split(" ")
        if (len(t) > 1 or t.isdigit()) and t not in STOPWORDS
    ]


def _partial_match(a: str, b: str) -> bool:
    if len(a) < MIN_PARTIAL_LENGTH or len(b) < MIN_PARTIAL_LENGTH:
        return False
    return a in b or b in a


def score_relevance(query_tokens: Sequence[str], comp_tokens: Sequence[str]) -> float:
    """Exact token matches count 1, partial (substring) matches 0.5, over the query token count."""
    if not query_tokens:
        return 0.0

    comp_set = set(comp_tokens)
    score = 0.0
    for qt in query_tokens:
        if qt in comp_set:
            score += 1
        elif any(_partial_match(qt, ct) for ct in comp_tokens):
            score += 0.5
    return score / len(query_tokens)


def detect_controller_family(title: str) -> Optional[ControllerFamily]:
    normalized = normalize_title(title)
    for rule in FAMILY_RULES:
        if rule.matches(normalized):
            return rule.family
    return None


def families_compatible(query_family: ControllerFamily, comp_family: Optional[ControllerFamily]) -> bool:
    if comp_family is None:
        return False
    return comp_family in FAMILY_COMPATIBILITY[query_family]


def is_controller_query(title: str) -> bool:
    normalized = normalize_title(title)
    if any(term in normalized for term in CONTROLLER_TERMS):
        return True
    # "wireless" alone is a headset as often as a pad
    return "wireless" in normalized and ("xbox" in normalized or "playstation" in normalized)


def is_bundle(title: str) -> bool:
    return bool(BUNDLE_RE.search(title or ""))


def exclusion_patterns(title: str, category: Optional[str] = None) -> list[re.Pattern]:
    """
    Universal plus category exclusion patterns that apply to an item.

    A pattern the item title itself matches is left out, so a search for a
    bundle or a parts unit is priced against bundles or parts units.
    """
    patterns = UNIVERSAL_EXCLUSIONS + lookup_by_category(CATEGORY_EXCLUSIONS, category, ())
    return [p for p in patterns if not p.search(title or "")]


def excluded_by(title: str, patterns: Sequence[re.Pattern]) -> Optional[str]:
    """The matched text of the first exclusion pattern hit by a comp title."""
    for pattern in patterns:
        match = pattern.search(title or "")
        if match:
            return match.group(0)
    return None


def drop_price_outliers(comps: Sequence[ComparableSale]) -> list[ComparableSale]:
    """
    Remove comps priced above 5x or below 0.1x the median total.

    Repeats until nothing more is removed, using the upper median so the
    reference is always an observed price. Sets of fewer than three are
    returned as is, and a pass that would leave fewer than three comps is
    not applied.
    """
    kept = list(comps)
    while len(kept) >= MIN_KEPT:
        reference = median_high([c.total_price for c in kept])
        if reference <= 0:
            break
        high = reference * MAX_PRICE_MULTIPLIER
        low = reference * MIN_PRICE_MULTIPLIER
        trimmed = [c for c in kept if low <= c.total_price <= high]
        if len(trimmed) == len(kept) or len(trimmed) < MIN_KEPT:
            break
        logger.debug(f"Price sanity: dropped {len(kept) - len(trimmed)} comps around median {reference}")
        kept = trimmed
    return kept


def filter_relevant(
    comps: Sequence[ComparableSale],
    query: str,
    item_title: Optional[str] = None,
    category: Optional[str] = None,
) -> list[ComparableSale]:
    """
    Drop comps that describe a different product than the one being priced.

    Args:
        comps: Candidate comps, in source order
        query: Search text
        item_title: Fuller item title, preferred over the query when given
        category: Selects the category exclusion table

    Returns:
        Surviving comps in their original order. When fewer than three
        survive out of three or more candidates, the five best-scoring
        candidates are returned instead, highest score first. Comps hit by
        an exclusion pattern are never returned.
    """
    title = item_title or query
    query_tokens = extract_tokens(title)

    patterns = exclusion_patterns(title, category)
    candidates = []
    for comp in comps:
        reason = excluded_by(comp.title, patterns)
        if reason is None:
            candidates.append(comp)
        else:
            logger.debug(f"Excluded \"{comp.title[:50]}\": {reason}")

    query_family = detect_controller_family(title) if is_controller_query(title) else None

    scored = []
    kept = []
    for comp in candidates:
        score = score_relevance(query_tokens, extract_tokens(comp.title))
        scored.append((score, comp))

        if query_family is not None:
            if not families_compatible(query_family, detect_controller_family(comp.title)):
                continue
            min_score = CONTROLLER_MIN_SCORE
        else:
            min_score = DEFAULT_MIN_SCORE

        if score >= min_score:
            kept.append(comp)

    logger.debug(
        f"Relevance filter: \"{title[:50]}\" family={query_family.value if query_family else None} "
        f"kept {len(kept)}/{len(scored)} of {len(comps)}"
    )

    if len(kept) < MIN_KEPT and len(scored) >= MIN_KEPT:
        ranked = sorted(scored, key=lambda pair: pair[0], reverse=True)
        return [comp for _, comp in ranked[:FALLBACK_TOP_N]]

    return kept
