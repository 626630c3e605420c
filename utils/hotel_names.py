"""
Hotel name normalization and fuzzy matching.

Search results from Google Places and web search rarely repeat a hotel's
name verbatim ("Hotel Nia, Autograph Collection" vs "Hotel Nia Menlo Park").
These helpers normalize names, compare them word-by-word and refuse matches
whose brands belong to different hotel families.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import List, Optional


_COLLECTION_SUFFIXES = [
    r",?\s*(autograph collection|a tribute portfolio hotel|tribute portfolio hotel|tribute portfolio)",
    r",?\s*(luxury collection|curio collection|tapestry collection|unbound collection|vignette collection)",
    r",?\s*(joie de vivre|destination|regent|six senses|lxr hotels?|canopy|signia)",
    r",?\s*by\s+(marriott|hilton|hyatt|ihg|wyndham|accor|choice|best western|radisson|sonesta)",
]

_BRAND_PREFIXES = [
    r"^(park hyatt|grand hyatt|hyatt regency|hyatt centric|hyatt place|hyatt house|andaz|thompson|alila)\s+",
    # "fairfield" is kept: stripping it usually leaves only the city name
    r"^(jw marriott|marriott|sheraton|westin|le meridien|st\. regis|st regis|w hotel|delta hotels?|edition"
    r"|moxy|aloft|element|ac hotel|courtyard|residence inn|springhill suites|towneplace suites)\s+",
    r"^(waldorf astoria|conrad|hilton|doubletree|embassy suites|hampton|homewood suites|home2 suites|tru)\s+",
    r"^(intercontinental|kimpton|hotel indigo|crowne plaza|holiday inn|staybridge|candlewood|avid|atwell|vignette)\s+",
    r"^(four seasons|ritz[- ]carlton|peninsula|mandarin oriental|rosewood|aman|banyan tree|raffles|fairmont|sofitel|nobu)\s+",
    r"^(wyndham|radisson|best western|choice|la quinta|motel 6|red roof|quality inn|comfort inn|days inn|super 8|ramada)\s+",
]

_LOCATION_ONLY_WORDS = {
    "hotel", "inn", "resort", "suites", "west", "east", "north", "south",
    "downtown", "airport", "beach", "center", "centre",
}

_BRAND_PATTERNS = [
    r"^(andaz|thompson|alila|park hyatt|grand hyatt|hyatt regency|hyatt centric|hyatt place|hyatt house)",
    r"^(jw marriott|marriott|sheraton|westin|le meridien|st\. regis|st regis|w hotel|delta hotels?|edition"
    r"|moxy|aloft|element|ac hotel|courtyard|residence inn|springhill suites|towneplace suites|fairfield)",
    r"^(waldorf astoria|conrad|hilton|doubletree|embassy suites|hampton|homewood suites|home2 suites|tru|canopy)",
    r"^(intercontinental|kimpton|hotel indigo|crowne plaza|holiday inn|staybridge|candlewood|avid|atwell|vignette)",
    r"^(four seasons|ritz[- ]carlton|peninsula|mandarin oriental|rosewood|fairmont|sofitel|nobu)",
    r"^(wyndham|radisson|best western|la quinta|quality inn|comfort inn|days inn|super 8|ramada)",
]

_BRAND_ANYWHERE = (
    r"\b(marriott|sheraton|westin|hilton|hyatt|doubletree|hampton|holiday inn"
    r"|crowne plaza|fairmont|sofitel|courtyard|residence inn)\b"
)

BRAND_FAMILIES = {
    # Marriott
    "marriott": "marriott", "jw marriott": "marriott", "sheraton": "marriott", "westin": "marriott",
    "le meridien": "marriott", "st. regis": "marriott", "st regis": "marriott", "w hotel": "marriott",
    "delta hotel": "marriott", "delta hotels": "marriott", "edition": "marriott", "moxy": "marriott",
    "aloft": "marriott", "element": "marriott", "ac hotel": "marriott", "courtyard": "marriott",
    "residence inn": "marriott", "springhill suites": "marriott", "towneplace suites": "marriott",
    "fairfield": "marriott", "ritz-carlton": "marriott", "ritz carlton": "marriott",
    # Hilton
    "hilton": "hilton", "waldorf astoria": "hilton", "conrad": "hilton", "doubletree": "hilton",
    "embassy suites": "hilton", "hampton": "hilton", "homewood suites": "hilton",
    "home2 suites": "hilton", "tru": "hilton", "canopy": "hilton",
    # Hyatt
    "hyatt": "hyatt", "park hyatt": "hyatt", "grand hyatt": "hyatt", "hyatt regency": "hyatt",
    "hyatt centric": "hyatt", "hyatt place": "hyatt", "hyatt house": "hyatt",
    "andaz": "hyatt", "thompson": "hyatt", "alila": "hyatt",
    # IHG
    "intercontinental": "ihg", "kimpton": "ihg", "hotel indigo": "ihg", "crowne plaza": "ihg",
    "holiday inn": "ihg", "staybridge": "ihg", "candlewood": "ihg", "avid": "ihg",
}

_FILLER_WORDS = {
    "hotel", "hotels", "inn", "inns", "suites", "suite", "resort", "resorts",
    "and", "the", "a", "an", "at", "in", "on", "by", "of", "to",
    "spa", "lodge", "motel", "house", "place", "center", "centre",
}

_ACCOMMODATION_WORD = re.compile(r"\b(hotel|inn|resort|suites?|lodge|motel)\b", re.I)


def _strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_hotel_name(name: str, keep_brand_prefix: bool = False) -> str:
    """
    Lowercase, drop "The", collection suffixes, "by <Brand>", punctuation,
    accents and trailing location qualifiers.

    >>> normalize_hotel_name("Hotel Nia, Autograph Collection")
    'hotel nia'
    """
    result = name.lower()
    result = re.sub(r"^the\s+", "", result)
    for pattern in _COLLECTION_SUFFIXES:
        result = re.sub(pattern, "", result, flags=re.I)
    result = result.replace("&", "and").replace(".", "")
    result = re.sub(r"[,\-/]", " ", result)
    result = _strip_accents(result)
    result = re.sub(r"\s+(near|at|in)\s+.*", "", result)
    result = re.sub(r"\s+", " ", result).strip()

    if not keep_brand_prefix:
        without_brand = result
        for pattern in _BRAND_PREFIXES:
            without_brand = re.sub(pattern, "", without_brand, flags=re.I)
        without_brand = without_brand.strip()
        remaining = [
            w for w in without_brand.split(" ")
            if len(w) > 2 and w not in _LOCATION_ONLY_WORDS
        ]
        # Keep the brand when it is the only distinctive part of the name
        if remaining:
            result = without_brand

    return result


def extract_brand_prefix(name: str) -> Optional[str]:
    clean = re.sub(r"^the\s+", "", name, flags=re.I)
    for pattern in _BRAND_PATTERNS:
        match = re.match(pattern, clean, flags=re.I)
        if match:
            return match.group(1).lower()
    match = re.search(_BRAND_ANYWHERE, clean, flags=re.I)
    if match:
        return match.group(1).lower()
    return None


def get_brand_family(brand: str) -> Optional[str]:
    return BRAND_FAMILIES.get(brand.lower())


def significant_words(normalized_name: str) -> List[str]:
    return [w for w in normalized_name.split(" ") if len(w) > 1 and w not in _FILLER_WORDS]


def _words_match(word1: str, word2: str) -> bool:
    if word1 == word2:
        return True
    shorter, longer = sorted((word1, word2), key=len)
    # "chicagoland" contains "chicago"; short fragments are too ambiguous
    return len(shorter) >= 4 and shorter in longer


def count_matching_words(name1: str, name2: str) -> int:
    words1 = significant_words(normalize_hotel_name(name1))
    words2 = significant_words(normalize_hotel_name(name2))
    return sum(1 for w1 in words1 if any(_words_match(w1, w2) for w2 in words2))


@dataclass
class MatchResult:
    is_match: bool
    matching_words: int
    normalized_search: str
    normalized_result: str
    reason: str
    search_words: List[str] = field(default_factory=list)
    result_words: List[str] = field(default_factory=list)


def analyze_hotel_match(search_name: str, result_name: str) -> MatchResult:
    """
    Decide whether a search result names the same hotel, with the reason.

    A brand in the search name must be matched by a compatible brand (same
    brand or same family) in the result. Otherwise exact/containment matches
    win, then word overlap: all words for short names, at least half
    (minimum two) for longer ones.
    """
    normalized_search = normalize_hotel_name(search_name)
    normalized_result = normalize_hotel_name(result_name)
    search_words = significant_words(normalized_search)
    result_words = significant_words(normalized_result)
    matching = count_matching_words(search_name, result_name)

    search_brand = extract_brand_prefix(search_name)
    result_brand = extract_brand_prefix(result_name)
    search_family = get_brand_family(search_brand) if search_brand else None
    result_family = get_brand_family(result_brand) if result_brand else None
    brands_compatible = (
        not search_brand
        or not result_brand
        or search_brand == result_brand
        or (search_family is not None and search_family == result_family)
    )

    is_match = False
    reason = ""
    rejected = False

    if search_brand and result_brand and not brands_compatible:
        rejected = True
        reason = f'Brand mismatch: searching for "{search_brand}" but found "{result_brand}"'
    elif search_brand and not result_brand:
        related_brand_in_result = search_family is not None and any(
            brand in result_name.lower()
            for brand, family in BRAND_FAMILIES.items()
            if family == search_family
        )
        if normalized_search == normalized_result:
            is_match = True
            reason = "Exact normalized match (brand in search only)"
        elif not related_brand_in_result:
            rejected = True
            reason = f'Brand "{search_brand}" in search but no brand in result'
    elif normalized_search == normalized_result:
        is_match = True
        reason = "Exact match after normalization"
    elif normalized_search in normalized_result or normalized_result in normalized_search:
        shorter = min(normalized_search, normalized_result, key=len)
        shorter_significant = [w for w in shorter.split(" ") if len(w) > 2]
        if len(shorter_significant) >= 2:
            is_match = True
            reason = "One name contains the other"
        elif search_brand and result_brand and brands_compatible:
            is_match = True
            reason = f'Same brand family "{search_family or search_brand}" + containment match'
        elif normalized_search in normalized_result and any(len(w) >= 6 for w in shorter_significant):
            is_match = True
            reason = f'Search name "{normalized_search}" is distinctive and contained in result'

    if not is_match and not rejected:
        if len(search_words) <= 2:
            is_match = bool(search_words) and matching >= len(search_words)
            reason = (
                f"Short name: all {len(search_words)} significant words match"
                if is_match
                else f"Short name: only {matching}/{len(search_words)} significant words match"
            )
        else:
            threshold = max(2, -(-len(search_words) // 2))
            is_match = matching >= threshold
            reason = (
                f"{matching}/{len(search_words)} significant words match (>={threshold} required)"
                if is_match
                else f"Only {matching}/{len(search_words)} significant words match (<{threshold} required)"
            )

    return MatchResult(
        is_match=is_match,
        matching_words=matching,
        normalized_search=normalized_search,
        normalized_result=normalized_result,
        reason=reason,
        search_words=search_words,
        result_words=result_words,
    )


def generate_search_queries(hotel_name: str, city: str, state: Optional[str] = None) -> List[str]:
    """Search query variants, most specific first."""
    normalized = normalize_hotel_name(hotel_name)
    suffix = "" if _ACCOMMODATION_WORD.search(normalized) else " hotel"

    queries = [f"{normalized}{suffix} {city}"]
    if state:
        queries.append(f"{normalized}{suffix} {city} {state}")
    queries.append(f"{hotel_name} {city}")

    words = [w for w in normalized.split(" ") if len(w) > 1]
    if len(words) > 2:
        simplified = " ".join(words[:2])
        simplified_suffix = "" if _ACCOMMODATION_WORD.search(simplified) else " hotel"
        queries.append(f"{simplified}{simplified_suffix} {city}")

    return queries
