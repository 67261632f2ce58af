"""Search and ordering over an in-memory listing collection."""

from __future__ import annotations

import enum
import locale
import unicodedata
from typing import Iterable, List, Optional, Tuple

from campus_market.models import Listing


class SortOrder(str, enum.Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    PRICE_ASCENDING = "price_asc"
    PRICE_DESCENDING = "price_desc"
    ALPHABETICAL = "alphabetical"


def _matches(field: Optional[str], needle: str) -> bool:
    return field is not None and needle in field.casefold()


def filter_listings(listings: Iterable[Listing], query: Optional[str]) -> List[Listing]:
    """Keep listings whose title, description or location contains ``query``.

    Matching is case-insensitive; a blank query keeps everything.
    """

    needle = (query or "").strip().casefold()
    if not needle:
        return list(listings)
    return [
        listing
        for listing in listings
        if _matches(listing.title, needle)
        or _matches(listing.description, needle)
        or _matches(listing.location, needle)
    ]


def _strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def _title_key(listing: Listing) -> Tuple[str, str]:
    # accent-free key first so the C locale still groups "É" with "e"
    folded = listing.title.casefold()
    return (locale.strxfrm(_strip_accents(folded)), locale.strxfrm(folded))


def sort_listings(listings: Iterable[Listing], order: SortOrder = SortOrder.NEWEST) -> List[Listing]:
    items = list(listings)
    if order is SortOrder.NEWEST:
        return sorted(items, key=lambda listing: listing.id or 0, reverse=True)
    if order is SortOrder.OLDEST:
        return sorted(items, key=lambda listing: listing.id or 0)
    if order is SortOrder.PRICE_ASCENDING:
        return sorted(items, key=lambda listing: listing.price)
    if order is SortOrder.PRICE_DESCENDING:
        return sorted(items, key=lambda listing: listing.price, reverse=True)
    if order is SortOrder.ALPHABETICAL:
        return sorted(items, key=_title_key)
    raise ValueError(f"unsupported sort order: {order!r}")


def browse(
    listings: Iterable[Listing], query: Optional[str] = None, order: SortOrder = SortOrder.NEWEST
) -> List[Listing]:
    return sort_listings(filter_listings(listings, query), order)
