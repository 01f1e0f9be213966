"""Text helpers for collections.

Covers the text that is sent to the embedding provider and the cleaning and
classification applied to raw catalog records during ingestion.
"""

import html
import re
from typing import Iterable, Optional, Protocol

from src.recommender.compatibility import AudienceCategory

# Embedding text caps (characters)
DESCRIPTION_EMBED_LIMIT = 5000
EMBEDDING_TEXT_LIMIT = 6000

# Stored description cap (characters)
DESCRIPTION_STORE_LIMIT = 10 * 1024

# Product titles kept as embedding context
PRODUCT_SAMPLE_SIZE = 10

SALE_KEYWORDS = frozenset(
    {
        "sale",
        "sales",
        "clearance",
        "outlet",
        "offer",
        "offers",
        "deals",
        "discount",
        "promotions",
        "promo",
    }
)

MEN_KEYWORDS = frozenset(
    {"men", "mens", "man", "male", "him", "his", "guys", "gentleman"}
)
WOMEN_KEYWORDS = frozenset(
    {"women", "womens", "woman", "female", "her", "hers", "ladies", "girls"}
)

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_TOKEN_RE = re.compile(r"[a-z0-9]+")


class EmbeddableCollection(Protocol):
    """What the text builder reads; ORM rows and plain records both fit."""

    title: str
    description: str
    audience: str


def build_embedding_text(
    collection: EmbeddableCollection, include_product_sample: bool = False
) -> str:
    """Render the text submitted to the embedding provider.

    Sections, in order and separated by a blank line: ``Title:`` (never
    truncated), ``Description:`` (first 5000 characters) and ``Category:``
    (omitted for unknown audiences). The joined text is then cut to 6000
    characters, possibly mid-section.

    Args:
        collection: Any object with ``title``, ``description`` and
            ``audience`` attributes (``product_sample`` is optional).
        include_product_sample: Add a ``Products:`` section after the category.

    Returns:
        Deterministic text for identical input.
    """
    parts = []

    title = getattr(collection, "title", None)
    if title:
        parts.append(f"Title: {title}")

    description = getattr(collection, "description", None)
    if description:
        parts.append(f"Description: {description[:DESCRIPTION_EMBED_LIMIT]}")

    audience = getattr(collection, "audience", None)
    if audience and AudienceCategory(audience) is not AudienceCategory.UNKNOWN:
        parts.append(f"Category: {AudienceCategory(audience).value}")

    if include_product_sample:
        sample = getattr(collection, "product_sample", None)
        if sample:
            parts.append(f"Products: {sample}")

    return "\n\n".join(parts)[:EMBEDDING_TEXT_LIMIT]


def clean_description(description_html: Optional[str]) -> str:
    """Convert an HTML description to capped plain text."""
    if not description_html:
        return ""

    text = _TAG_RE.sub(" ", description_html)
    text = html.unescape(text).replace("\xa0", " ")
    text = _WHITESPACE_RE.sub(" ", text).strip()

    return text[:DESCRIPTION_STORE_LIMIT]


def build_product_sample(product_titles: Optional[Iterable[str]]) -> str:
    """Comma-join the first few non-empty product titles."""
    if not product_titles:
        return ""
    titles = [t.strip() for t in product_titles if t and t.strip()]
    return ", ".join(titles[:PRODUCT_SAMPLE_SIZE])


def _tokens(*values: str) -> set:
    text = " ".join(v for v in values if v).lower().replace("'", "")
    return set(_TOKEN_RE.findall(text))


def classify_audience(title: str, handle: str) -> AudienceCategory:
    """Classify a collection's audience from its title and handle.

    Matching is by whole word, so "women" never counts as a "men" hit.
    """
    tokens = _tokens(title, handle.replace("-", " ") if handle else "")

    men = bool(tokens & MEN_KEYWORDS)
    women = bool(tokens & WOMEN_KEYWORDS)

    if men and not women:
        return AudienceCategory.MEN
    if women and not men:
        return AudienceCategory.WOMEN
    if men and women:
        return AudienceCategory.UNISEX
    return AudienceCategory.UNKNOWN


def is_sale_collection(title: str, handle: str) -> bool:
    """Whether the title or handle marks a promotional/sale collection."""
    tokens = _tokens(title, handle.replace("-", " ") if handle else "")
    return bool(tokens & SALE_KEYWORDS)
