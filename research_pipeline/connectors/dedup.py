"""Cross-connector de-duplication by normalized title."""

import re
import unicodedata
from typing import Optional

from rapidfuzz import fuzz

from research_pipeline.models.entities import Item

_NON_WORD = re.compile(r"[\W_]+")


def normalize_title(title: str) -> str:
    """Casefold, drop accents and every non-alphanumeric character, cap at 100 chars.

    Letters and digits of any script are kept, so non-Latin titles still
    produce a usable key.
    """
    decomposed = unicodedata.normalize("NFKD", title.casefold())
    return _NON_WORD.sub("", decomposed)[:100]


def titles_match(
    a: str,
    b: str,
    similarity_threshold: float = 97.0,
    min_title_length: int = 24,
) -> bool:
    """Whether two normalized titles denote the same work.

    Exact equality always matches. Fuzzy matching is only applied when both
    titles are long enough that a high ratio is not just a shared generic
    phrase.
    """
    if not a or not b:
        return False
    if a == b:
        return True
    if len(a) < min_title_length or len(b) < min_title_length:
        return False
    return fuzz.ratio(a, b) >= similarity_threshold


def _richness(item: Item) -> tuple[int, int]:
    return (len(item.body or ""), item.citation_count or 0)


def _same_source(a: Item, b: Item) -> bool:
    return (
        a.source_id.external_id is not None
        and a.source_id.provider == b.source_id.provider
        and a.source_id.external_id == b.source_id.external_id
    )


def dedupe_items(
    items: list[Item],
    similarity_threshold: float = 97.0,
    min_title_length: int = 24,
) -> list[Item]:
    """Collapse duplicates, keeping the richer record (longer body, then citations).

    Output order follows the first occurrence of each distinct work.
    """
    kept: list[Item] = []
    keys: list[str] = []

    for item in items:
        key = normalize_title(item.title)
        match: Optional[int] = None
        for idx, existing in enumerate(kept):
            if _same_source(item, existing) or titles_match(
                key, keys[idx], similarity_threshold, min_title_length
            ):
                match = idx
                break

        if match is None:
            kept.append(item)
            keys.append(key)
        elif _richness(item) > _richness(kept[match]):
            kept[match] = item

    return kept
