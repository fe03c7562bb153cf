"""Controlled tag vocabulary assigned to ads by content analysis."""
import logging
from typing import Any, List

logger = logging.getLogger(__name__)

AVAILABLE_TAGS = (
    'job',
    'services',
    'product',
    'looking-for',
    'event',
    'housing',
    'food',
    'entertainment',
    'education',
    'healthcare',
    'automotive',
    'clothing',
    'electronics',
    'furniture',
    'real-estate',
    'transportation',
    'business',
    'community',
    'sports',
    'art',
    'music',
    'travel',
    'beauty',
    'fitness',
    'technology',
    'finance',
    'legal',
    'repair',
    'cleaning',
    'delivery',
)

MAX_TAGS = 5
MIN_TAGS = 2

_KNOWN = frozenset(AVAILABLE_TAGS)

def normalize_tags(raw: Any) -> List[str]:
    """Reduce model output to at most five distinct vocabulary tags.
    
    Non-string entries and unknown tags are dropped; order is preserved.
    """
    if not isinstance(raw, (list, tuple)):
        return []

    tags: List[str] = []
    for item in raw:
        if not isinstance(item, str):
            continue
        tag = item.strip().lower().replace(' ', '-')
        if tag not in _KNOWN:
            logger.debug(f"Dropping unknown tag {item!r}")
            continue
        if tag not in tags:
            tags.append(tag)
        if len(tags) == MAX_TAGS:
            break

    if len(tags) < MIN_TAGS:
        logger.warning(f"Only {len(tags)} usable tag(s) generated, expected at least {MIN_TAGS}")
    return tags
