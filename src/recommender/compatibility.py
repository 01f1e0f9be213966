"""Audience compatibility between collections.

The filter answers "may this source recommend that target?" from the source's
point of view. It is deliberately not symmetric: unisex and unknown sources
recommend anything, while gendered sources only exclude the opposite gender.
"""

from enum import Enum
from typing import Union


class AudienceCategory(str, Enum):
    """Closed set of audience tags.

    ``UNKNOWN`` behaves like ``UNISEX`` in the filter but stays a distinct
    value so unclassified collections remain visible as such.
    """

    MEN = "men"
    WOMEN = "women"
    UNISEX = "unisex"
    UNKNOWN = "unknown"


# Targets a gendered source must never recommend
_EXCLUDED_TARGETS = {
    AudienceCategory.MEN: AudienceCategory.WOMEN,
    AudienceCategory.WOMEN: AudienceCategory.MEN,
}


def can_recommend(
    source: Union[AudienceCategory, str],
    target: Union[AudienceCategory, str],
) -> bool:
    """Whether a ``source`` collection may recommend a ``target`` collection.

    Raises:
        ValueError: If either value is not a known audience category.
    """
    source = AudienceCategory(source)
    target = AudienceCategory(target)

    excluded = _EXCLUDED_TARGETS.get(source)
    if excluded is None:
        return True
    return target is not excluded
