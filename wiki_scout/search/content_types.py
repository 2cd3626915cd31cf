"""Closed set of wiki content categories used for search filtering."""
from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Iterable, Optional


class ContentType(str, Enum):
    BOSS = "boss"
    WEAPON = "weapon"
    RELIC = "relic"
    NIGHTFARER = "nightfarer"
    SKILL = "skill"
    TALISMAN = "talisman"
    SPELL = "spell"
    ARMOR = "armor"
    SHIELD = "shield"
    ENEMY = "enemy"
    NPC = "npc"
    MERCHANT = "merchant"
    LOCATION = "location"
    EXPEDITION = "expedition"
    GUIDE = "guide"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object, *, strict: bool = False) -> ContentType:
        """Map *value* to a member; unknown input becomes ``UNKNOWN`` unless *strict*."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        if strict:
            raise ValueError(f"unknown content type: {value!r}")
        return cls.UNKNOWN


def parse_types(values: Optional[Iterable[object]], *, strict: bool = True) -> Optional[FrozenSet[ContentType]]:
    """Turn a user-supplied list of type names into a filter set (``None`` = no filter)."""
    if values is None:
        return None
    types = frozenset(ContentType.parse(v, strict=strict) for v in values)
    return types or None
