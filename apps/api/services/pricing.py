"""Point cost table for billable downloads."""

from __future__ import annotations

from typing import Any, Dict

from services.errors import InvalidInputError


PLATFORMS = ("apk", "ipa")

_COSTS: Dict[tuple[str, bool], int] = {
    ("apk", False): 3,
    ("ipa", False): 5,
    ("apk", True): 10,
    ("ipa", True): 30,
}


def normalize_platform(value: Any) -> str:
    """Return ``apk`` or ``ipa``; anything else is an input error."""
    platform = value.strip().lower() if isinstance(value, str) else ""
    if platform not in PLATFORMS:
        raise InvalidInputError("INVALID_PLATFORM")
    return platform


def resolve_cost(platform: str, is_regional: bool) -> int:
    """Point cost of one download of ``platform`` from a local or regional backend."""
    return _COSTS[(normalize_platform(platform), bool(is_regional))]


def cost_table() -> Dict[str, Dict[str, int]]:
    return {
        "local": {platform: _COSTS[(platform, False)] for platform in PLATFORMS},
        "regional": {platform: _COSTS[(platform, True)] for platform in PLATFORMS},
    }
