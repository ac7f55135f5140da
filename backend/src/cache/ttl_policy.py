"""
Cache lifetimes per resource kind.

Tight TTLs only where data moves during live play; generous ones otherwise to
keep upstream load low. Pure so the scheduler and the data service agree on
lifetimes without coordinating.
"""

from enum import Enum
from typing import Dict, Tuple, Union


class ResourceKind(str, Enum):
    """What a cache entry was derived from; selects its lifetime."""
    LIVE_STATS = "live-stats"
    BOOTSTRAP = "bootstrap"
    FIXTURES = "fixtures"
    PLAYER_DETAIL = "player-detail"
    DEFAULT = "default"


# (inactive, live) in seconds
TTL_TABLE: Dict[ResourceKind, Tuple[int, int]] = {
    ResourceKind.LIVE_STATS: (60 * 60, 15 * 60),
    ResourceKind.BOOTSTRAP: (12 * 60 * 60, 4 * 60 * 60),
    ResourceKind.FIXTURES: (24 * 60 * 60, 6 * 60 * 60),
    ResourceKind.PLAYER_DETAIL: (12 * 60 * 60, 6 * 60 * 60),
    ResourceKind.DEFAULT: (12 * 60 * 60, 12 * 60 * 60),
}


def ttl(resource_kind: Union[ResourceKind, str], is_live_state_active: bool) -> int:
    """
    Cache lifetime for a resource kind.

    Args:
        resource_kind: ResourceKind or its string value; unknown kinds use the default row
        is_live_state_active: True while a match is in progress

    Returns:
        TTL in seconds
    """
    try:
        kind = ResourceKind(resource_kind)
    except ValueError:
        kind = ResourceKind.DEFAULT
    inactive, live = TTL_TABLE[kind]
    return live if is_live_state_active else inactive
