# Ingestion module - relays, provider boundary, profiles and feeds
from .relays import (
    MultiSourceFetcher,
    NostrEvent,
    RelayFilter,
    KIND_PROFILE,
    KIND_NOTE,
    KIND_CONTACTS,
)
from .provider import TrustProvider, OracleTrustProvider, DistanceInfo
from .follows import RelayFollowListSource, follows_from_contact_list
from .profiles import ProfileFetcher, parse_profile
from .feed import FeedPager

__all__ = [
    "MultiSourceFetcher",
    "NostrEvent",
    "RelayFilter",
    "KIND_PROFILE",
    "KIND_NOTE",
    "KIND_CONTACTS",
    "TrustProvider",
    "OracleTrustProvider",
    "DistanceInfo",
    "RelayFollowListSource",
    "follows_from_contact_list",
    "ProfileFetcher",
    "parse_profile",
    "FeedPager",
]
