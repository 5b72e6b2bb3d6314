"""
EngineConfig — configuration dataclass for the rarity engine.

Every tunable value the facade needs is a field here. create_default_config
fills one from config.py; tests and embedding services build their own.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass
class EngineConfig:
    """Complete configuration for a RarityEngine."""

    # ── Cache ───────────────────────────────────────────────
    stats_max_age: Optional[float] = None     # seconds; None = process lifetime
    stats_wait_timeout: Optional[float] = None

    # ── Scoring ─────────────────────────────────────────────
    # (floor price ceiling, multiplier, cap), ceilings strictly increasing
    market_tiers: Tuple[Tuple[float, float, int], ...] = field(default_factory=tuple)

    # ── Stats Source ────────────────────────────────────────
    summary_url: str = ""                     # e.g. "https://indexer/{collection_id}/attributes"
    floor_url: str = ""
    api_key: str = ""
    api_key_header: str = "x-api-key"
    source_timeout: float = 10.0


def create_default_config(**overrides) -> EngineConfig:
    """Create an EngineConfig from config.py, with keyword overrides.

    Raises:
        TypeError: on an unknown override name.
    """
    from config import (
        STATS_CACHE_MAX_AGE,
        STATS_WAIT_TIMEOUT,
        MARKET_TIERS,
        STATS_SOURCE_SUMMARY_URL,
        STATS_SOURCE_FLOOR_URL,
        STATS_SOURCE_API_KEY,
        STATS_SOURCE_API_KEY_HEADER,
        STATS_SOURCE_TIMEOUT,
    )

    values = dict(
        stats_max_age=STATS_CACHE_MAX_AGE,
        stats_wait_timeout=STATS_WAIT_TIMEOUT,
        market_tiers=tuple(MARKET_TIERS),
        summary_url=STATS_SOURCE_SUMMARY_URL,
        floor_url=STATS_SOURCE_FLOOR_URL,
        api_key=STATS_SOURCE_API_KEY,
        api_key_header=STATS_SOURCE_API_KEY_HEADER,
        source_timeout=STATS_SOURCE_TIMEOUT,
    )
    unknown = set(overrides) - set(values)
    if unknown:
        raise TypeError(f"unknown EngineConfig fields: {sorted(unknown)}")
    values.update(overrides)
    return EngineConfig(**values)
