"""
Rarity Engine - Configuration
All tunable constants in one place.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()


def _env_float(name: str, default):
    """Read an optional float from the environment, falling back on bad input."""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# ─────────────────────────────────────────────
# Collection Stats
# ─────────────────────────────────────────────
# Used when the true collection supply is unknown. Percentages computed
# against it are flagged as approximate.
FALLBACK_TOTAL_SUPPLY = 10000

# ─────────────────────────────────────────────
# Trait Resolution
# ─────────────────────────────────────────────
# Trait type assigned to attributes that carry no type of their own
DEFAULT_TRAIT_TYPE = "Property"

# Decimal places kept on the displayed trait rarity
RARITY_DISPLAY_DECIMALS = 2

# ─────────────────────────────────────────────
# Rarity Score
# ─────────────────────────────────────────────
# raw = clamp(SCORE_BASE - log10(max(HARMONIC_MEAN_FLOOR, hm)) * SCORE_LOG_SLOPE, 0, 100)
HARMONIC_MEAN_FLOOR = 0.1
SCORE_BASE = 85.0
SCORE_LOG_SLOPE = 35.0
SCORE_MIN = 0.0
SCORE_MAX = 100.0

# Market context bands: (floor price ceiling, multiplier, cap).
# Ceilings are exclusive and strictly increasing; the last band is open.
MARKET_TIERS = (
    (0.5, 0.45, 45),            # negligible market
    (1.0, 0.55, 55),
    (3.0, 0.70, 70),
    (10.0, 0.85, 85),
    (float("inf"), 1.00, 100),  # blue chip, no cap
)

# ─────────────────────────────────────────────
# Stats Cache
# ─────────────────────────────────────────────
# Max age of a cached collection entry (seconds). None = process lifetime.
STATS_CACHE_MAX_AGE = _env_float("RARITY_STATS_MAX_AGE", None)

# How long a caller waits on another caller's in-flight computation.
# None = wait until it finishes.
STATS_WAIT_TIMEOUT = _env_float("RARITY_STATS_WAIT_TIMEOUT", None)

# ─────────────────────────────────────────────
# Stats Source (optional JSON-over-HTTP adapter)
# ─────────────────────────────────────────────
# URL templates; "{collection_id}" is substituted per request.
STATS_SOURCE_SUMMARY_URL = os.environ.get("RARITY_SUMMARY_URL", "")
STATS_SOURCE_FLOOR_URL = os.environ.get("RARITY_FLOOR_URL", "")
STATS_SOURCE_API_KEY = os.environ.get("RARITY_API_KEY", "")
STATS_SOURCE_API_KEY_HEADER = os.environ.get("RARITY_API_KEY_HEADER", "x-api-key")
STATS_SOURCE_TIMEOUT = _env_float("RARITY_SOURCE_TIMEOUT", 10.0)

# Marketplace preference when a floor payload lists several
FLOOR_PRICE_MARKETPLACES = ("openSea", "looksRare")

# ─────────────────────────────────────────────
# Logging
# ─────────────────────────────────────────────
LOG_LEVEL = os.environ.get("RARITY_LOG_LEVEL", "INFO")
LOG_FILE = Path(os.path.expanduser("~")) / ".rarity-engine" / "engine.log"
