"""
Rarity Engine - Score Normalizer

Turns per-trait rarities into one 0-100 rarity score for an item.

1. Harmonic mean of the measured trait rarities. One common trait pulls the
   mean up far more than an arithmetic mean would, so a single common
   trait makes the whole item read as less rare.
2. Log-scaled into a raw trait score:
       raw = clamp(85 - log10(max(0.1, hm)) * 35, 0, 100)
3. Market context: the collection floor price picks a (multiplier, cap)
   band from MARKET_TIERS. A numerically rare item in a collection nobody
   pays for cannot score as elite.

Floor prices come from unreliable external feeds, so anything that is not
a usable non-negative number is treated as 0 (the lowest band) instead of
raising.
"""

import logging
import math
import numbers
from bisect import bisect_right
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np

from config import (
    HARMONIC_MEAN_FLOOR, SCORE_BASE, SCORE_LOG_SLOPE, SCORE_MIN, SCORE_MAX,
    MARKET_TIERS,
)

logger = logging.getLogger(__name__)


# ─── Data Structures ─────────────────────────────────

@dataclass(frozen=True)
class MarketTier:
    ceiling: float       # exclusive upper bound of the floor-price band
    multiplier: float
    cap: int


@dataclass(frozen=True)
class RarityResult:
    raw_trait_score: Optional[float] = None
    rarity_score: Optional[int] = None
    rarity_percentile: Optional[int] = None
    market_tier: Optional[MarketTier] = None
    floor_price: float = 0.0

    @property
    def scored(self) -> bool:
        return self.rarity_score is not None

    def to_dict(self) -> dict:
        return {
            "raw_trait_score": self.raw_trait_score,
            "rarity_score": self.rarity_score,
            "rarity_percentile": self.rarity_percentile,
            "floor_price": self.floor_price,
        }


def build_market_table(rows: Iterable[Tuple[float, float, int]]) -> Tuple[MarketTier, ...]:
    """Build the ordered tier table, rejecting unordered or open-ended rows."""
    table = tuple(MarketTier(float(c), float(m), int(cap)) for c, m, cap in rows)
    if not table:
        raise ValueError("market table is empty")
    ceilings = [t.ceiling for t in table]
    if any(a >= b for a, b in zip(ceilings, ceilings[1:])):
        raise ValueError(f"market tier ceilings must strictly increase: {ceilings}")
    if not math.isinf(ceilings[-1]):
        raise ValueError("last market tier must be open-ended (ceiling=inf)")
    return table


DEFAULT_MARKET_TABLE = build_market_table(MARKET_TIERS)


# ─── Market Context ──────────────────────────────────

def normalize_floor_price(floor_price) -> float:
    """Coerce a floor price feed value to a float >= 0.

    None, bools, NaN, negatives and unparseable values become 0.0.
    Integers too large for a float land in the top band.
    """
    value = None
    if isinstance(floor_price, bool) or floor_price is None:
        value = None
    elif isinstance(floor_price, (numbers.Real, Decimal)):
        try:
            value = float(floor_price)
        except OverflowError:
            value = math.inf if floor_price > 0 else 0.0
        except ValueError:
            # signalling NaN
            value = None
    elif isinstance(floor_price, str):
        try:
            value = float(floor_price.strip())
        except ValueError:
            value = None

    if value is None or math.isnan(value) or value < 0:
        logger.debug(f"ScoreNormalizer: invalid floor price {floor_price!r}, using 0")
        return 0.0
    return value


def market_tier_for(floor_price, table: Sequence[MarketTier] = DEFAULT_MARKET_TABLE) -> MarketTier:
    """The band whose exclusive ceiling is the first above the floor price."""
    price = normalize_floor_price(floor_price)
    idx = bisect_right([t.ceiling for t in table], price)
    return table[min(idx, len(table) - 1)]


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def apply_market_context(raw_score: float, floor_price,
                         table: Sequence[MarketTier] = DEFAULT_MARKET_TABLE) -> int:
    """Weight a raw trait score by market tier and cap it."""
    tier = market_tier_for(floor_price, table)
    return min(tier.cap, _round_half_up(raw_score * tier.multiplier))


# ─── Trait Score ─────────────────────────────────────

def harmonic_mean(values: Sequence[float]) -> float:
    """n / sum(1/v). Values must all be > 0."""
    return len(values) / sum(1.0 / v for v in values)


def raw_trait_score(rarities: Sequence[float]) -> Optional[float]:
    """Raw 0-100 score from positive trait rarities (percent of supply)."""
    valid = [r for r in rarities if r is not None and math.isfinite(r) and r > 0]
    if not valid:
        return None
    hm = harmonic_mean(valid)
    log_rarity = math.log10(max(HARMONIC_MEAN_FLOOR, hm))
    return max(SCORE_MIN, min(SCORE_MAX, SCORE_BASE - log_rarity * SCORE_LOG_SLOPE))


def _scoring_rarity(trait) -> Optional[float]:
    """Exact rarity when the trait carries one, else its displayed rarity."""
    if isinstance(trait, Mapping):
        exact = trait.get("exact_rarity")
        return exact if exact is not None else trait.get("rarity")
    exact = getattr(trait, "exact_rarity", None)
    return exact if exact is not None else getattr(trait, "rarity", None)


def percentile_rank(score: float, distribution: Sequence[float]) -> Optional[int]:
    """Share (0-100) of collection scores at or below `score`.

    Returns None for an empty distribution.
    """
    arr = np.asarray(distribution, dtype=float)
    arr = arr[~np.isnan(arr)]
    if arr.size == 0:
        return None
    return _round_half_up(100.0 * np.count_nonzero(arr <= score) / arr.size)


def compute_rarity_score(traits: Iterable, floor_price,
                         score_distribution: Optional[Sequence[float]] = None,
                         table: Sequence[MarketTier] = DEFAULT_MARKET_TABLE) -> RarityResult:
    """Score an item from its resolved traits and its collection floor price.

    Args:
        traits: Trait objects (see trait_rarity); uses exact rarities when
            present so display rounding never leaks into the score.
        floor_price: Collection floor in the chain's native unit.
        score_distribution: Optional rarity scores of the rest of the
            collection. When given, the percentile is the item's rank in it;
            otherwise the percentile equals the score.

    Returns:
        RarityResult. All score fields are None if no trait had a known
        rarity above zero; no market weighting is applied in that case.
    """
    price = normalize_floor_price(floor_price)
    rarities = [_scoring_rarity(t) for t in traits]
    raw = raw_trait_score(rarities)
    if raw is None:
        return RarityResult(floor_price=price)

    tier = market_tier_for(price, table)
    score = min(tier.cap, _round_half_up(raw * tier.multiplier))

    percentile = score
    if score_distribution is not None:
        ranked = percentile_rank(score, score_distribution)
        if ranked is not None:
            percentile = ranked

    return RarityResult(
        raw_trait_score=raw,
        rarity_score=score,
        rarity_percentile=percentile,
        market_tier=tier,
        floor_price=price,
    )


def prevalence_rarity_score(prevalences: Sequence[Optional[float]]) -> Optional[int]:
    """Indexer-style score: 100 minus the mean trait prevalence.

    Prevalences are percentages; a missing or zero one counts as 50.
    """
    if not prevalences:
        return None
    mean = sum(p or 50.0 for p in prevalences) / len(prevalences)
    return _round_half_up(100 - mean)
