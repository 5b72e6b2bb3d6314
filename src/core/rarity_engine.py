"""
RarityEngine — facade for the rarity scoring pipeline.

Single entry point wrapping the stats cache, trait resolver and score
normalizer. Consumers pass an EngineConfig, and optionally a StatsSource
that knows how to fetch attribute summaries and floor prices.

Usage:
    from core import RarityEngine, create_default_config

    engine = RarityEngine(create_default_config(), source=my_source)
    item = engine.score_item("0xabc", raw_traits)
    item.result.rarity_score
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from core.engine_config import EngineConfig, create_default_config
from score_normalizer import (
    DEFAULT_MARKET_TABLE, RarityResult, build_market_table,
    compute_rarity_score, normalize_floor_price, prevalence_rarity_score,
)
from stats_cache import CollectionStatsCache, FreshnessPolicy, StatsUnavailable
from stats_source import HttpStatsSource, StatsSource, parse_attribute_summary
from trait_rarity import Trait, resolve_trait_rarity
from trait_stats import CollectionStats, compute_stats

logger = logging.getLogger(__name__)


def _prevalence_score(traits: List[Trait]) -> Optional[int]:
    """Mean-prevalence score over the item's traits; unmeasured ones count as 50."""
    return prevalence_rarity_score([t.exact_rarity for t in traits])


@dataclass
class ItemRarity:
    """Scored item: resolved traits plus the market-aware result."""
    collection_id: str
    traits: List[Trait] = field(default_factory=list)
    result: RarityResult = field(default_factory=RarityResult)
    stats_approximate: bool = False   # trait rarities used the fallback supply
    prevalence_score: Optional[int] = None

    def to_dict(self) -> dict:
        d = {
            "collection_id": self.collection_id,
            "traits": [t.to_dict() for t in self.traits],
            "stats_approximate": self.stats_approximate,
            "prevalence_score": self.prevalence_score,
        }
        d.update(self.result.to_dict())
        return d


class RarityEngine:
    """Cache-backed rarity scoring for NFT collections."""

    def __init__(self, config: Optional[EngineConfig] = None,
                 source: Optional[StatsSource] = None,
                 cache: Optional[CollectionStatsCache] = None):
        self.config = config or create_default_config()
        self._market_table = (build_market_table(self.config.market_tiers)
                              if self.config.market_tiers else DEFAULT_MARKET_TABLE)
        self._cache = cache or CollectionStatsCache(
            FreshnessPolicy(self.config.stats_max_age))
        if source is None and self.config.summary_url:
            source = HttpStatsSource(
                summary_url=self.config.summary_url,
                floor_url=self.config.floor_url,
                api_key=self.config.api_key,
                api_key_header=self.config.api_key_header,
                timeout=self.config.source_timeout,
            )
        self._source = source

    @property
    def cache(self) -> CollectionStatsCache:
        return self._cache

    @property
    def source(self) -> Optional[StatsSource]:
        return self._source

    # ── Collection stats ────────────────────────────────────

    def stats_supplier(self, collection_id: str) -> Callable[[], CollectionStats]:
        """Build the fetch + aggregate supplier for one collection.

        The supplier raises StatsUnavailable when no StatsSource is
        configured, so a cache hit still succeeds without one.
        """
        source = self._source

        def supplier() -> CollectionStats:
            if source is None:
                raise StatsUnavailable(collection_id, "no stats source configured")
            payload = source.fetch_attribute_summary(collection_id)
            counts, supply = parse_attribute_summary(payload)
            return compute_stats(counts, supply, collection_id)

        return supplier

    def get_stats(self, collection_id: str,
                  supplier: Optional[Callable[[], CollectionStats]] = None) -> CollectionStats:
        """Collection stats through the single-flight cache.

        Uses the configured source when no supplier is given. Errors from
        the supplier propagate unchanged.
        """
        return self._cache.get_stats(
            collection_id, supplier or self.stats_supplier(collection_id),
            wait_timeout=self.config.stats_wait_timeout,
        )

    def floor_price(self, collection_id: str) -> float:
        """Current floor from the source; 0.0 if unavailable."""
        if self._source is None:
            return 0.0
        try:
            return normalize_floor_price(self._source.fetch_floor_price(collection_id))
        except Exception as e:
            logger.warning(f"RarityEngine: floor price for {collection_id} unavailable, "
                           f"scoring in lowest tier: {e}")
            return 0.0

    # ── Scoring ─────────────────────────────────────────────

    def score_item(self, collection_id: str, raw_traits: Iterable[Any],
                   floor_price: Optional[float] = None,
                   supplier: Optional[Callable[[], CollectionStats]] = None,
                   score_distribution=None) -> ItemRarity:
        """Full pipeline: stats (cached) → trait rarity → market-aware score.

        Args:
            collection_id: Collection the item belongs to.
            raw_traits: The item's attributes ({trait_type, value} mappings).
            floor_price: Collection floor in the native unit. Fetched from
                the source when None.
            supplier: Overrides the source-backed stats supplier.
            score_distribution: Optional collection score distribution for a
                rank-based percentile.

        Raises:
            StatsUnavailable, AggregationError: from the stats supplier.
        """
        stats = self.get_stats(collection_id, supplier)
        traits = resolve_trait_rarity(raw_traits, stats)
        if floor_price is None:
            floor_price = self.floor_price(collection_id)
        result = compute_rarity_score(traits, floor_price, score_distribution,
                                      self._market_table)
        logger.debug(f"RarityEngine: {collection_id} scored {result.rarity_score} "
                     f"(raw={result.raw_trait_score}, floor={result.floor_price})")
        return ItemRarity(
            collection_id=collection_id,
            traits=traits,
            result=result,
            stats_approximate=stats.approximate,
            prevalence_score=_prevalence_score(traits),
        )

    def score_collection(self, collection_id: str, items: Mapping[str, Iterable[Any]],
                         floor_price: Optional[float] = None,
                         supplier: Optional[Callable[[], CollectionStats]] = None
                         ) -> Dict[str, ItemRarity]:
        """Score a batch of items from one collection.

        Percentiles are ranks within the batch's own score distribution
        rather than copies of the score. Items that could not be measured
        keep all-None results and are left out of the distribution.
        """
        stats = self.get_stats(collection_id, supplier)
        if floor_price is None:
            floor_price = self.floor_price(collection_id)

        resolved = {token_id: resolve_trait_rarity(raw, stats)
                    for token_id, raw in items.items()}
        first_pass = {token_id: compute_rarity_score(traits, floor_price,
                                                     table=self._market_table)
                      for token_id, traits in resolved.items()}
        distribution = [r.rarity_score for r in first_pass.values() if r.scored]

        scored = {}
        for token_id, traits in resolved.items():
            result = first_pass[token_id]
            if result.scored:
                result = compute_rarity_score(traits, floor_price, distribution,
                                              self._market_table)
            scored[token_id] = ItemRarity(
                collection_id=collection_id,
                traits=traits,
                result=result,
                stats_approximate=stats.approximate,
                prevalence_score=_prevalence_score(traits),
            )
        logger.info(f"RarityEngine: scored {len(distribution)}/{len(items)} items "
                    f"in {collection_id}")
        return scored
