"""
Rarity Engine - Collection Trait Statistics

Aggregates a collection's raw attribute counts into trait frequencies:
for every (trait type, trait value) pair, how many items carry it and what
share of the collection supply that is.

Percentages are kept unrounded here. Rounding for display happens in
trait_rarity, so scores are always computed from exact values.

Usage:
    stats = compute_stats({"Background": {"Blue": 120}}, 10000, "0xabc")
    stats.percentage("Background", "Blue")   # 1.2
"""

import logging
import numbers
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from config import FALLBACK_TOTAL_SUPPLY

logger = logging.getLogger(__name__)


class RarityEngineError(Exception):
    """Base class for errors raised by the rarity engine."""


class AggregationError(RarityEngineError, ValueError):
    """Raw attribute summary is structurally malformed."""


# ─── Data Structures ─────────────────────────────────

@dataclass(frozen=True)
class TraitFrequency:
    count: int           # items carrying this trait value
    percentage: float    # 100 * count / total_supply, unrounded


@dataclass(frozen=True)
class CollectionStats:
    """Trait frequencies for one collection. Immutable once built."""
    collection_id: str
    total_supply: int
    trait_frequencies: Mapping[str, Mapping[str, TraitFrequency]] = field(
        default_factory=lambda: MappingProxyType({}))
    approximate: bool = False   # total_supply is the fallback, not the real supply

    def percentage(self, trait_type: str, value: str) -> Optional[float]:
        """Unrounded percentage for a trait value, or None if not measured."""
        values = self.trait_frequencies.get(trait_type)
        if values is None:
            return None
        freq = values.get(value)
        return freq.percentage if freq is not None else None

    @property
    def trait_types(self) -> list:
        return sorted(self.trait_frequencies)

    def to_dict(self) -> dict:
        return {
            "collection_id": self.collection_id,
            "total_supply": self.total_supply,
            "approximate": self.approximate,
            "traits": {
                trait_type: {
                    value: {"count": f.count, "percentage": f.percentage}
                    for value, f in values.items()
                }
                for trait_type, values in self.trait_frequencies.items()
            },
        }


# ─── Aggregation ─────────────────────────────────────

def resolve_total_supply(total_supply) -> Optional[int]:
    """Return a usable positive supply, or None if it is missing or invalid.

    Upstream metadata often reports supply as a decimal string.
    """
    if total_supply is None or isinstance(total_supply, bool):
        return None
    try:
        supply = int(str(total_supply).strip()) if isinstance(total_supply, str) \
            else int(total_supply)
    except (TypeError, ValueError, OverflowError):
        return None
    if isinstance(total_supply, float) and total_supply != supply:
        return None
    return supply if supply > 0 else None


def trait_value_key(value) -> str:
    """String key for a trait value, matching JSON object keys.

    Bools are "true"/"false" as they appear in JSON; None is "".
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _coerce_count(trait_type: str, value: str, count) -> int:
    if isinstance(count, bool) or not isinstance(count, numbers.Real):
        raise AggregationError(
            f"non-numeric count for {trait_type}={value!r}: {count!r}")
    if count != count or count < 0:
        raise AggregationError(
            f"invalid count for {trait_type}={value!r}: {count!r}")
    if isinstance(count, numbers.Integral):
        return int(count)
    if not float(count).is_integer():
        raise AggregationError(
            f"fractional count for {trait_type}={value!r}: {count!r}")
    return int(count)


def compute_stats(raw_summary: Optional[Mapping], total_supply=None,
                  collection_id: str = "") -> CollectionStats:
    """Aggregate a raw attribute summary into CollectionStats.

    Args:
        raw_summary: {trait_type: {trait_value: count}}. None or empty
            yields empty frequencies.
        total_supply: Collection size. Missing, zero, negative or
            unparseable values fall back to FALLBACK_TOTAL_SUPPLY and the
            result is marked approximate.
        collection_id: Identifier stored on the result.

    Raises:
        AggregationError: if the summary is not a mapping of mappings of
            non-negative integral counts.
    """
    supply = resolve_total_supply(total_supply)
    approximate = supply is None
    if approximate:
        supply = FALLBACK_TOTAL_SUPPLY
        logger.warning(f"Stats: no usable total supply for {collection_id or '?'} "
                       f"(got {total_supply!r}), using {FALLBACK_TOTAL_SUPPLY}")

    if raw_summary is None:
        raw_summary = {}
    if not isinstance(raw_summary, Mapping):
        raise AggregationError(
            f"attribute summary must be a mapping, got {type(raw_summary).__name__}")

    frequencies: Dict[str, Mapping[str, TraitFrequency]] = {}
    for trait_type, values in raw_summary.items():
        trait_type = str(trait_type)
        if not isinstance(values, Mapping):
            raise AggregationError(
                f"values for trait type {trait_type!r} must be a mapping, "
                f"got {type(values).__name__}")
        per_value: Dict[str, TraitFrequency] = {}
        for value, count in values.items():
            value = trait_value_key(value)
            n = _coerce_count(trait_type, value, count)
            per_value[value] = TraitFrequency(count=n, percentage=100 * n / supply)
        frequencies[trait_type] = MappingProxyType(per_value)

    stats = CollectionStats(
        collection_id=collection_id,
        total_supply=supply,
        trait_frequencies=MappingProxyType(frequencies),
        approximate=approximate,
    )
    logger.debug(f"Stats: aggregated {len(frequencies)} trait types for "
                 f"{collection_id or '?'} (supply={supply}, approximate={approximate})")
    return stats
