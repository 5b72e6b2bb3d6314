"""
Rarity Engine - Trait Rarity Resolver

Attaches a collection-relative rarity to each of an item's traits.

Two values are kept per trait: `rarity` is rounded for display, while
`exact_rarity` is the unrounded percentage the score normalizer works from.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from config import DEFAULT_TRAIT_TYPE, RARITY_DISPLAY_DECIMALS
from trait_stats import CollectionStats, trait_value_key

logger = logging.getLogger(__name__)

# Keys seen for the trait type across metadata conventions, in priority order
_TYPE_KEYS = ("trait_type", "traitType", "name")


@dataclass
class Trait:
    trait_type: str
    value: str
    rarity: Optional[float] = None        # % of supply, rounded for display
    exact_rarity: Optional[float] = None  # % of supply, unrounded

    def to_dict(self) -> dict:
        return {"trait_type": self.trait_type, "value": self.value, "rarity": self.rarity}


def _field(item: Any, key: str):
    if isinstance(item, Mapping):
        return item.get(key)
    return getattr(item, key, None)


def _trait_type(item: Any) -> str:
    for key in _TYPE_KEYS:
        t = _field(item, key)
        if t:
            return str(t)
    return DEFAULT_TRAIT_TYPE


def _trait_value(item: Any) -> str:
    return trait_value_key(_field(item, "value"))


def resolve_trait_rarity(items: Iterable[Any],
                         stats: Optional[CollectionStats]) -> List[Trait]:
    """Annotate raw traits with their rarity in the owning collection.

    Args:
        items: Raw traits, as mappings or objects with trait_type/value.
        stats: Collection stats, or None when unavailable.

    Returns:
        One Trait per input, in order. Rarity is None when the collection
        has no measurement for that (type, value) pair.
    """
    traits = []
    for item in items or ():
        trait_type = _trait_type(item)
        value = _trait_value(item)
        exact = stats.percentage(trait_type, value) if stats is not None else None
        traits.append(Trait(
            trait_type=trait_type,
            value=value,
            rarity=round(exact, RARITY_DISPLAY_DECIMALS) if exact is not None else None,
            exact_rarity=exact,
        ))
    if stats is not None:
        unmeasured = sum(1 for t in traits if t.exact_rarity is None)
        if unmeasured:
            logger.debug(f"TraitRarity: {unmeasured}/{len(traits)} traits not found "
                         f"in stats for {stats.collection_id or '?'}")
    return traits


def extract_traits(metadata: Optional[Mapping]) -> list:
    """Pull the raw attribute list out of token metadata.

    Indexers nest the token JSON differently: attributes may sit at the
    top level or under "raw"/"metadata"/"rawMetadata". Returns [] when no
    attribute list is found.
    """
    if not isinstance(metadata, Mapping):
        return []
    for key in ("attributes", "traits"):
        attrs = metadata.get(key)
        if isinstance(attrs, list):
            return [a for a in attrs if isinstance(a, Mapping)]
    for nest in ("raw", "metadata", "rawMetadata"):
        inner = metadata.get(nest)
        if isinstance(inner, Mapping):
            found = extract_traits(inner)
            if found:
                return found
    return []
