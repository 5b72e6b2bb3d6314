"""
Rarity Engine core — cache-backed, market-aware NFT rarity scoring.

Usage:
    from core import RarityEngine, create_default_config

    engine = RarityEngine(create_default_config(), source=my_source)
    item = engine.score_item(collection_id, raw_traits, floor_price=2.4)
"""

from core.engine_config import EngineConfig, create_default_config
from core.rarity_engine import ItemRarity, RarityEngine

__all__ = [
    "RarityEngine",
    "ItemRarity",
    "EngineConfig",
    "create_default_config",
]
