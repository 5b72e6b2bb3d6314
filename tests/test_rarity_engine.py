"""Tests for the RarityEngine facade — stats, trait rarity and scoring together."""

import pytest

from conftest import SAMPLE_SUMMARY
from core import EngineConfig, ItemRarity, RarityEngine
from stats_cache import StatsUnavailable
from stats_source import HttpStatsSource
from trait_stats import AggregationError, compute_stats


class FakeSource:
    """In-memory StatsSource that counts calls."""

    def __init__(self, summary=None, supply=10000, floor=20.0):
        self.summary = SAMPLE_SUMMARY if summary is None else summary
        self.supply = supply
        self.floor = floor
        self.summary_calls = 0
        self.floor_calls = 0

    def fetch_attribute_summary(self, collection_id):
        self.summary_calls += 1
        return {"summary": self.summary, "totalSupply": self.supply}

    def fetch_floor_price(self, collection_id):
        self.floor_calls += 1
        if isinstance(self.floor, Exception):
            raise self.floor
        return self.floor


RARE = [{"trait_type": "Background", "value": "Gold"},
        {"trait_type": "Hat", "value": "Crown"}]
COMMON = [{"trait_type": "Background", "value": "Red"},
          {"trait_type": "Eyes", "value": "Normal"}]
UNKNOWN = [{"trait_type": "Background", "value": "Purple"}]


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def engine(source):
    return RarityEngine(EngineConfig(), source=source)


class TestScoreItem:

    def test_rare_item(self, engine):
        item = engine.score_item("0xabc", RARE)
        assert isinstance(item, ItemRarity)
        assert [t.rarity for t in item.traits] == [pytest.approx(0.4), pytest.approx(0.01)]
        # hm ≈ 0.0195 → floored at 0.1 → raw 120 → clamped 100; floor 20 → no cap
        assert item.result.raw_trait_score == 100.0
        assert item.result.rarity_score == 100
        assert item.result.market_tier.cap == 100
        assert not item.stats_approximate

    def test_common_item_scores_lower(self, engine):
        rare = engine.score_item("0xabc", RARE)
        common = engine.score_item("0xabc", COMMON)
        assert common.result.rarity_score < rare.result.rarity_score
        assert 0 <= common.result.rarity_score <= 100

    def test_explicit_floor_skips_source(self, engine, source):
        item = engine.score_item("0xabc", RARE, floor_price=0.2)
        assert item.result.rarity_score == 45
        assert source.floor_calls == 0

    def test_unmeasured_item(self, engine):
        item = engine.score_item("0xabc", UNKNOWN)
        assert item.traits[0].rarity is None
        assert item.result.rarity_score is None
        assert item.result.rarity_percentile is None

    def test_stats_cached_across_items(self, engine, source):
        engine.score_item("0xabc", RARE)
        engine.score_item("0xabc", COMMON)
        engine.score_item("0xabc", UNKNOWN)
        assert source.summary_calls == 1
        assert engine.cache.stats()["hits"] == 2

    def test_approximate_supply_flagged(self):
        engine = RarityEngine(EngineConfig(), source=FakeSource(supply=None))
        item = engine.score_item("0xabc", RARE, floor_price=20)
        assert item.stats_approximate
        assert item.to_dict()["stats_approximate"] is True

    def test_prevalence_score(self, engine):
        # 100 - mean(0.4, 0.01) = 99.795
        assert engine.score_item("0xabc", RARE).prevalence_score == 100
        # unmeasured trait counts as 50% prevalence
        assert engine.score_item("0xabc", UNKNOWN).prevalence_score == 50
        assert engine.score_item("0xabc", []).prevalence_score is None

    def test_to_dict(self, engine):
        d = engine.score_item("0xabc", RARE).to_dict()
        assert d["prevalence_score"] == 100
        assert d["collection_id"] == "0xabc"
        assert d["traits"][0] == {"trait_type": "Background", "value": "Gold", "rarity": 0.4}
        assert d["rarity_score"] == 100
        assert d["floor_price"] == 20.0


class TestFloorPrice:

    def test_source_failure_degrades_to_lowest_tier(self):
        engine = RarityEngine(EngineConfig(),
                              source=FakeSource(floor=StatsUnavailable("0xabc", "HTTP 500")))
        assert engine.floor_price("0xabc") == 0.0
        item = engine.score_item("0xabc", RARE)
        assert item.result.rarity_score == 45

    def test_garbage_floor(self):
        engine = RarityEngine(EngineConfig(), source=FakeSource(floor="n/a"))
        assert engine.floor_price("0xabc") == 0.0

    def test_no_source(self):
        assert RarityEngine(EngineConfig()).floor_price("0xabc") == 0.0


class TestStats:

    def test_no_source_raises(self):
        engine = RarityEngine(EngineConfig())
        assert engine.source is None
        with pytest.raises(StatsUnavailable, match="no stats source"):
            engine.score_item("0xabc", RARE, floor_price=1)

    def test_explicit_supplier_without_source(self):
        engine = RarityEngine(EngineConfig())
        stats = compute_stats(SAMPLE_SUMMARY, 10000, "0xabc")
        item = engine.score_item("0xabc", RARE, floor_price=20, supplier=lambda: stats)
        assert item.result.rarity_score == 100
        # Cached now; no supplier needed
        assert engine.get_stats("0xabc") is stats

    def test_malformed_summary_propagates(self):
        engine = RarityEngine(EngineConfig(), source=FakeSource(summary={"T": ["a", "b"]}))
        with pytest.raises(AggregationError):
            engine.get_stats("0xabc")
        assert "0xabc" not in engine.cache

    def test_source_built_from_config(self):
        config = EngineConfig(summary_url="https://indexer.example/{collection_id}")
        engine = RarityEngine(config)
        assert isinstance(engine.source, HttpStatsSource)
        assert engine.source.configured

    def test_custom_market_tiers(self, source):
        config = EngineConfig(market_tiers=((1.0, 0.5, 50), (float("inf"), 1.0, 100)))
        engine = RarityEngine(config, source=source)
        assert engine.score_item("0xabc", RARE, floor_price=0.9).result.rarity_score == 50

    def test_bad_market_tiers_rejected(self):
        with pytest.raises(ValueError):
            RarityEngine(EngineConfig(market_tiers=((1.0, 0.5, 50),)))


class TestScoreCollection:

    def test_percentiles_ranked_within_batch(self, engine):
        scored = engine.score_collection("0xabc", {"1": RARE, "2": COMMON, "3": UNKNOWN})
        assert set(scored) == {"1", "2", "3"}
        assert scored["1"].result.rarity_percentile == 100
        assert scored["2"].result.rarity_percentile == 50
        assert scored["3"].result.rarity_percentile is None
        assert scored["3"].result.rarity_score is None
        assert scored["3"].prevalence_score == 50

    def test_scores_match_single_item(self, engine):
        batch = engine.score_collection("0xabc", {"1": RARE, "2": COMMON})
        single = engine.score_item("0xabc", COMMON)
        assert batch["2"].result.rarity_score == single.result.rarity_score

    def test_fetches_once(self, engine, source):
        engine.score_collection("0xabc", {str(i): RARE for i in range(10)})
        assert source.summary_calls == 1
        assert source.floor_calls == 1

    def test_empty_batch(self, engine):
        assert engine.score_collection("0xabc", {}) == {}
