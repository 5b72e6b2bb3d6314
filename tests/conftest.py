"""Shared fixtures for the rarity engine test suite."""

import sys
import logging
from pathlib import Path

import pytest

# Ensure src/ is importable
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from trait_stats import compute_stats
from trait_rarity import Trait

logger = logging.getLogger(__name__)


# ── Sample data ──────────────────────────────────────────

SAMPLE_SUMMARY = {
    "Background": {"Blue": 2500, "Gold": 40, "Red": 7460},
    "Eyes": {"Laser": 10, "Normal": 9990},
    "Hat": {"Crown": 1, "None": 9999},
}


# ── Fixtures ─────────────────────────────────────────────

@pytest.fixture
def sample_stats():
    """Stats for a 10k collection with a few rare trait values."""
    return compute_stats(SAMPLE_SUMMARY, 10000, "0xsample")


# ── Helper factories ─────────────────────────────────────

def make_trait(rarity, trait_type="Background", value="x"):
    """Shorthand for a resolved Trait with a given exact rarity."""
    return Trait(trait_type=trait_type, value=value,
                 rarity=None if rarity is None else round(rarity, 2),
                 exact_rarity=rarity)


def make_stats(summary=None, supply=10000, collection_id="0xtest"):
    return compute_stats(summary or SAMPLE_SUMMARY, supply, collection_id)
