"""
Rarity Engine - Stats Source

Inbound adapters for the two capabilities the engine consumes:

    fetch_attribute_summary(collection_id) -> payload with trait counts
    fetch_floor_price(collection_id)       -> float

Any object with those two methods satisfies StatsSource. HttpStatsSource is
a provider-agnostic implementation over plain JSON endpoints configured by
URL template ("{collection_id}" is substituted per request).

The parse_* helpers normalize the payload shapes indexers commonly return
(camelCase or snake_case, marketplace-keyed floor prices).
"""

import logging
import time
from typing import Mapping, Optional, Protocol, Sequence, Tuple

import requests

from config import (
    FLOOR_PRICE_MARKETPLACES,
    STATS_SOURCE_API_KEY,
    STATS_SOURCE_API_KEY_HEADER,
    STATS_SOURCE_FLOOR_URL,
    STATS_SOURCE_SUMMARY_URL,
    STATS_SOURCE_TIMEOUT,
)
from score_normalizer import normalize_floor_price
from stats_cache import StatsUnavailable
from trait_stats import AggregationError

logger = logging.getLogger(__name__)


class StatsSource(Protocol):
    def fetch_attribute_summary(self, collection_id: str): ...

    def fetch_floor_price(self, collection_id: str) -> float: ...


# ─── Payload parsing ─────────────────────────────────

def parse_attribute_summary(payload) -> Tuple[dict, Optional[object]]:
    """Split an attribute summary payload into (counts, total_supply).

    Accepts {"summary": {...}, "totalSupply": n} (or "total_supply"), or a
    bare {trait_type: {value: count}} mapping with no supply. The supply is
    returned as-is; compute_stats decides whether it is usable.
    """
    if payload is None:
        return {}, None
    if not isinstance(payload, Mapping):
        raise AggregationError(
            f"attribute summary payload must be a mapping, got {type(payload).__name__}")

    if "summary" in payload:
        counts = payload.get("summary") or {}
        supply = payload.get("totalSupply", payload.get("total_supply"))
        return counts, supply
    return dict(payload), None


def parse_floor_price(payload,
                      marketplaces: Sequence[str] = FLOOR_PRICE_MARKETPLACES) -> float:
    """Extract one floor price from a feed payload.

    Accepts a bare number, {"floorPrice": x} / {"floor_price": x}, or a
    marketplace-keyed payload like {"openSea": {"floorPrice": x}}. The first
    marketplace in preference order with a positive floor wins. Anything
    unusable is 0.0.
    """
    if not isinstance(payload, Mapping):
        return normalize_floor_price(payload)

    for key in ("floorPrice", "floor_price"):
        if key in payload:
            return normalize_floor_price(payload[key])

    for market in marketplaces:
        entry = payload.get(market)
        if isinstance(entry, Mapping):
            price = parse_floor_price(entry, marketplaces=())
            if price > 0:
                return price
    return 0.0


# ─── HTTP source ─────────────────────────────────────

class HttpStatsSource:
    """Fetches attribute summaries and floor prices from JSON endpoints."""

    _RETRY_DELAY = 1.0

    def __init__(self, summary_url: str = STATS_SOURCE_SUMMARY_URL,
                 floor_url: str = STATS_SOURCE_FLOOR_URL,
                 api_key: str = STATS_SOURCE_API_KEY,
                 api_key_header: str = STATS_SOURCE_API_KEY_HEADER,
                 timeout: float = STATS_SOURCE_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.summary_url = summary_url
        self.floor_url = floor_url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "RarityEngine/1.0"})
        if api_key:
            self._session.headers.update({api_key_header: api_key})

    @property
    def configured(self) -> bool:
        return bool(self.summary_url)

    def fetch_attribute_summary(self, collection_id: str):
        if not self.summary_url:
            raise StatsUnavailable(collection_id, "no attribute summary URL configured")
        return self._get_json(self.summary_url, collection_id)

    def fetch_floor_price(self, collection_id: str) -> float:
        if not self.floor_url:
            return 0.0
        return parse_floor_price(self._get_json(self.floor_url, collection_id))

    def _get_json(self, template: str, collection_id: str):
        """GET a JSON document. Retries once on connection errors / timeouts."""
        url = template.format(collection_id=collection_id)
        for attempt in range(2):
            try:
                resp = self._session.get(url, timeout=self.timeout)
                if resp.status_code != 200:
                    logger.warning(f"StatsSource: {url} returned HTTP {resp.status_code}")
                    raise StatsUnavailable(collection_id, f"HTTP {resp.status_code}")
                return resp.json()
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt == 0:
                    logger.warning(f"StatsSource: {type(e).__name__}, retrying in "
                                   f"{self._RETRY_DELAY:.0f}s")
                    time.sleep(self._RETRY_DELAY)
                    continue
                logger.warning(f"StatsSource: request failed after retry: {e}")
                raise StatsUnavailable(collection_id, f"{type(e).__name__}: {e}") from e
            except ValueError as e:
                raise StatsUnavailable(collection_id, f"invalid JSON from {url}") from e
