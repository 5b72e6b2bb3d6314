"""Tests for stats_source.py — payload parsing and the HTTP source."""

from unittest import mock

import pytest
import requests

from stats_cache import StatsUnavailable
from stats_source import HttpStatsSource, parse_attribute_summary, parse_floor_price
from trait_stats import AggregationError


# ── Payload parsing ──────────────────────────────────────

class TestParseAttributeSummary:

    def test_wrapped_payload(self):
        payload = {"summary": {"Eyes": {"Laser": 3}}, "totalSupply": "5000"}
        counts, supply = parse_attribute_summary(payload)
        assert counts == {"Eyes": {"Laser": 3}}
        assert supply == "5000"

    def test_snake_case_supply(self):
        counts, supply = parse_attribute_summary({"summary": {}, "total_supply": 77})
        assert counts == {}
        assert supply == 77

    def test_missing_summary_body(self):
        counts, supply = parse_attribute_summary({"summary": None, "totalSupply": 10})
        assert counts == {}

    def test_bare_counts(self):
        counts, supply = parse_attribute_summary({"Eyes": {"Laser": 3}})
        assert counts == {"Eyes": {"Laser": 3}}
        assert supply is None

    def test_none(self):
        assert parse_attribute_summary(None) == ({}, None)

    def test_malformed(self):
        with pytest.raises(AggregationError):
            parse_attribute_summary(["not", "a", "mapping"])


class TestParseFloorPrice:

    def test_bare_number(self):
        assert parse_floor_price(1.25) == 1.25

    def test_flat_keys(self):
        assert parse_floor_price({"floorPrice": 4.2}) == 4.2
        assert parse_floor_price({"floor_price": "0.8"}) == 0.8

    def test_marketplace_preference(self):
        payload = {
            "openSea": {"floorPrice": 2.1, "priceCurrency": "ETH"},
            "looksRare": {"floorPrice": 1.9, "priceCurrency": "ETH"},
        }
        assert parse_floor_price(payload) == 2.1
        assert parse_floor_price(payload, marketplaces=("looksRare", "openSea")) == 1.9

    def test_falls_through_to_next_marketplace(self):
        payload = {"openSea": {"error": "unavailable"}, "looksRare": {"floorPrice": 0.3}}
        assert parse_floor_price(payload) == 0.3

    @pytest.mark.parametrize("payload", [None, {}, {"openSea": None}, "??", {"floorPrice": -2}])
    def test_unusable_is_zero(self, payload):
        assert parse_floor_price(payload) == 0.0


# ── HTTP source ──────────────────────────────────────────

def _response(status=200, json_data=None, json_error=None):
    resp = mock.Mock()
    resp.status_code = status
    if json_error is not None:
        resp.json.side_effect = json_error
    else:
        resp.json.return_value = json_data
    return resp


@pytest.fixture
def session():
    s = mock.Mock(spec=requests.Session)
    s.headers = {}
    return s


@pytest.fixture
def source(session):
    return HttpStatsSource(
        summary_url="https://indexer.example/{collection_id}/attributes",
        floor_url="https://indexer.example/{collection_id}/floor",
        api_key="secret",
        timeout=3.0,
        session=session,
    )


class TestHttpStatsSource:

    def test_headers(self, source, session):
        assert session.headers["x-api-key"] == "secret"
        assert session.headers["User-Agent"].startswith("RarityEngine/")

    def test_fetch_summary(self, source, session):
        payload = {"summary": {"Eyes": {"Laser": 1}}, "totalSupply": 10}
        session.get.return_value = _response(json_data=payload)
        assert source.fetch_attribute_summary("0xabc") == payload
        session.get.assert_called_once_with(
            "https://indexer.example/0xabc/attributes", timeout=3.0)

    def test_fetch_floor(self, source, session):
        session.get.return_value = _response(json_data={"openSea": {"floorPrice": 6.5}})
        assert source.fetch_floor_price("0xabc") == 6.5

    def test_http_error(self, source, session):
        session.get.return_value = _response(status=503)
        with pytest.raises(StatsUnavailable, match="HTTP 503"):
            source.fetch_attribute_summary("0xabc")

    def test_bad_json(self, source, session):
        session.get.return_value = _response(json_error=ValueError("no json"))
        with pytest.raises(StatsUnavailable, match="invalid JSON"):
            source.fetch_attribute_summary("0xabc")

    @mock.patch("stats_source.time.sleep")
    def test_retries_once_on_connection_error(self, sleep, source, session):
        session.get.side_effect = [
            requests.ConnectionError("reset"),
            _response(json_data={"summary": {}}),
        ]
        assert source.fetch_attribute_summary("0xabc") == {"summary": {}}
        assert session.get.call_count == 2
        sleep.assert_called_once()

    @mock.patch("stats_source.time.sleep")
    def test_gives_up_after_retry(self, sleep, source, session):
        session.get.side_effect = requests.Timeout("slow")
        with pytest.raises(StatsUnavailable) as exc_info:
            source.fetch_attribute_summary("0xabc")
        assert session.get.call_count == 2
        assert isinstance(exc_info.value.__cause__, requests.Timeout)

    def test_unconfigured(self, session):
        src = HttpStatsSource(summary_url="", floor_url="", api_key="", session=session)
        assert not src.configured
        with pytest.raises(StatsUnavailable):
            src.fetch_attribute_summary("0xabc")
        assert src.fetch_floor_price("0xabc") == 0.0
        session.get.assert_not_called()
        assert "x-api-key" not in session.headers
