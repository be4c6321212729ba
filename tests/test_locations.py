import logging

import pytest
import requests

import locations
from locations import (
    LocationNameCache,
    LocationResolver,
    cache_key,
    coordinates_label,
    place_name,
)

LISBON = (38.7105, -9.1385)

NOMINATIM_REPLY = {
    "display_name": "12, Rua Augusta, Baixa, Santa Maria Maior, Lisboa, Portugal",
    "address": {
        "house_number": "12",
        "road": "Rua Augusta",
        "suburb": "Santa Maria Maior",
        "city": "Lisboa",
    },
}


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


def test_cache_key_and_label_use_six_decimals():
    assert cache_key(38.7, -9.1) == "38.700000,-9.100000"
    assert coordinates_label(38.7, -9.1) == "38.700000, -9.100000"


def test_cache_evicts_least_recently_used():
    cache = LocationNameCache(maxsize=2)
    cache.set("a", "A")
    cache.set("b", "B")
    assert cache.get("a") == "A"
    cache.set("c", "C")
    assert "b" not in cache
    assert "a" in cache and "c" in cache
    assert len(cache) == 2


def test_cache_rejects_empty_size():
    with pytest.raises(ValueError):
        LocationNameCache(maxsize=0)


@pytest.mark.parametrize("reply, expected", [
    (NOMINATIM_REPLY, "Rua Augusta 12 Santa Maria Maior Lisboa"),
    ({"display_name": "x", "address": {"road": "Avenida da Liberdade", "town": "Cascais"}},
     "Avenida da Liberdade Cascais"),
    ({"display_name": "x", "address": {"neighbourhood": "Alfama", "suburb": "ignored", "village": "Aldeia"}},
     "Alfama Aldeia"),
    ({"display_name": "Parque Natural, Sintra, Portugal", "address": {}}, "Parque Natural Sintra"),
    ({}, None),
    ({"address": {"road": "Rua"}}, None),
])
def test_place_name(reply, expected):
    assert place_name(reply) == expected


def test_resolver_caches_lookups():
    calls = []

    def fetch(lat, lng):
        calls.append((lat, lng))
        return NOMINATIM_REPLY

    resolver = LocationResolver(fetch=fetch)
    assert resolver.resolve(*LISBON) == "Rua Augusta 12 Santa Maria Maior Lisboa"
    assert resolver.resolve(*LISBON) == "Rua Augusta 12 Santa Maria Maior Lisboa"
    assert len(calls) == 1


def test_resolvers_sharing_a_cache():
    cache = LocationNameCache()
    LocationResolver(cache, fetch=lambda lat, lng: NOMINATIM_REPLY).resolve(*LISBON)

    def fail(lat, lng):
        raise AssertionError("should have been cached")

    assert LocationResolver(cache, fetch=fail).resolve(*LISBON).startswith("Rua Augusta")


@pytest.mark.parametrize("error", [requests.ConnectionError("down"), requests.Timeout("slow"), ValueError("bad json")])
def test_resolver_falls_back_to_coordinates(error, caplog):
    def fetch(lat, lng):
        raise error

    resolver = LocationResolver(fetch=fetch)
    with caplog.at_level(logging.WARNING, logger="locations"):
        assert resolver.resolve(*LISBON) == "38.710500, -9.138500"
    assert "Reverse geocoding" in caplog.text
    assert cache_key(*LISBON) in resolver.cache


def test_resolver_falls_back_on_empty_reply():
    resolver = LocationResolver(fetch=lambda lat, lng: {})
    assert resolver.resolve(*LISBON) == "38.710500, -9.138500"


def test_fetch_nominatim_sends_query(monkeypatch):
    seen = {}

    def fake_get(url, params=None, headers=None, timeout=None):
        seen.update(url=url, params=params, headers=headers, timeout=timeout)
        return FakeResponse(NOMINATIM_REPLY)

    monkeypatch.setattr(locations.requests, "get", fake_get)
    assert locations.fetch_nominatim(*LISBON) == NOMINATIM_REPLY
    assert seen["params"]["lat"] == LISBON[0]
    assert seen["params"]["lon"] == LISBON[1]
    assert seen["params"]["format"] == "json"
    assert "User-Agent" in seen["headers"]
    assert seen["timeout"] == locations.config.GEOCODE_TIMEOUT


def test_http_error_falls_back_to_coordinates(monkeypatch):
    monkeypatch.setattr(locations.requests, "get", lambda *a, **kw: FakeResponse({}, status=503))
    assert LocationResolver().resolve(*LISBON) == "38.710500, -9.138500"
