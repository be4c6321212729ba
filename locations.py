# locations.py
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Callable

import requests

import config

logger = logging.getLogger(__name__)

USER_AGENT = "TimeTracker/1.0"


def cache_key(lat: float, lng: float) -> str:
    return f"{lat:.6f},{lng:.6f}"


def coordinates_label(lat: float, lng: float) -> str:
    return f"{lat:.6f}, {lng:.6f}"


class LocationNameCache:
    """Bounded least-recently-used store of resolved place names.

    Owned by whoever resolves locations (one per export, one per UI session).
    """
    def __init__(self, maxsize: int = 512):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.maxsize = maxsize
        self._items: OrderedDict[str, str] = OrderedDict()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def get(self, key: str) -> str | None:
        if key not in self._items:
            return None
        self._items.move_to_end(key)
        return self._items[key]

    def set(self, key: str, value: str) -> None:
        self._items[key] = value
        self._items.move_to_end(key)
        while len(self._items) > self.maxsize:
            self._items.popitem(last=False)


def fetch_nominatim(lat: float, lng: float) -> dict:
    response = requests.get(
        config.NOMINATIM_URL,
        params={"format": "json", "lat": lat, "lon": lng, "zoom": 18, "addressdetails": 1},
        headers={"User-Agent": USER_AGENT},
        timeout=config.GEOCODE_TIMEOUT,
    )
    response.raise_for_status()
    return response.json()


def place_name(data: dict) -> str | None:
    """Short street / neighbourhood / city label from a Nominatim reply."""
    if not data or not data.get("display_name"):
        return None
    address = data.get("address") or {}

    parts = []
    if address.get("road") and address.get("house_number"):
        parts.append(f"{address['road']} {address['house_number']}")
    elif address.get("road"):
        parts.append(address["road"])

    district = address.get("neighbourhood") or address.get("suburb")
    if district:
        parts.append(district)

    city = address.get("city") or address.get("town") or address.get("village")
    if city:
        parts.append(city)

    if not parts:
        return " ".join(p.strip() for p in data["display_name"].split(",")[:2])
    return " ".join(parts)


class LocationResolver:
    """Turns punch coordinates into place names, falling back to the coordinates."""
    def __init__(
        self,
        cache: LocationNameCache | None = None,
        fetch: Callable[[float, float], dict] = fetch_nominatim,
    ):
        self.cache = cache if cache is not None else LocationNameCache()
        self.fetch = fetch

    def resolve(self, lat: float, lng: float) -> str:
        key = cache_key(lat, lng)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            name = place_name(self.fetch(lat, lng))
        except requests.Timeout:
            logger.warning("Reverse geocoding timed out for %s", key)
            name = None
        except (requests.RequestException, ValueError) as e:
            logger.warning("Reverse geocoding failed for %s: %s", key, e)
            name = None

        name = name or coordinates_label(lat, lng)
        self.cache.set(key, name)
        return name
