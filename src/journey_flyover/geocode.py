"""Resolve place names to coordinates via Nominatim, with a disk cache."""

import hashlib
import json
import logging
from pathlib import Path
from typing import Optional

import requests

from .errors import InputError

logger = logging.getLogger(__name__)

NOMINATIM_ENDPOINTS = [
    "https://nominatim.openstreetmap.org/search",
]
GEOCODE_CACHE_DIR = Path.home() / ".cache" / "journey-flyover" / "geocode"
USER_AGENT = "journey-flyover/0.1.0 (https://github.com/journey-flyover)"


def _query_key(query: str) -> str:
    """Deterministic cache key for a place query."""
    raw = " ".join(query.lower().split())
    return hashlib.md5(raw.encode()).hexdigest()[:12]


class Geocoder:
    """Looks up place names one at a time, caching every hit on disk."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        cache_dir: Optional[Path] = None,
        endpoints: Optional[list[str]] = None,
    ):
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = USER_AGENT
        self.session = session
        self.cache_dir = cache_dir if cache_dir is not None else GEOCODE_CACHE_DIR
        self.endpoints = endpoints or NOMINATIM_ENDPOINTS

    def _read_cache(self, key: str) -> Optional[tuple[float, float]]:
        cache_path = self.cache_dir / f"{key}.json"
        if not cache_path.exists():
            return None
        try:
            payload = json.loads(cache_path.read_text())
            return float(payload["lat"]), float(payload["lng"])
        except (ValueError, KeyError, TypeError) as e:
            logger.debug("Corrupt geocode cache %s: %s", cache_path, e)
            return None

    def _write_cache(self, key: str, query: str, lat: float, lng: float) -> None:
        cache_path = self.cache_dir / f"{key}.json"
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(json.dumps({"query": query, "lat": lat, "lng": lng}))

    def lookup(self, query: str) -> tuple[float, float]:
        """Return (lat, lng) for a place name or raise InputError."""
        query = query.strip()
        if not query:
            raise InputError("Empty place name.")
        key = _query_key(query)
        cached = self._read_cache(key)
        if cached is not None:
            return cached

        results = None
        for endpoint in self.endpoints:
            try:
                resp = self.session.get(
                    endpoint,
                    params={"q": query, "format": "json", "limit": 1},
                    timeout=20,
                )
                resp.raise_for_status()
                results = resp.json()
                break
            except (requests.RequestException, ValueError) as e:
                logger.warning("Geocoding %r via %s failed: %s", query, endpoint, e)
                continue

        if results is None:
            raise InputError(f"Could not geocode {query!r}: no geocoding service reachable.")
        if not results:
            raise InputError(f"Could not find location: {query!r}")

        lat, lng = float(results[0]["lat"]), float(results[0]["lon"])
        self._write_cache(key, query, lat, lng)
        logger.info("Geocoded %r -> (%.4f, %.4f)", query, lat, lng)
        return lat, lng
