from __future__ import annotations

import ipaddress
import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict, replace
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Deque, Dict, List, Optional, Tuple

import requests
from flask import Flask, request

log = logging.getLogger(__name__)

ADMIN_PATH_PREFIXES = ("/admin", "/dashboard", "/login", "/logout")
LOCATION_FIELDS = ("country", "region", "city", "org")
GEOIP_CACHE_SIZE = 1024
GEOIP_WORKERS = 2


@dataclass(frozen=True)
class VisitEntry:
    ip: str
    timestamp: str
    path: str
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    org: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return asdict(self)


class VisitorLog:
    """Bounded, thread-safe visit store; newest entries are read first."""

    def __init__(self, capacity: int = 200):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: Deque[VisitEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def append(self, entry: VisitEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def recent(self, n: Optional[int] = None) -> List[VisitEntry]:
        with self._lock:
            newest_first = list(reversed(self._entries))
        return newest_first if n is None else newest_first[: max(n, 0)]

    def fill_location(self, entry: VisitEntry, location: Dict[str, Optional[str]]) -> bool:
        """Replace a stored entry with a copy carrying its location.

        Returns False when the entry has already been evicted.
        """
        with self._lock:
            for i, existing in enumerate(self._entries):
                if existing is entry:
                    self._entries[i] = replace(entry, **location)
                    return True
        return False


class GeoLocator:
    """Best-effort IP geolocation over an HTTP JSON lookup service.

    ``url_template`` contains ``{ip}``. The response may use ip-api.com
    names (country, regionName, city, org) or ipinfo.io ones (region).
    """

    def __init__(self, url_template: str, timeout: float = 2.0, session: Optional[requests.Session] = None):
        self.url_template = url_template
        self.timeout = timeout
        self.session = session or requests.Session()

    def lookup(self, ip: str) -> Dict[str, Optional[str]]:
        r = self.session.get(self.url_template.format(ip=ip), timeout=self.timeout)
        r.raise_for_status()
        data = r.json()
        if not isinstance(data, dict) or data.get("status") == "fail":
            return {}
        return {
            "country": data.get("country"),
            "region": data.get("regionName") or data.get("region"),
            "city": data.get("city"),
            "org": data.get("org") or data.get("isp"),
        }


def client_ip(req) -> str:
    forwarded = (req.headers.get("X-Forwarded-For") or "").strip()
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return req.remote_addr or ""


def _is_public(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return addr.is_global


class LocationResolver:
    """Fills in visit locations off the request path.

    Each public IP is looked up at most once while it stays in the cache.
    Visits from an IP whose lookup is still running wait for that lookup
    instead of starting another. Failed lookups are not cached.
    """

    def __init__(
        self,
        locator: GeoLocator,
        visitor_log: VisitorLog,
        cache_size: int = GEOIP_CACHE_SIZE,
        max_workers: int = GEOIP_WORKERS,
    ):
        self.locator = locator
        self.visitor_log = visitor_log
        self._lookup = lru_cache(maxsize=cache_size)(locator.lookup)
        self._waiting: Dict[str, List[VisitEntry]] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="geoip")

    def submit(self, entry: VisitEntry) -> None:
        if not _is_public(entry.ip):
            return
        with self._lock:
            waiting = self._waiting.get(entry.ip)
            if waiting is not None:
                waiting.append(entry)
                return
            self._waiting[entry.ip] = [entry]
        self._executor.submit(self._resolve, entry.ip)

    def _resolve(self, ip: str) -> None:
        try:
            found = self._lookup(ip)
        except Exception as e:  # the visit stays recorded without a location
            log.debug("Geolocation failed for %s: %s", ip, e)
            found = {}
        location = {k: (found.get(k) or None) for k in LOCATION_FIELDS}
        with self._lock:
            entries = self._waiting.pop(ip, [])
        if any(location.values()):
            for entry in entries:
                self.visitor_log.fill_location(entry, location)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def make_entry(ip: str, path: str) -> VisitEntry:
    return VisitEntry(
        ip=ip,
        timestamp=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        path=path,
    )


def register_visitor_logging(
    app: Flask,
    visitor_log: VisitorLog,
    locator: Optional[GeoLocator] = None,
    excluded: Tuple[str, ...] = ADMIN_PATH_PREFIXES,
) -> Optional[LocationResolver]:
    """Record every non-admin request; locations are filled in later."""
    resolver = LocationResolver(locator, visitor_log) if locator is not None else None

    @app.before_request
    def record_visit():
        path = request.path or "/"
        if path.startswith(excluded):
            return None
        try:
            entry = make_entry(client_ip(request), path)
            visitor_log.append(entry)
            if resolver is not None:
                resolver.submit(entry)
        except Exception:
            log.exception("Failed to record visit to %s", path)
        return None

    return resolver
