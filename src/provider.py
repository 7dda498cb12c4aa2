"""
NAV provider client for mfapi.in.
Fetches raw scheme payloads ({meta, data: [{date, nav}, ...]}, newest first)
and keeps them in an injectable TTL cache.
"""
from __future__ import annotations

import json
import logging
import os
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Callable

from errors import DataUnavailableError, UpstreamError

logger = logging.getLogger(__name__)

MFAPI_URL = os.environ.get("NAVCALC_MFAPI_URL", "https://api.mfapi.in/mf")
FETCH_TIMEOUT_SECONDS = float(os.environ.get("NAVCALC_FETCH_TIMEOUT", "60"))
CACHE_TTL_SECONDS = float(os.environ.get("NAVCALC_CACHE_TTL", str(12 * 60 * 60)))

REQUEST_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept": "application/json",
}


class TTLCache:
    """Key -> value store where every entry expires after a time-to-live."""

    def __init__(self, ttl_seconds: float = CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expire_at = entry
        if self._clock() > expire_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        now = self._clock()
        self.prune(now)
        self._entries[key] = (value, now + ttl)

    def prune(self, now: float | None = None) -> None:
        """Drop every expired entry."""
        now = self._clock() if now is None else now
        expired = [k for k, (_, expire_at) in self._entries.items() if now > expire_at]
        for key in expired:
            del self._entries[key]

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class NavProvider:
    """Fetches scheme payloads from the upstream NAV API.

    Transport failures are translated into UpstreamError (timeouts flagged
    separately); an unknown scheme becomes DataUnavailableError. No retries.
    """

    def __init__(
        self,
        base_url: str = MFAPI_URL,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        cache: TTLCache | None = None,
        opener: Callable[..., Any] = urllib.request.urlopen,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache = cache
        self._opener = opener

    def scheme_url(self, code: str) -> str:
        return f"{self.base_url}/{urllib.parse.quote(str(code).strip(), safe='')}"

    def fetch_scheme(self, code: str) -> dict:
        cache_key = f"scheme:{code}"
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Cache hit for scheme %s", code)
                return cached

        url = self.scheme_url(code)
        logger.info("Fetching scheme %s from %s", code, url)
        req = urllib.request.Request(url, headers=REQUEST_HEADERS)
        try:
            with self._opener(req, timeout=self.timeout) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            if e.code == 404:
                raise DataUnavailableError(
                    f"NAV Data Error: Scheme {code} was not found at the NAV provider.",
                    schemeCode=str(code),
                ) from e
            logger.warning("NAV provider answered HTTP %s for scheme %s", e.code, code)
            raise UpstreamError(
                f"Upstream Error: The NAV provider answered HTTP {e.code}.",
                schemeCode=str(code),
                upstreamStatus=e.code,
            ) from e
        except TimeoutError as e:
            logger.warning("NAV provider timed out for scheme %s", code)
            raise _timeout_error(code) from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, TimeoutError):
                logger.warning("NAV provider timed out for scheme %s", code)
                raise _timeout_error(code) from e
            logger.warning("NAV provider unreachable for scheme %s: %s", code, e.reason)
            raise UpstreamError(
                f"Upstream Error: The NAV provider could not be reached ({e.reason}).",
                schemeCode=str(code),
            ) from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise UpstreamError(
                "Upstream Error: The NAV provider returned a malformed response.",
                schemeCode=str(code),
            ) from e

        if not isinstance(payload, dict):
            raise UpstreamError(
                "Upstream Error: The NAV provider returned a malformed response.",
                schemeCode=str(code),
            )

        # Empty payloads are not cached so a later fetch can pick up new data.
        if self.cache is not None and payload.get("data"):
            self.cache.set(cache_key, payload)
        return payload


def _timeout_error(code: str) -> UpstreamError:
    return UpstreamError(
        "Request Timeout: The external API took too long to respond. Please try again.",
        timeout=True,
        schemeCode=str(code),
        details="The mutual fund data provider is experiencing delays.",
    )


_default_provider: NavProvider | None = None


def get_default_provider() -> NavProvider:
    """Process-wide provider with a 12 hour response cache."""
    global _default_provider
    if _default_provider is None:
        _default_provider = NavProvider(cache=TTLCache())
    return _default_provider
