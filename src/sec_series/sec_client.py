"""SEC EDGAR API client for the fundamentals routes.

Uses only public SEC endpoints (no API key needed, just User-Agent header):
  - company_tickers.json                  — ticker→CIK resolution
  - submissions/CIK{cik}.json             — entity info incl. fiscalYearEnd
  - api/xbrl/companyfacts/CIK{cik}.json   — ALL XBRL facts for a company

Rate limited to 8 req/sec per SEC guidelines. Responses are memoized in
an injectable TTLCache; the series extractor never sees the cache.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

import requests

from sec_series.facts import COMPANY_FACTS_URL
from sec_series.fiscal import fiscal_year_end_from_submissions

log = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════════

SEC_BASE = "https://www.sec.gov"
DATA_BASE = "https://data.sec.gov"
TICKERS_URL = f"{SEC_BASE}/files/company_tickers.json"
SUBMISSIONS_URL = f"{DATA_BASE}/submissions/CIK{{cik}}.json"

# SEC requires a descriptive User-Agent with contact email
DEFAULT_USER_AGENT = "sec-series sec-series@example.com"

# Rate limiting: SEC allows up to 10 req/s; we use 8 to stay safe
MAX_REQUESTS_PER_SECOND = 8.0
MIN_REQUEST_INTERVAL = 1.0 / MAX_REQUESTS_PER_SECOND

# Default cache TTLs (seconds); Settings overrides these
TICKERS_CACHE_TTL = 1800
FACTS_CACHE_TTL = 300
SUBMISSIONS_CACHE_TTL = 120


class SECClientError(RuntimeError):
    """An SEC endpoint could not be reached or returned an error."""


# ═══════════════════════════════════════════════════════════════════════════
#  Cache
# ═══════════════════════════════════════════════════════════════════════════

class TTLCache:
    """Key → (value, expiry) store with caller-controlled invalidation."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expiry = entry
            if self._clock() >= expiry:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# ═══════════════════════════════════════════════════════════════════════════
#  SEC EDGAR Client
# ═══════════════════════════════════════════════════════════════════════════

def normalize_ticker(ticker: str) -> str:
    """SEC lists share classes with dashes: "brk.b" → "BRK-B"."""
    return (ticker or "").strip().upper().replace(".", "-")


class SECClient:
    """Direct HTTP client for the SEC endpoints the series routes need.

    Thread-safe request pacing; memoization through ``cache``.
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        cache: TTLCache | None = None,
        *,
        tickers_ttl: float = TICKERS_CACHE_TTL,
        facts_ttl: float = FACTS_CACHE_TTL,
        submissions_ttl: float = SUBMISSIONS_CACHE_TTL,
    ):
        self.user_agent = user_agent
        self.headers = {
            "User-Agent": user_agent,
            "Accept-Encoding": "gzip, deflate",
        }
        self.cache = cache if cache is not None else TTLCache()
        self.tickers_ttl = tickers_ttl
        self.facts_ttl = facts_ttl
        self.submissions_ttl = submissions_ttl
        # Rate limiter state
        self._last_request_time = 0.0
        self._rate_lock = threading.Lock()

    # ── Rate-limited HTTP request ─────────────────────────────────────

    def _request(self, url: str, timeout: int = 30, retries: int = 2) -> requests.Response:
        """GET with rate limiting and retry on 429/5xx and connection errors.

        Raises SECClientError once retries are exhausted or on any other
        HTTP error; the caller sees the status code in ``__cause__``.
        """
        last_exc: Exception | None = None
        for attempt in range(1 + retries):
            with self._rate_lock:
                elapsed = time.time() - self._last_request_time
                if elapsed < MIN_REQUEST_INTERVAL:
                    time.sleep(MIN_REQUEST_INTERVAL - elapsed)
                self._last_request_time = time.time()

            try:
                resp = requests.get(url, headers=self.headers, timeout=timeout)
                if resp.status_code in (429, 500, 502, 503, 504) and attempt < retries:
                    wait = min(2 ** attempt, 8)
                    log.warning("SEC %d for %s, retrying in %ds", resp.status_code, url, wait)
                    time.sleep(wait)
                    continue
                resp.raise_for_status()
                return resp
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
                last_exc = exc
                if attempt < retries:
                    wait = min(2 ** attempt, 8)
                    log.warning("Network error, retrying in %ds: %s", wait, exc)
                    time.sleep(wait)
                    continue
            except requests.exceptions.HTTPError as exc:
                raise SECClientError(f"SEC request failed: {exc}") from exc

        raise SECClientError(f"Failed after {retries + 1} attempts: {url}") from last_exc

    def _request_json(self, url: str, timeout: int = 30) -> dict:
        """GET request that returns parsed JSON."""
        try:
            return self._request(url, timeout=timeout).json()
        except ValueError as exc:
            raise SECClientError(f"Invalid JSON from {url}") from exc

    # ── Ticker → CIK resolution ──────────────────────────────────────

    def _get_tickers_map(self) -> dict[str, str]:
        """Uppercase ticker → zero-padded CIK, from company_tickers.json."""
        cached = self.cache.get("tickers")
        if cached is not None:
            return cached

        log.info("Fetching SEC company_tickers.json (cached for %ds)", self.tickers_ttl)
        raw = self._request_json(TICKERS_URL)
        mapping: dict[str, str] = {}
        for entry in raw.values() if isinstance(raw, dict) else ():
            if not isinstance(entry, dict):
                continue
            ticker = normalize_ticker(str(entry.get("ticker", "")))
            cik = str(entry.get("cik_str", "")).strip()
            if ticker and cik.isdigit():
                mapping[ticker] = cik.zfill(10)
        self.cache.set("tickers", mapping, self.tickers_ttl)
        log.info("Loaded %d tickers", len(mapping))
        return mapping

    def resolve_cik(self, ticker_or_cik: str) -> str:
        """Resolve a ticker symbol or CIK number to a zero-padded CIK string.

        Accepts: "AAPL", "brk.b", "320193", "CIK0000320193"
        Returns: "0000320193"
        Raises ValueError for an unknown ticker.
        """
        clean = (ticker_or_cik or "").strip().upper()
        if clean.startswith("CIK"):
            clean = clean[3:]
        if clean.isdigit():
            return clean.zfill(10)

        cik = self._get_tickers_map().get(normalize_ticker(clean))
        if cik is None:
            raise ValueError(f"Could not resolve '{ticker_or_cik}' to a CIK number")
        return cik

    # ── Company facts / submissions ──────────────────────────────────

    def get_company_facts(self, ticker_or_cik: str) -> dict:
        """Fetch ALL XBRL facts for a company.

        Structure: {
            "cik": 320193,
            "entityName": "Apple Inc",
            "facts": {"us-gaap": {"Revenues": {"units": {"USD": [...]}}}, ...}
        }

        Returns {} when the SEC has no XBRL facts for the filer (404).
        """
        cik = self.resolve_cik(ticker_or_cik)
        key = f"facts:{cik}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        url = COMPANY_FACTS_URL.format(cik=cik)
        log.info("Fetching XBRL companyfacts for CIK %s", cik)
        try:
            data = self._request_json(url, timeout=60)
        except SECClientError as exc:
            resp = getattr(exc.__cause__, "response", None)
            if resp is not None and resp.status_code == 404:
                log.warning("No XBRL companyfacts for CIK %s (404)", cik)
                return {}
            raise

        self.cache.set(key, data, self.facts_ttl)
        return data

    def get_submissions(self, ticker_or_cik: str) -> dict:
        cik = self.resolve_cik(ticker_or_cik)
        key = f"submissions:{cik}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        data = self._request_json(SUBMISSIONS_URL.format(cik=cik))
        self.cache.set(key, data, self.submissions_ttl)
        return data

    def get_fiscal_year_end_month(self, ticker_or_cik: str) -> int | None:
        """Fiscal-year-end month from submissions ``fiscalYearEnd`` ("0930" → 9).

        None when submissions are unavailable; callers fall back to
        detecting it from the facts.
        """
        try:
            data = self.get_submissions(ticker_or_cik)
        except SECClientError as exc:
            log.warning("Submissions unavailable for %s: %s", ticker_or_cik, exc)
            return None
        return fiscal_year_end_from_submissions(data.get("fiscalYearEnd"))


# ═══════════════════════════════════════════════════════════════════════════
#  Module-level singleton — shared across the app
# ═══════════════════════════════════════════════════════════════════════════

_client: SECClient | None = None


def get_sec_client() -> SECClient:
    """Get or create the shared SECClient singleton.

    Reads EDGAR_IDENTITY and cache TTLs from config.
    """
    global _client
    if _client is None:
        from sec_series.config import get_config
        config = get_config()
        _client = SECClient(
            user_agent=config.edgar_identity,
            tickers_ttl=config.tickers_cache_ttl,
            facts_ttl=config.facts_cache_ttl,
            submissions_ttl=config.submissions_cache_ttl,
        )
    return _client
