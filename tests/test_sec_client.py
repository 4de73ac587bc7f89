"""Tests for the SEC client: cache, CIK resolution, error mapping."""

import pytest
import requests

import sec_series.sec_client as client_mod
from sec_series.sec_client import (
    COMPANY_FACTS_URL,
    SECClient,
    SECClientError,
    TTLCache,
    normalize_ticker,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error", response=self)

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON")
        return self._payload


TICKERS = {
    "0": {"cik_str": 320193, "ticker": "AAPL", "title": "Apple Inc."},
    "1": {"cik_str": 1067983, "ticker": "BRK-B", "title": "Berkshire Hathaway"},
    "2": {"cik_str": "bad", "ticker": "BAD"},
}


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(client_mod.time, "sleep", lambda s: None)


def stub_get(monkeypatch, responses):
    """Serve requests.get from a url → response (or list of responses) map."""
    calls = []

    def fake_get(url, headers=None, timeout=None):
        calls.append(url)
        resp = responses[url]
        if isinstance(resp, list):
            resp = resp.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp

    monkeypatch.setattr(client_mod.requests, "get", fake_get)
    return calls


# ── TTLCache ──────────────────────────────────────────────────────────

def test_cache_expires_entries():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    cache.set("k", {"v": 1}, ttl=10)
    assert cache.get("k") == {"v": 1}
    clock.now += 9.9
    assert cache.get("k") == {"v": 1}
    clock.now += 0.1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_cache_invalidate_and_clear():
    cache = TTLCache()
    cache.set("a", 1, ttl=60)
    cache.set("b", 2, ttl=60)
    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False
    cache.clear()
    assert cache.get("b") is None


# ── ticker / CIK ──────────────────────────────────────────────────────

def test_normalize_ticker():
    assert normalize_ticker(" brk.b ") == "BRK-B"
    assert normalize_ticker(None) == ""


def test_resolve_cik_numeric_skips_network(monkeypatch):
    calls = stub_get(monkeypatch, {})
    client = SECClient()
    assert client.resolve_cik("320193") == "0000320193"
    assert client.resolve_cik("CIK0000320193") == "0000320193"
    assert calls == []


def test_resolve_cik_from_ticker_map_is_cached(monkeypatch):
    calls = stub_get(monkeypatch, {client_mod.TICKERS_URL: FakeResponse(payload=TICKERS)})
    client = SECClient()
    assert client.resolve_cik("aapl") == "0000320193"
    assert client.resolve_cik("brk.b") == "0001067983"
    assert len(calls) == 1
    with pytest.raises(ValueError):
        client.resolve_cik("BAD")
    with pytest.raises(ValueError):
        client.resolve_cik("ZZZZ")


# ── requests and error mapping ────────────────────────────────────────

def test_company_facts_cached_per_cik(monkeypatch):
    url = COMPANY_FACTS_URL.format(cik="0000320193")
    payload = {"cik": 320193, "facts": {}}
    calls = stub_get(monkeypatch, {url: FakeResponse(payload=payload)})
    client = SECClient()
    assert client.get_company_facts("320193") == payload
    assert client.get_company_facts("CIK320193") == payload
    assert calls == [url]
    assert client.cache.invalidate("facts:0000320193")


def test_company_facts_404_is_empty(monkeypatch):
    url = COMPANY_FACTS_URL.format(cik="0000000001")
    stub_get(monkeypatch, {url: FakeResponse(404)})
    assert SECClient().get_company_facts("1") == {}


def test_retries_then_succeeds(monkeypatch):
    url = COMPANY_FACTS_URL.format(cik="0000000001")
    calls = stub_get(monkeypatch, {url: [FakeResponse(503), FakeResponse(payload={"ok": 1})]})
    assert SECClient().get_company_facts("1") == {"ok": 1}
    assert len(calls) == 2


def test_server_errors_exhaust_retries(monkeypatch):
    url = COMPANY_FACTS_URL.format(cik="0000000001")
    stub_get(monkeypatch, {url: [FakeResponse(500), FakeResponse(500), FakeResponse(500)]})
    with pytest.raises(SECClientError):
        SECClient().get_company_facts("1")


def test_connection_errors_exhaust_retries(monkeypatch):
    url = COMPANY_FACTS_URL.format(cik="0000000001")
    err = requests.exceptions.ConnectionError("down")
    stub_get(monkeypatch, {url: [err, err, err]})
    with pytest.raises(SECClientError) as info:
        SECClient().get_company_facts("1")
    assert info.value.__cause__ is err


def test_invalid_json(monkeypatch):
    url = COMPANY_FACTS_URL.format(cik="0000000001")
    stub_get(monkeypatch, {url: FakeResponse(payload=None)})
    with pytest.raises(SECClientError):
        SECClient().get_company_facts("1")


def test_fiscal_year_end_month(monkeypatch):
    url = client_mod.SUBMISSIONS_URL.format(cik="0000320193")
    stub_get(monkeypatch, {url: FakeResponse(payload={"fiscalYearEnd": "0927"})})
    assert SECClient().get_fiscal_year_end_month("320193") == 9


def test_fiscal_year_end_month_unavailable(monkeypatch):
    url = client_mod.SUBMISSIONS_URL.format(cik="0000320193")
    stub_get(monkeypatch, {url: FakeResponse(403)})
    assert SECClient().get_fiscal_year_end_month("320193") is None


# ── live ──────────────────────────────────────────────────────────────

@pytest.mark.integration
def test_live_resolve_and_facts():
    client = SECClient()
    assert client.resolve_cik("AAPL") == "0000320193"
    facts = client.get_company_facts("AAPL")
    assert "us-gaap" in facts["facts"]


@pytest.mark.integration
def test_live_fiscal_year_end():
    assert SECClient().get_fiscal_year_end_month("MSFT") == 6
