"""Tests for the concept map and fact extraction."""

from sec_series.xbrl_mappings import (
    AVERAGE_METRICS,
    CONCEPT_MAP,
    INSTANT_METRICS,
    STATEMENT_SECTIONS,
    extract_fact_items,
    extract_first_available,
    extract_freshest,
    unit_for,
)


def _fact(unit, rows):
    return {"label": "x", "units": {unit: rows}}


# ── CONCEPT_MAP ───────────────────────────────────────────────────────

def test_concept_map_covers_all_statements():
    for key in ("revenue", "operating_income", "net_income", "eps_diluted",
                "total_assets", "total_liabilities", "total_equity",
                "cash_and_equivalents", "long_term_debt",
                "operating_cash_flow", "capex", "investing_cash_flow",
                "financing_cash_flow", "diluted_shares"):
        assert CONCEPT_MAP[key], key


def test_concept_map_fallback_lists_are_short_and_unique():
    assert len(CONCEPT_MAP) >= 45
    for key, concepts in CONCEPT_MAP.items():
        assert 1 <= len(concepts) <= 4, key
        assert len(set(concepts)) == len(concepts), key


def test_key_metrics_have_fallbacks():
    assert len(CONCEPT_MAP["revenue"]) >= 2
    assert len(CONCEPT_MAP["short_term_investments"]) >= 2
    assert len(CONCEPT_MAP["long_term_debt"]) >= 2


def test_sections_reference_known_metrics():
    derived = {"net_income_cf", "free_cash_flow"}
    for section, keys in STATEMENT_SECTIONS.items():
        for key in keys:
            assert key in CONCEPT_MAP or key in derived, (section, key)
    assert "total_assets" in INSTANT_METRICS
    assert "revenue" not in INSTANT_METRICS
    assert AVERAGE_METRICS <= set(CONCEPT_MAP)


def test_unit_for():
    assert unit_for("revenue") == "USD"
    assert unit_for("eps_diluted") == "USD/shares"
    assert unit_for("diluted_shares") == "shares"


# ── extract_fact_items ────────────────────────────────────────────────

def test_extract_usd_items():
    fact = _fact("USD", [
        {"val": 1000000, "end": "2025-12-31", "filed": "2026-01-30", "form": "10-Q", "fp": "Q2", "fy": 2026},
        {"val": 900000, "end": "2025-09-30", "filed": "2025-10-30", "form": "10-Q", "fp": "Q1", "fy": 2026},
    ])
    items = extract_fact_items(fact, "USD", concept="Revenues")
    assert len(items) == 2
    assert items[0].value == 1000000
    assert items[0].period_end == "2025-12-31"
    assert items[0].unit == "USD"
    assert items[0].fiscal_year == 2026
    assert items[0].concept == "Revenues"


def test_extract_drops_non_finite_and_endless_values():
    fact = _fact("USD", [
        {"val": "abc", "end": "2025-12-31"},
        {"val": None, "end": "2025-12-31"},
        {"val": float("nan"), "end": "2025-12-31"},
        {"val": 5, "end": None},
        {"val": "42", "end": "2025-09-30"},
        "not-a-record",
    ])
    items = extract_fact_items(fact, "USD")
    assert [i.value for i in items] == [42.0]


def test_extract_prefers_periodic_forms():
    fact = _fact("USD", [
        {"val": 1, "end": "2025-12-31", "form": "S-1"},
        {"val": 2, "end": "2025-12-31", "form": "10-Q"},
        {"val": 3, "end": "2025-12-31", "form": "8-K"},
    ])
    assert [i.value for i in extract_fact_items(fact, "USD")] == [2, 3]


def test_extract_keeps_all_when_no_periodic_forms():
    fact = _fact("USD", [
        {"val": 1, "end": "2025-12-31", "form": "S-1"},
        {"val": 2, "end": "2025-09-30"},
    ])
    assert len(extract_fact_items(fact, "USD")) == 2


def test_unit_picking():
    usd_prefix = {"units": {"EUR": [{"val": 1, "end": "2025-01-01"}],
                            "USD/shares": [{"val": 2, "end": "2025-01-01"}]}}
    assert extract_fact_items(usd_prefix, "USD")[0].unit == "USD/shares"

    shares = {"units": {"pure": [{"val": 1, "end": "2025-01-01"}],
                        "Shares": [{"val": 7, "end": "2025-01-01"}]}}
    assert extract_fact_items(shares, "shares")[0].value == 7

    first = {"units": {"USD/shares": [{"val": 5.15, "end": "2025-12-31"}]}}
    assert extract_fact_items(first, "pure")[0].value == 5.15


def test_extract_bad_shapes_return_empty():
    assert extract_fact_items(None, "USD") == []
    assert extract_fact_items({"units": None}, "USD") == []
    assert extract_fact_items({"units": {}}, "USD") == []
    assert extract_fact_items({"units": {"USD": "oops"}}, "USD") == []


# ── extract_first_available ───────────────────────────────────────────

def test_first_available_short_circuits():
    facts = {
        "A": _fact("USD", [{"val": 1, "end": "2020-03-31"}]),
        "B": _fact("USD", [{"val": 2, "end": "2025-03-31"}, {"val": 3, "end": "2025-06-30"}]),
    }
    result = extract_first_available(facts, ["A", "B"], "USD")
    assert result == extract_fact_items(facts["A"], "USD", concept="A")
    assert [r.concept for r in result] == ["A"]


def test_first_available_skips_empty_concepts():
    facts = {
        "A": _fact("USD", [{"val": "n/a", "end": "2025-03-31"}]),
        "B": _fact("USD", [{"val": 2, "end": "2025-03-31"}]),
    }
    result = extract_first_available(facts, ["Missing", "A", "B"], "USD")
    assert [r.concept for r in result] == ["B"]


def test_first_available_none_resolve():
    assert extract_first_available({}, ["A", "B"], "USD") == []
    assert extract_first_available(None, ["A"], "USD") == []


# ── extract_freshest ──────────────────────────────────────────────────

def test_freshest_prefers_live_concept():
    facts = {
        "RevenueFromContractWithCustomerExcludingAssessedTax": _fact("USD", [{"val": 1, "end": "2019-12-31"}]),
        "Revenues": _fact("USD", [{"val": 2, "end": "2025-06-30"}]),
    }
    name, items = extract_freshest(facts, CONCEPT_MAP["revenue"], "USD")
    assert name == "Revenues"
    assert items[0].value == 2


def test_freshest_tie_keeps_earlier_concept():
    facts = {
        "A": _fact("USD", [{"val": 1, "end": "2025-06-30"}]),
        "B": _fact("USD", [{"val": 2, "end": "2025-06-30"}]),
    }
    assert extract_freshest(facts, ["A", "B"], "USD")[0] == "A"
    assert extract_freshest({}, ["A"], "USD") == (None, [])
