"""Computed metrics over an assembled quarterly series.

Per-quarter ratios (margins, returns, efficiency, liquidity, leverage)
come straight from that quarter's reported values. Growth and trailing
twelve months need neighbouring quarters, so the series is loaded into a
DataFrame (newest first, like the series itself):

    year-ago quarter    → row i + 4
    prior quarter       → row i + 1
    TTM                 → rows i .. i + 3, all four present

Percentages are in percent units (12.5 means 12.5%).
"""

from __future__ import annotations

import math
from typing import Any

import pandas as pd

from sec_series.models import QuarterBundle, ReportedValues

# (output key, dotted path into ReportedValues)
YOY_FIELDS: tuple[tuple[str, str], ...] = (
    ("revenue_yoy", "income.revenue"),
    ("operating_income_yoy", "income.operating_income"),
    ("net_income_yoy", "income.net_income"),
    ("eps_yoy", "income.eps_diluted"),
)
QOQ_FIELDS: tuple[tuple[str, str], ...] = (
    ("revenue_qoq", "income.revenue"),
    ("operating_income_qoq", "income.operating_income"),
    ("net_income_qoq", "income.net_income"),
)
TTM_FIELDS: tuple[tuple[str, str], ...] = (
    ("revenue_ttm", "income.revenue"),
    ("operating_income_ttm", "income.operating_income"),
    ("net_income_ttm", "income.net_income"),
    ("operating_cash_flow_ttm", "cashflow.operating_cash_flow"),
    ("free_cash_flow_ttm", "cashflow.free_cash_flow"),
)


# ═══════════════════════════════════════════════════════════════════════════
#  Safe numeric helpers
# ═══════════════════════════════════════════════════════════════════════════

def _safe(v: Any) -> float | None:
    """Convert a value to float, returning None for invalid/missing values."""
    if v is None:
        return None
    if hasattr(v, "item"):
        v = v.item()
    try:
        f = float(v)
        if math.isnan(f) or math.isinf(f):
            return None
        return f
    except (TypeError, ValueError):
        return None


def _div(a: float | None, b: float | None) -> float | None:
    """Safe division: None if either operand is None or the divisor is zero."""
    if a is None or b is None or b == 0:
        return None
    return a / b


def _pct(a: float | None, b: float | None) -> float | None:
    r = _div(a, b)
    return r * 100 if r is not None else None


def get_nested_value(obj: Any, path: str) -> Any:
    """Follow a dotted path through models/dicts; None where it breaks."""
    cur = obj
    for part in path.split("."):
        if cur is None:
            return None
        if isinstance(cur, dict):
            cur = cur.get(part)
        else:
            cur = getattr(cur, part, None)
    return cur


# ═══════════════════════════════════════════════════════════════════════════
#  Single-quarter ratios
# ═══════════════════════════════════════════════════════════════════════════

def calculate_yoy(current: float | None, year_ago: float | None) -> float | None:
    if current is None or year_ago is None:
        return None
    return _pct(current - year_ago, year_ago)


def calculate_qoq(current: float | None, previous: float | None) -> float | None:
    if current is None or previous is None:
        return None
    return _pct(current - previous, previous)


def calculate_margins(reported: ReportedValues) -> dict[str, float | None]:
    """Gross/operating/net/FCF margin; {} when revenue is missing or zero."""
    revenue = reported.income.get("revenue")
    if not revenue:
        return {}
    return {
        "gross_margin": _pct(reported.income.get("gross_profit"), revenue),
        "operating_margin": _pct(reported.income.get("operating_income"), revenue),
        "net_margin": _pct(reported.income.get("net_income"), revenue),
        "fcf_margin": _pct(reported.cashflow.get("free_cash_flow"), revenue),
    }


def calculate_roe(net_income: float | None, total_equity: float | None) -> float | None:
    return _pct(net_income, total_equity)


def calculate_roa(net_income: float | None, total_assets: float | None) -> float | None:
    return _pct(net_income, total_assets)


def calculate_roic(
    operating_income: float | None,
    total_assets: float | None,
    current_liabilities: float | None,
) -> float | None:
    """Operating income over (total assets − current liabilities)."""
    if total_assets is None or current_liabilities is None:
        return None
    return _pct(operating_income, total_assets - current_liabilities)


def calculate_asset_turnover(revenue: float | None, total_assets: float | None) -> float | None:
    return _div(revenue, total_assets)


def calculate_inventory_turnover(cost_of_revenue: float | None, inventory: float | None) -> float | None:
    return _div(cost_of_revenue, inventory)


def calculate_current_ratio(current_assets: float | None, current_liabilities: float | None) -> float | None:
    return _div(current_assets, current_liabilities)


def calculate_quick_ratio(
    current_assets: float | None,
    inventory: float | None,
    current_liabilities: float | None,
) -> float | None:
    if current_assets is None:
        return None
    return _div(current_assets - (inventory or 0), current_liabilities)


def calculate_debt_to_equity(total_liabilities: float | None, total_equity: float | None) -> float | None:
    return _div(total_liabilities, total_equity)


def quarter_ratios(reported: ReportedValues) -> dict[str, dict[str, float | None]]:
    """Every ratio that needs only one quarter's numbers."""
    inc, bal = reported.income, reported.balance
    return {
        "margins": calculate_margins(reported),
        "returns": {
            "roe": calculate_roe(inc.get("net_income"), bal.get("total_equity")),
            "roa": calculate_roa(inc.get("net_income"), bal.get("total_assets")),
            "roic": calculate_roic(
                inc.get("operating_income"),
                bal.get("total_assets"),
                bal.get("current_liabilities"),
            ),
        },
        "efficiency": {
            "asset_turnover": calculate_asset_turnover(inc.get("revenue"), bal.get("total_assets")),
            "inventory_turnover": calculate_inventory_turnover(
                inc.get("cost_of_revenue"), bal.get("inventory"),
            ),
        },
        "liquidity": {
            "current_ratio": calculate_current_ratio(
                bal.get("current_assets"), bal.get("current_liabilities"),
            ),
            "quick_ratio": calculate_quick_ratio(
                bal.get("current_assets"), bal.get("inventory"), bal.get("current_liabilities"),
            ),
        },
        "leverage": {
            "debt_to_equity": calculate_debt_to_equity(
                bal.get("total_liabilities"), bal.get("total_equity"),
            ),
        },
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Cross-quarter metrics (pandas)
# ═══════════════════════════════════════════════════════════════════════════

def series_frame(series: list[QuarterBundle]) -> pd.DataFrame:
    """One row per bundle (newest first), one float column per dotted path."""
    paths = sorted({p for _, p in YOY_FIELDS + QOQ_FIELDS + TTM_FIELDS})
    rows = [
        {p: get_nested_value(b.reported, p) for p in paths}
        for b in series
    ]
    return pd.DataFrame.from_records(rows, columns=paths).astype(float)


def _growth(df: pd.DataFrame, path: str, periods: int) -> pd.Series:
    cur = df[path]
    prev = cur.shift(-periods)
    prev = prev.where(prev != 0)
    return (cur - prev) / prev * 100


def _ttm(df: pd.DataFrame, path: str) -> pd.Series:
    # Rows are newest first; reverse so rolling() looks at older quarters
    return df[path].iloc[::-1].rolling(4, min_periods=4).sum().iloc[::-1]


def add_computed_metrics(series: list[QuarterBundle]) -> list[QuarterBundle]:
    """Return copies of the bundles with ``computed`` filled in."""
    if not series:
        return []

    df = series_frame(series)
    yoy = {key: _growth(df, path, 4) for key, path in YOY_FIELDS}
    qoq = {key: _growth(df, path, 1) for key, path in QOQ_FIELDS}
    ttm = {key: _ttm(df, path) for key, path in TTM_FIELDS}

    out: list[QuarterBundle] = []
    for i, bundle in enumerate(series):
        computed = quarter_ratios(bundle.reported)
        # Rows without a year-ago or prior quarter come out NaN, i.e. None
        computed["growth"] = {key: _safe(col.iloc[i]) for key, col in {**yoy, **qoq}.items()}
        computed["ttm"] = {key: _safe(col.iloc[i]) for key, col in ttm.items()}
        out.append(bundle.model_copy(update={"computed": computed}))
    return out
