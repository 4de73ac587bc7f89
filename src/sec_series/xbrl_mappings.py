"""XBRL concept → canonical metric mappings.

Each canonical metric key maps to an ordered list of us-gaap tags, most
specific first. Filers pick different tags for the same line item (and
switch between them over the years), so extraction walks the list and
takes the first tag that actually carries data.

Side tables describe how a metric behaves over time:
  - INSTANT_METRICS  — balance-sheet point-in-time values (no duration)
  - AVERAGE_METRICS  — per-share and weighted-share figures; summing or
                       differencing them across periods is meaningless
  - METRIC_UNITS     — unit kind for metrics not reported in USD
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sec_series.facts import to_int, to_number, to_text
from sec_series.fiscal import parse_iso_date
from sec_series.models import FactRecord


# ═══════════════════════════════════════════════════════════════════════════
#  Canonical metric → ordered XBRL tags
# ═══════════════════════════════════════════════════════════════════════════

CONCEPT_MAP: dict[str, list[str]] = {
    # ── Income statement ────────────────────────────────────────────────
    "revenue": [
        "RevenueFromContractWithCustomerExcludingAssessedTax",
        "RevenueFromContractWithCustomerIncludingAssessedTax",
        "SalesRevenueNet",
        "Revenues",
    ],
    "cost_of_revenue": ["CostOfRevenue", "CostOfGoodsAndServicesSold"],
    "gross_profit": ["GrossProfit"],
    "research_and_development": ["ResearchAndDevelopmentExpense"],
    "sales_and_marketing": ["SellingAndMarketingExpense", "SellingExpense"],
    "general_and_administrative": ["GeneralAndAdministrativeExpense"],
    "operating_expenses": ["OperatingExpenses", "CostsAndExpenses"],
    "total_costs_and_expenses": ["CostsAndExpenses"],
    "operating_income": ["OperatingIncomeLoss"],
    "interest_expense": ["InterestExpense"],
    "interest_income": [
        "InterestIncomeExpenseNet",
        "InvestmentIncomeInterest",
        "InterestAndDividendIncomeOperating",
    ],
    "other_income": ["OtherNonoperatingIncomeExpense", "NonoperatingIncomeExpense"],
    "income_before_tax": [
        "IncomeLossFromContinuingOperationsBeforeIncomeTaxesExtraordinaryItemsNoncontrollingInterest",
        "IncomeLossFromContinuingOperationsBeforeIncomeTaxesMinorityInterestAndIncomeLossFromEquityMethodInvestments",
    ],
    "income_tax_expense": ["IncomeTaxExpenseBenefit"],
    "net_income": ["NetIncomeLoss"],
    "eps_basic": ["EarningsPerShareBasic"],
    "eps_diluted": ["EarningsPerShareDiluted"],

    # ── Balance sheet: assets ───────────────────────────────────────────
    "cash_and_equivalents": ["CashAndCashEquivalentsAtCarryingValue", "Cash"],
    "short_term_investments": [
        "AvailableForSaleSecuritiesCurrent",
        "ShortTermInvestments",
        "MarketableSecuritiesCurrent",
    ],
    "accounts_receivable": ["AccountsReceivableNetCurrent", "ReceivablesNetCurrent"],
    "inventory": ["InventoryNet"],
    "prepaid_expenses": ["PrepaidExpenseAndOtherAssetsCurrent", "PrepaidExpenseCurrent"],
    "other_current_assets": ["OtherAssetsCurrent"],
    "current_assets": ["AssetsCurrent"],
    "property_plant_equipment": ["PropertyPlantAndEquipmentNet"],
    "goodwill": ["Goodwill"],
    "intangible_assets": ["IntangibleAssetsNetExcludingGoodwill", "FiniteLivedIntangibleAssetsNet"],
    "long_term_investments": [
        "AvailableForSaleSecuritiesNoncurrent",
        "LongTermInvestments",
        "MarketableSecuritiesNoncurrent",
    ],
    "other_noncurrent_assets": ["OtherAssetsNoncurrent"],
    "noncurrent_assets": ["AssetsNoncurrent"],
    "total_assets": ["Assets"],

    # ── Balance sheet: liabilities ──────────────────────────────────────
    "accounts_payable": ["AccountsPayableCurrent"],
    "short_term_debt": ["DebtCurrent", "ShortTermBorrowings", "ShortTermDebtCurrent"],
    "accrued_liabilities": ["AccruedLiabilitiesCurrent", "AccruedIncomeTaxesCurrent"],
    "deferred_revenue_current": ["DeferredRevenueCurrent", "ContractWithCustomerLiabilityCurrent"],
    "other_current_liabilities": ["OtherLiabilitiesCurrent"],
    "current_liabilities": ["LiabilitiesCurrent"],
    "long_term_debt": ["LongTermDebtNoncurrent", "LongTermDebt"],
    "deferred_tax": ["DeferredTaxLiabilitiesNoncurrent"],
    "deferred_revenue_noncurrent": [
        "DeferredRevenueNoncurrent",
        "ContractWithCustomerLiabilityNoncurrent",
    ],
    "other_noncurrent_liabilities": ["OtherLiabilitiesNoncurrent"],
    "noncurrent_liabilities": ["LiabilitiesNoncurrent"],
    "total_liabilities": ["Liabilities"],

    # ── Balance sheet: equity ───────────────────────────────────────────
    "common_stock": ["CommonStockValue"],
    "additional_paid_in_capital": [
        "AdditionalPaidInCapital",
        "AdditionalPaidInCapitalCommonStock",
    ],
    "retained_earnings": ["RetainedEarningsAccumulatedDeficit"],
    "treasury_stock": ["TreasuryStockValue"],
    "accumulated_other_comprehensive_income": ["AccumulatedOtherComprehensiveIncomeLossNetOfTax"],
    "total_equity": [
        "StockholdersEquity",
        "StockholdersEquityIncludingPortionAttributableToNoncontrollingInterest",
    ],

    # ── Cash flow ───────────────────────────────────────────────────────
    "depreciation_amortization": ["DepreciationDepletionAndAmortization", "Depreciation"],
    "stock_based_compensation": [
        "ShareBasedCompensation",
        "AllocatedShareBasedCompensationExpense",
    ],
    "changes_in_working_capital": [
        "IncreaseDecreaseInOperatingCapital",
        "IncreaseDecreaseInOperatingAssetsAndLiabilities",
    ],
    "deferred_income_tax": ["DeferredIncomeTaxExpenseBenefit"],
    "other_operating_activities": ["OtherOperatingActivitiesCashFlowStatement"],
    "operating_cash_flow": ["NetCashProvidedByUsedInOperatingActivities"],
    "capex": ["PaymentsToAcquirePropertyPlantAndEquipment"],
    "acquisitions": ["PaymentsToAcquireBusinessesNetOfCashAcquired"],
    "purchases_of_investments": [
        "PaymentsToAcquireInvestments",
        "PaymentsToAcquireAvailableForSaleSecurities",
    ],
    "sales_of_investments": [
        "ProceedsFromSaleOfInvestments",
        "ProceedsFromSaleOfAvailableForSaleSecurities",
    ],
    "other_investing_activities": ["PaymentsForProceedsFromOtherInvestingActivities"],
    "investing_cash_flow": ["NetCashProvidedByUsedInInvestingActivities"],
    "debt_issued": ["ProceedsFromIssuanceOfLongTermDebt", "ProceedsFromDebtNetOfIssuanceCosts"],
    "debt_repaid": ["RepaymentsOfLongTermDebt", "RepaymentsOfDebt"],
    "dividends_paid": ["PaymentsOfDividends", "PaymentsOfDividendsCommonStock"],
    "stock_repurchased": ["PaymentsForRepurchaseOfCommonStock"],
    "stock_issued": ["ProceedsFromIssuanceOfCommonStock"],
    "other_financing_activities": ["ProceedsFromPaymentsForOtherFinancingActivities"],
    "financing_cash_flow": ["NetCashProvidedByUsedInFinancingActivities"],
    "net_change_in_cash": [
        "CashCashEquivalentsRestrictedCashAndRestrictedCashEquivalentsPeriodIncreaseDecreaseIncludingExchangeRateEffect",
        "CashAndCashEquivalentsPeriodIncreaseDecrease",
    ],

    # ── Shares ──────────────────────────────────────────────────────────
    "diluted_shares": ["WeightedAverageNumberOfDilutedSharesOutstanding"],
    "basic_shares": ["WeightedAverageNumberOfSharesOutstandingBasic"],
}


# ═══════════════════════════════════════════════════════════════════════════
#  Metric behaviour tables
# ═══════════════════════════════════════════════════════════════════════════

# Statement section → metric keys, in display order
STATEMENT_SECTIONS: dict[str, tuple[str, ...]] = {
    "income": (
        "revenue", "cost_of_revenue", "gross_profit",
        "research_and_development", "sales_and_marketing", "general_and_administrative",
        "operating_expenses", "operating_income",
        "interest_expense", "interest_income", "other_income",
        "income_before_tax", "income_tax_expense", "net_income",
        "eps_basic", "eps_diluted",
    ),
    "balance": (
        "cash_and_equivalents", "short_term_investments", "accounts_receivable",
        "inventory", "prepaid_expenses", "other_current_assets", "current_assets",
        "property_plant_equipment", "goodwill", "intangible_assets",
        "long_term_investments", "other_noncurrent_assets", "noncurrent_assets",
        "total_assets",
        "accounts_payable", "short_term_debt", "accrued_liabilities",
        "deferred_revenue_current", "other_current_liabilities", "current_liabilities",
        "long_term_debt", "deferred_tax", "deferred_revenue_noncurrent",
        "other_noncurrent_liabilities", "noncurrent_liabilities", "total_liabilities",
        "common_stock", "additional_paid_in_capital", "retained_earnings",
        "treasury_stock", "accumulated_other_comprehensive_income", "total_equity",
    ),
    "cashflow": (
        "net_income_cf", "depreciation_amortization", "stock_based_compensation",
        "changes_in_working_capital", "deferred_income_tax", "other_operating_activities",
        "operating_cash_flow",
        "capex", "acquisitions", "purchases_of_investments", "sales_of_investments",
        "other_investing_activities", "investing_cash_flow",
        "debt_issued", "debt_repaid", "dividends_paid", "stock_repurchased",
        "stock_issued", "other_financing_activities", "financing_cash_flow",
        "net_change_in_cash", "free_cash_flow",
    ),
    "shares": ("diluted_shares", "basic_shares"),
}

# Balance-sheet keys are point-in-time: match on the exact end date only
INSTANT_METRICS: frozenset[str] = frozenset(STATEMENT_SECTIONS["balance"])

# Per-share / weighted-average figures cannot be differenced out of YTD totals
AVERAGE_METRICS: frozenset[str] = frozenset({
    "eps_basic", "eps_diluted", "diluted_shares", "basic_shares",
})

METRIC_UNITS: dict[str, str] = {
    "eps_basic": "USD/shares",
    "eps_diluted": "USD/shares",
    "diluted_shares": "shares",
    "basic_shares": "shares",
}

# Forms whose facts describe a reporting period (vs. S-1, DEF 14A, ...)
PERIODIC_FORMS: frozenset[str] = frozenset({"10-Q", "10-K", "20-F", "40-F", "6-K", "8-K"})


def unit_for(metric: str) -> str:
    """Unit kind to extract for a metric key."""
    return METRIC_UNITS.get(metric, "USD")


# ═══════════════════════════════════════════════════════════════════════════
#  Extraction
# ═══════════════════════════════════════════════════════════════════════════

def _pick_unit_key(units: Mapping[str, Any], unit_kind: str) -> str | None:
    """Choose which unit bucket of a concept to read.

    USD: exact, then any "USD…" key, then the first key.
    shares: exact, then any key mentioning shares, then the first key.
    Anything else: exact, then the first key.
    """
    keys = list(units.keys())
    if not keys:
        return None
    if unit_kind in units:
        return unit_kind
    if unit_kind == "USD":
        match = next((k for k in keys if str(k).startswith("USD")), None)
    elif unit_kind == "shares":
        match = next((k for k in keys if "shares" in str(k).lower()), None)
    else:
        match = None
    return match if match is not None else keys[0]


def extract_fact_items(
    raw_fact: Any,
    unit_kind: str,
    *,
    concept: str | None = None,
    taxonomy: str | None = "us-gaap",
) -> list[FactRecord]:
    """Extract every usable record of one concept for a unit kind.

    Records whose ``val`` is not a finite number, or that have no ``end``,
    are dropped silently. When any record comes from a periodic form
    (10-Q, 10-K, 20-F, ...) only those are kept. Malformed input yields [].
    """
    if not isinstance(raw_fact, Mapping):
        return []
    units = raw_fact.get("units")
    if not isinstance(units, Mapping):
        return []
    unit_key = _pick_unit_key(units, unit_kind)
    if unit_key is None:
        return []
    rows = units.get(unit_key)
    if not isinstance(rows, list):
        return []

    items: list[FactRecord] = []
    for row in rows:
        if not isinstance(row, Mapping):
            continue
        value = to_number(row.get("val"))
        end = to_text(row.get("end"))
        if value is None or not end:
            continue
        items.append(FactRecord(
            value=value,
            period_start=to_text(row.get("start")),
            period_end=end,
            filed_date=to_text(row.get("filed")),
            form_type=to_text(row.get("form")),
            fiscal_period=to_text(row.get("fp")),
            fiscal_year=to_int(row.get("fy")),
            frame=to_text(row.get("frame")),
            accession=to_text(row.get("accn")),
            concept=concept,
            unit=unit_key,
            taxonomy=taxonomy,
        ))

    periodic = [it for it in items if it.form_type in PERIODIC_FORMS]
    return periodic if periodic else items


def extract_first_available(
    facts_by_name: Any,
    concepts: list[str] | tuple[str, ...],
    unit_kind: str,
) -> list[FactRecord]:
    """Walk a fallback chain; the first concept with any data wins.

    Later concepts are never consulted once one resolves. Returns [] when
    none of them do; callers treat that as a missing metric.
    """
    if not isinstance(facts_by_name, Mapping):
        return []
    for name in concepts:
        raw = facts_by_name.get(name)
        if raw is None:
            continue
        items = extract_fact_items(raw, unit_kind, concept=name)
        if items:
            return items
    return []


def extract_freshest(
    facts_by_name: Any,
    concepts: list[str] | tuple[str, ...],
    unit_kind: str,
) -> tuple[str | None, list[FactRecord]]:
    """Pick the candidate concept whose latest period end is most recent.

    Used for the anchor source: a filer that moved from ``Revenues`` to
    ``RevenueFromContractWithCustomer...`` years ago still has stale data
    under the old tag. Ties go to the earlier (more specific) concept.
    """
    if not isinstance(facts_by_name, Mapping):
        return None, []
    best_name: str | None = None
    best_items: list[FactRecord] = []
    best_end = None
    for name in concepts:
        raw = facts_by_name.get(name)
        if raw is None:
            continue
        items = extract_fact_items(raw, unit_kind, concept=name)
        ends = [d for d in (parse_iso_date(it.period_end) for it in items) if d is not None]
        if not ends:
            continue
        latest = max(ends)
        if best_end is None or latest > best_end:
            best_name, best_items, best_end = name, items, latest
    return best_name, best_items
