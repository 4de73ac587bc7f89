"""Quarterly series extraction from SEC companyfacts.

Pipeline:
  1. Flatten + normalize every fact in the payload
  2. Fiscal-year-end month (from submissions if the caller has it,
     otherwise majority vote over Q4-labelled facts)
  3. Anchor quarters (freshest revenue concept → net income → anything)
  4. Per anchor: resolve every mapped metric, derive the fiscal period,
     check the filing delta and the SEC's own period labels
  5. Drop duplicate period ids, attach computed metrics, diagnostics

The extractor never raises for data problems: unresolvable metrics are
None, odd filings become warnings, and no anchors means an empty series
with diagnostics.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping
from datetime import date
from typing import Any

from sec_series.anchors import (
    QUARTER_LABELS,
    QuarterWindow,
    default_weights,
    default_window,
    select_anchors,
)
from sec_series.config import Settings, get_config
from sec_series.facts import (
    COMPANY_FACTS_URL,
    collect_all_facts,
    facts_for_taxonomy,
    latest_period_end,
    normalize_fields,
    to_int,
)
from sec_series.fiscal import (
    InvalidInput,
    days_between,
    derive_fiscal_period,
    detect_fiscal_year_end_month,
    parse_iso_date,
    validate_filing_delta,
)
from sec_series.metrics import add_computed_metrics
from sec_series.models import (
    AnchorPeriod,
    BundleDebug,
    FactRecord,
    FiscalPeriod,
    MetricSource,
    PeriodInfo,
    QuarterBundle,
    ReportedValues,
    SeriesDebug,
    SeriesResult,
    SourceRef,
    ValidationWarning,
)
from sec_series.xbrl_mappings import (
    AVERAGE_METRICS,
    CONCEPT_MAP,
    INSTANT_METRICS,
    STATEMENT_SECTIONS,
    extract_first_available,
    extract_freshest,
    unit_for,
)

log = logging.getLogger(__name__)

# Warning codes attached to QuarterBundle.warnings
FILING_DELAYED = "filing_delayed"
FILING_BEFORE_QUARTER_END = "filing_before_quarter_end"
PERIOD_ID_MISMATCH = "period_id_mismatch_sec_vs_derived"
FISCAL_PERIOD_UNDERIVABLE = "fiscal_period_underivable"


# ═══════════════════════════════════════════════════════════════════════════
#  Per-metric value resolution
# ═══════════════════════════════════════════════════════════════════════════

class ResolvedValue:
    """One metric's value at one anchor, with where it came from."""

    __slots__ = ("value", "concept", "method", "period_end", "computed")

    def __init__(
        self,
        value: float | None,
        concept: str | None = None,
        method: str = "none",
        period_end: str | None = None,
        computed: bool = False,
    ):
        self.value = value
        self.concept = concept
        self.method = method          # "exact_quarter", "ytd_delta", "nearest_end", "instant", "derived"
        self.period_end = period_end
        self.computed = computed


class MetricIndex:
    """One metric's extracted records with dates pre-parsed."""

    __slots__ = ("metric", "entries", "by_end", "by_start")

    def __init__(self, metric: str, items: list[FactRecord]):
        self.metric = metric
        # (end, span_days, record) for every record with a parseable end
        self.entries: list[tuple[date, int | None, FactRecord]] = []
        self.by_end: dict[date, list[tuple[date, int | None, FactRecord]]] = defaultdict(list)
        self.by_start: dict[date, list[tuple[date, int | None, FactRecord]]] = defaultdict(list)
        for rec in items:
            end = parse_iso_date(rec.period_end)
            if end is None or rec.value is None:
                continue
            entry = (end, days_between(rec.period_start, rec.period_end), rec)
            self.entries.append(entry)
            self.by_end[end].append(entry)
            start = parse_iso_date(rec.period_start)
            if start is not None:
                self.by_start[start].append(entry)


def build_metric_indexes(us_gaap: Mapping[str, Any]) -> dict[str, MetricIndex]:
    """Extract every CONCEPT_MAP metric once, via its fallback chain."""
    indexes: dict[str, MetricIndex] = {}
    for metric, concepts in CONCEPT_MAP.items():
        items = extract_first_available(us_gaap, concepts, unit_for(metric))
        if items:
            indexes[metric] = MetricIndex(metric, items)
    return indexes


def _latest_filed(entries):
    """Entry with the most recent filing date; first one wins ties."""
    return max(entries, key=lambda e: e[2].filed_date or "")


def _from_entry(entry, method: str) -> ResolvedValue:
    _, _, rec = entry
    return ResolvedValue(rec.value, rec.concept, method, rec.period_end)


def _ytd_delta(index: MetricIndex, end: date, window: QuarterWindow) -> ResolvedValue | None:
    """Quarter value as (YTD through ``end``) − (YTD through prior quarter).

    10-Qs for Q2/Q3 often report only six- and nine-month cash-flow totals.
    """
    longer = [e for e in index.by_end.get(end, ()) if e[1] is not None and e[1] > window.max_days]
    longer.sort(key=lambda e: e[1], reverse=True)
    for ytd in longer:
        start = parse_iso_date(ytd[2].period_start)
        priors = [
            e for e in index.by_start.get(start, ())
            if e[0] < end and window.contains((end - e[0]).days)
        ]
        if not priors:
            continue
        prior = max(priors, key=lambda e: (e[0], e[2].filed_date or ""))
        rec = ytd[2]
        return ResolvedValue(
            rec.value - prior[2].value,
            rec.concept,
            "ytd_delta",
            rec.period_end,
            computed=True,
        )
    return None


def _nearest_quarter(
    index: MetricIndex,
    end: date,
    window: QuarterWindow,
    tolerance_days: int,
) -> ResolvedValue | None:
    """Quarter-length record whose end is closest to ``end``, within tolerance."""
    candidates = [
        e for e in index.entries
        if window.contains(e[1]) and abs((e[0] - end).days) <= tolerance_days
    ]
    if not candidates:
        return None
    candidates.sort(key=lambda e: e[2].filed_date or "", reverse=True)
    best = min(candidates, key=lambda e: abs((e[0] - end).days))
    return _from_entry(best, "nearest_end")


def resolve_value(
    index: MetricIndex | None,
    end: date,
    *,
    window: QuarterWindow,
    tolerance_days: int,
) -> ResolvedValue | None:
    """Best value of one metric for the quarter ending at ``end``.

    Instant (balance sheet) metrics need an exact end-date match. Flow
    metrics take a quarter-length record at the end date, then a YTD
    delta, then the nearest quarter-length record. Per-share and
    weighted-share metrics skip the delta step.
    """
    if index is None:
        return None
    at_end = index.by_end.get(end, ())

    if index.metric in INSTANT_METRICS:
        if at_end:
            return _from_entry(_latest_filed(at_end), "instant")
        return None

    quarter = [e for e in at_end if window.contains(e[1])]
    if quarter:
        return _from_entry(_latest_filed(quarter), "exact_quarter")

    if index.metric in AVERAGE_METRICS:
        instants = [e for e in at_end if e[1] is None]
        if instants:
            return _from_entry(_latest_filed(instants), "instant")
    else:
        delta = _ytd_delta(index, end, window)
        if delta is not None:
            return delta

    return _nearest_quarter(index, end, window, tolerance_days)


# ═══════════════════════════════════════════════════════════════════════════
#  Derived line items
# ═══════════════════════════════════════════════════════════════════════════

def _val(resolved: dict[str, ResolvedValue], key: str) -> float | None:
    rv = resolved.get(key)
    return rv.value if rv is not None else None


def apply_derived_values(resolved: dict[str, ResolvedValue]) -> None:
    """Fill gross profit / opex / FCF from their components, in place."""
    revenue = _val(resolved, "revenue")
    cogs = _val(resolved, "cost_of_revenue")

    if _val(resolved, "gross_profit") is None and revenue is not None and cogs is not None:
        resolved["gross_profit"] = ResolvedValue(revenue - cogs, None, "derived", computed=True)

    rd = _val(resolved, "research_and_development")
    sm = _val(resolved, "sales_and_marketing")
    ga = _val(resolved, "general_and_administrative")
    if _val(resolved, "operating_expenses") is None and None not in (rd, sm, ga):
        resolved["operating_expenses"] = ResolvedValue(rd + sm + ga, None, "derived", computed=True)

    # OperatingExpenses falling back to CostsAndExpenses includes COGS
    opex = _val(resolved, "operating_expenses")
    total_costs = _val(resolved, "total_costs_and_expenses")
    if opex is not None and cogs is not None and total_costs:
        if abs(opex - total_costs) / abs(total_costs) < 0.01:
            resolved["operating_expenses"] = ResolvedValue(
                total_costs - cogs, None, "derived", computed=True,
            )

    capex = resolved.get("capex")
    if capex is not None and capex.value is not None:
        capex.value = -abs(capex.value)

    ocf = _val(resolved, "operating_cash_flow")
    capex_value = _val(resolved, "capex")
    if ocf is not None and capex_value is not None:
        resolved["free_cash_flow"] = ResolvedValue(ocf + capex_value, None, "derived", computed=True)

    net_income = resolved.get("net_income")
    if net_income is not None:
        resolved["net_income_cf"] = net_income


# ═══════════════════════════════════════════════════════════════════════════
#  Bundle validation
# ═══════════════════════════════════════════════════════════════════════════

def validate_bundle(reported: ReportedValues) -> list[ValidationWarning]:
    """Consistency checks on one quarter's reported income statement."""
    inc = reported.income
    revenue = inc.get("revenue")
    op = inc.get("operating_income")
    ni = inc.get("net_income")
    other = inc.get("other_income")
    pretax = inc.get("income_before_tax")
    int_inc = inc.get("interest_income")
    int_exp = inc.get("interest_expense")

    warnings: list[ValidationWarning] = []

    if revenue is None or revenue <= 0:
        warnings.append(ValidationWarning(
            rule="revenue_missing_or_non_positive",
            severity="warning",
            message="Revenue is missing or not positive for this quarter",
            context={"revenue": revenue},
        ))

    if ni is not None and op is not None and op > 0 and ni > op * 1.01:
        ratio = other / op if other is not None else 0.0
        if other is not None and ratio >= 0.10:
            warnings.append(ValidationWarning(
                rule="net_income_boosted_by_nonoperating_income",
                severity="info",
                message=(
                    f"Net income exceeds operating income; non-operating income "
                    f"is {ratio:.0%} of operating income"
                ),
                context={
                    "other_income": other,
                    "operating_income": op,
                    "net_income": ni,
                    "ratio_other_to_operating": ratio,
                    "threshold_used": 0.10,
                },
            ))
        else:
            warnings.append(ValidationWarning(
                rule="net_income_gt_operating_income_small_gap",
                severity="warning",
                message="Net income exceeds operating income without a large non-operating item",
                context={
                    "operating_income": op,
                    "net_income": ni,
                    "gap": ni - op,
                    "gap_percent": (ni - op) / op * 100,
                },
            ))

    if pretax is not None and op is not None and op > 0:
        gap = pretax - op
        explained = (other or 0) + (int_inc or 0) - (int_exp or 0)
        unexplained = gap - explained
        if abs(unexplained) > op * 0.05:
            warnings.append(ValidationWarning(
                rule="pretax_vs_operating_gap_unexplained",
                severity="warning",
                message=(
                    f"Pre-tax vs operating income gap not explained by other/interest "
                    f"items ({unexplained / op:.1%} of operating income)"
                ),
                context={
                    "operating_income": op,
                    "income_before_tax": pretax,
                    "gap": gap,
                    "explained_by_other_interest": explained,
                    "unexplained": unexplained,
                    "unexplained_pct": unexplained / op * 100,
                },
            ))

    return warnings


# ═══════════════════════════════════════════════════════════════════════════
#  Bundle assembly
# ═══════════════════════════════════════════════════════════════════════════

def _sec_period(anchor: AnchorPeriod) -> dict[str, str | int | None]:
    label = (anchor.fiscal_period or "").strip().upper() or None
    sec_id = None
    if anchor.fiscal_year is not None and label:
        sec_id = f"FY{anchor.fiscal_year}{label}"
    return {"fy": anchor.fiscal_year, "fp": label, "period_id": sec_id}


def period_labels_match(anchor: AnchorPeriod, fiscal: FiscalPeriod) -> bool | None:
    """Compare the SEC's own fy/fp labels with the derived period.

    Only labels actually present on the anchor are compared; None when
    there is nothing to compare.
    """
    checks: list[bool] = []
    if anchor.fiscal_year is not None:
        checks.append(anchor.fiscal_year == fiscal.fiscal_year)
    label = (anchor.fiscal_period or "").strip().upper()
    if label in QUARTER_LABELS:
        checks.append(label == fiscal.fiscal_quarter)
    if not checks:
        return None
    return all(checks)


def _companyfacts_sources(company_facts: Any) -> list[SourceRef]:
    cik = to_int(company_facts.get("cik")) if isinstance(company_facts, Mapping) else None
    url = COMPANY_FACTS_URL.format(cik=str(cik).zfill(10)) if cik is not None else None
    return [SourceRef(doc_type="sec_companyfacts", url=url)]


def build_bundle(
    ticker: str,
    anchor: AnchorPeriod,
    indexes: dict[str, MetricIndex],
    fiscal_year_end_month: int,
    sources: list[SourceRef],
    cfg: Settings,
) -> QuarterBundle:
    """Assemble one QuarterBundle for one anchor."""
    window = default_window(cfg)
    end = parse_iso_date(anchor.period_end)

    resolved: dict[str, ResolvedValue] = {}
    for metric in CONCEPT_MAP:
        rv = resolve_value(
            indexes.get(metric), end,
            window=window, tolerance_days=cfg.period_match_tolerance_days,
        )
        if rv is not None:
            resolved[metric] = rv
    apply_derived_values(resolved)

    reported = ReportedValues(
        **{
            section: {key: _val(resolved, key) for key in keys}
            for section, keys in STATEMENT_SECTIONS.items()
        },
        computed_fields={k: rv.computed for k, rv in resolved.items() if rv.value is not None},
    )

    warnings: list[str] = []
    fiscal: FiscalPeriod | None
    try:
        fiscal = derive_fiscal_period(anchor.period_end, fiscal_year_end_month)
    except InvalidInput as exc:
        log.warning("%s: fiscal period underivable for %s: %s", ticker, anchor.period_end, exc)
        fiscal = None
        warnings.append(FISCAL_PERIOD_UNDERIVABLE)

    delta = validate_filing_delta(anchor.period_end, anchor.filed_date)
    if delta is not None:
        if delta > cfg.filing_delay_warning_days:
            warnings.append(FILING_DELAYED)
        elif delta < 0:
            warnings.append(FILING_BEFORE_QUARTER_END)

    match = period_labels_match(anchor, fiscal) if fiscal is not None else None
    if match is False:
        warnings.append(PERIOD_ID_MISMATCH)

    period = PeriodInfo(
        period_id=fiscal.period_id if fiscal else None,
        quarter_end_date=anchor.period_end,
        quarter_start_date=anchor.period_start,
        filing_date=anchor.filed_date,
        form_type=anchor.form_type,
        fiscal_year=fiscal.fiscal_year if fiscal else None,
        fiscal_quarter=fiscal.fiscal_quarter if fiscal else None,
        fiscal_year_end_month=fiscal_year_end_month,
        delta_days_filing=delta,
    )

    debug = BundleDebug(
        anchor={
            "end": anchor.period_end,
            "start": anchor.period_start,
            "form": anchor.form_type,
            "filed": anchor.filed_date,
            "concept": anchor.concept,
            "score": anchor.score,
        },
        derived_period=fiscal.period_id if fiscal else None,
        sec_period=_sec_period(anchor),
        period_match=match,
        sources={
            k: MetricSource(concept=rv.concept, method=rv.method, period_end=rv.period_end)
            for k, rv in resolved.items()
        },
    )

    if warnings:
        log.debug("%s %s: %s", ticker, anchor.period_end, ", ".join(warnings))

    return QuarterBundle(
        ticker=ticker,
        period=period,
        sources=sources,
        reported=reported,
        warnings=warnings,
        validation=validate_bundle(reported),
        debug=debug,
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Orchestrator
# ═══════════════════════════════════════════════════════════════════════════

def _anchor_candidates(
    us_gaap: Mapping[str, Any],
    records: list[FactRecord],
) -> tuple[str | None, list[FactRecord]]:
    """Records to select anchors from, and the concept they came from."""
    concept, items = extract_freshest(us_gaap, CONCEPT_MAP["revenue"], "USD")
    if items:
        return concept, items
    items = extract_first_available(us_gaap, CONCEPT_MAP["net_income"], "USD")
    if items:
        return items[0].concept, items
    return None, [r for r in records if r.taxonomy != "dei"]


def _valid_month(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if 1 <= value <= 12 else None


def extract_series(
    ticker: str,
    company_facts: Any,
    limit: int = 16,
    *,
    fiscal_year_end_month: int | None = None,
    settings: Settings | None = None,
) -> SeriesResult:
    """Build the quarterly series for one company, newest quarter first.

    ``company_facts`` is the SEC companyfacts payload (or just its
    ``facts`` mapping). ``limit`` is used as given; clamping is the
    caller's job. ``fiscal_year_end_month`` overrides detection when the
    caller knows it (e.g. from the submissions endpoint).
    """
    cfg = settings or get_config()
    ticker = (ticker or "").strip().upper()

    records = normalize_fields(collect_all_facts(company_facts))
    us_gaap = facts_for_taxonomy(company_facts, "us-gaap")

    fye = _valid_month(fiscal_year_end_month)
    fye_source = "submissions"
    if fye is None:
        if fiscal_year_end_month is not None:
            log.warning("%s: ignoring invalid fiscal_year_end_month %r", ticker, fiscal_year_end_month)
        fye = detect_fiscal_year_end_month(records)
        fye_source = "detected"

    anchor_concept, candidates = _anchor_candidates(us_gaap, records)
    anchors = select_anchors(
        candidates,
        max=limit,
        window=default_window(cfg),
        weights=default_weights(cfg),
    )
    log.info(
        "%s: %d facts, FYE month %d (%s), %d anchors from %s",
        ticker, len(records), fye, fye_source, len(anchors), anchor_concept or "all facts",
    )

    indexes = build_metric_indexes(us_gaap) if anchors else {}
    sources = _companyfacts_sources(company_facts)

    series: list[QuarterBundle] = []
    seen_ids: set[str] = set()
    dropped = 0
    for anchor in anchors:
        bundle = build_bundle(ticker, anchor, indexes, fye, sources, cfg)
        pid = bundle.period.period_id
        if pid is not None:
            if pid in seen_ids:
                dropped += 1
                log.debug("%s: dropping duplicate %s at %s", ticker, pid, anchor.period_end)
                continue
            seen_ids.add(pid)
        series.append(bundle)

    if not series:
        log.warning("%s: no quarterly anchors survived selection", ticker)

    series = add_computed_metrics(series)

    debug = SeriesDebug(
        periods_found=len(series),
        mismatch_count=sum(PERIOD_ID_MISMATCH in b.warnings for b in series),
        delayed_filings=sum(FILING_DELAYED in b.warnings for b in series),
        early_filings=sum(FILING_BEFORE_QUARTER_END in b.warnings for b in series),
        underivable_periods=sum(FISCAL_PERIOD_UNDERIVABLE in b.warnings for b in series),
        duplicate_periods_dropped=dropped,
        fiscal_year_end_month=fye,
        fiscal_year_end_source=fye_source,
        latest_end_all=latest_period_end(records),
        anchor_concept=anchor_concept,
        anchor_candidates=len(candidates),
    )
    return SeriesResult(ticker=ticker, series=series, debug=debug)
