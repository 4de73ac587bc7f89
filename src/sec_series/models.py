"""Record types and pydantic models for the quarterly series pipeline.

Internal records (FactRecord, AnchorPeriod) are lightweight NamedTuples
because the collector produces tens of thousands of them per company.
Everything that leaves the pipeline is a pydantic model so the route
layer can hand it to the client with ``model_dump(mode="json")``.
"""

from __future__ import annotations

from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Internal records
# ---------------------------------------------------------------------------

class FactRecord(NamedTuple):
    """One reported XBRL data point, normalized to a single field schema.

    Dates are ISO ``YYYY-MM-DD`` strings. A record without ``period_end``
    is invalid and every downstream stage skips it.
    """
    value: float | None = None
    period_start: str | None = None
    period_end: str | None = None
    filed_date: str | None = None
    form_type: str | None = None
    fiscal_period: str | None = None     # "Q1".."Q4", "FY", or None
    fiscal_year: int | None = None
    frame: str | None = None             # e.g. "CY2025Q3"
    accession: str | None = None
    concept: str | None = None
    unit: str | None = None
    taxonomy: str | None = None


class AnchorPeriod(NamedTuple):
    """The winning record for one distinct quarter end."""
    period_end: str
    period_start: str | None = None
    form_type: str | None = None
    filed_date: str | None = None
    fiscal_period: str | None = None
    fiscal_year: int | None = None
    frame: str | None = None
    concept: str | None = None
    score: int = 0


# ---------------------------------------------------------------------------
# Fiscal period
# ---------------------------------------------------------------------------

class FiscalPeriod(BaseModel):
    model_config = ConfigDict(frozen=True)

    fiscal_year: int
    fiscal_quarter: str          # "Q1" | "Q2" | "Q3" | "Q4"
    period_id: str               # "FY2025Q3"


# ---------------------------------------------------------------------------
# Quarter bundle
# ---------------------------------------------------------------------------

class PeriodInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    period_id: str | None = None
    quarter_end_date: str
    quarter_start_date: str | None = None
    filing_date: str | None = None
    form_type: str | None = None
    currency: str = "USD"
    scaling: str = "raw"
    fiscal_year: int | None = None
    fiscal_quarter: str | None = None
    fiscal_year_end_month: int
    delta_days_filing: int | None = None


class SourceRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    doc_type: str
    url: str | None = None


class ReportedValues(BaseModel):
    """Statement line items at one anchor; unresolved metrics are None."""
    model_config = ConfigDict(frozen=True)

    income: dict[str, float | None] = Field(default_factory=dict)
    balance: dict[str, float | None] = Field(default_factory=dict)
    cashflow: dict[str, float | None] = Field(default_factory=dict)
    shares: dict[str, float | None] = Field(default_factory=dict)
    computed_fields: dict[str, bool] = Field(default_factory=dict)

    def flat(self) -> dict[str, float | None]:
        """All sections merged into one metric → value map."""
        out: dict[str, float | None] = {}
        for section in (self.income, self.balance, self.cashflow, self.shares):
            out.update(section)
        return out


class ValidationWarning(BaseModel):
    """One validation check result."""
    model_config = ConfigDict(frozen=True)

    rule: str
    severity: str                # "error" | "warning" | "info"
    message: str
    context: dict[str, float | None] = Field(default_factory=dict)


class MetricSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    concept: str | None = None
    method: str = "none"         # "exact_quarter", "ytd_delta", "nearest_end", "instant", "derived"
    period_end: str | None = None


class BundleDebug(BaseModel):
    model_config = ConfigDict(frozen=True)

    anchor: dict[str, str | int | None] = Field(default_factory=dict)
    derived_period: str | None = None
    sec_period: dict[str, str | int | None] = Field(default_factory=dict)
    period_match: bool | None = None
    sources: dict[str, MetricSource] = Field(default_factory=dict)


class QuarterBundle(BaseModel):
    """One fiscal quarter of reported data plus its data-quality flags."""
    model_config = ConfigDict(frozen=True)

    ticker: str
    period: PeriodInfo
    sources: list[SourceRef] = Field(default_factory=list)
    reported: ReportedValues = Field(default_factory=ReportedValues)
    computed: dict[str, dict[str, float | None]] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    validation: list[ValidationWarning] = Field(default_factory=list)
    debug: BundleDebug = Field(default_factory=BundleDebug)


# ---------------------------------------------------------------------------
# Series result
# ---------------------------------------------------------------------------

class SeriesDebug(BaseModel):
    model_config = ConfigDict(frozen=True)

    periods_found: int = 0
    mismatch_count: int = 0
    delayed_filings: int = 0
    early_filings: int = 0
    underivable_periods: int = 0
    duplicate_periods_dropped: int = 0
    fiscal_year_end_month: int = 12
    fiscal_year_end_source: str = "detected"     # "submissions" | "detected"
    latest_end_all: str | None = None
    anchor_concept: str | None = None
    anchor_candidates: int = 0


class SeriesResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str
    series: list[QuarterBundle] = Field(default_factory=list)
    debug: SeriesDebug = Field(default_factory=SeriesDebug)
