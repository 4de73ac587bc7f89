"""Anchor selection: which period ends make up the quarterly series.

companyfacts mixes quarterly, year-to-date, annual and re-stated values
for the same concept, often several records per period end. Selection
keeps one record per distinct quarter end:

  1. drop records without a parseable period end
  2. keep quarter-like records (Q1–Q4 label, 10-Q form, or ~90-day span)
  3. drop anything annual (FY label or 10-K form), even if step 2 matched
  4. dedup by period end, best-scored record wins
  5. newest first
  6. truncate
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date
from typing import NamedTuple

from sec_series.config import Settings, get_config
from sec_series.fiscal import days_between, parse_iso_date
from sec_series.models import AnchorPeriod, FactRecord

log = logging.getLogger(__name__)

QUARTER_LABELS = frozenset({"Q1", "Q2", "Q3", "Q4"})


class QuarterWindow(NamedTuple):
    """Inclusive start→end span, in days, that counts as one quarter."""
    min_days: int = 70
    max_days: int = 120

    def contains(self, days: int | None) -> bool:
        return days is not None and self.min_days <= days <= self.max_days


class DedupWeights(NamedTuple):
    """Scoring magnitudes for picking one record per period end."""
    form_10q: int = 10
    filed: int = 5
    frame: int = 1
    fy_penalty: int = 50


def default_window(settings: Settings | None = None) -> QuarterWindow:
    cfg = settings or get_config()
    return QuarterWindow(cfg.quarter_min_days, cfg.quarter_max_days)


def default_weights(settings: Settings | None = None) -> DedupWeights:
    cfg = settings or get_config()
    return DedupWeights(
        cfg.dedup_weight_10q,
        cfg.dedup_weight_filed,
        cfg.dedup_weight_frame,
        cfg.dedup_penalty_fy,
    )


def _norm(v: str | None) -> str:
    return str(v or "").strip().upper()


# ═══════════════════════════════════════════════════════════════════════════
#  Classification
# ═══════════════════════════════════════════════════════════════════════════

def is_quarter_like(
    rec: FactRecord,
    *,
    allow_10q_fallback: bool = True,
    window: QuarterWindow = QuarterWindow(),
) -> bool:
    if _norm(rec.fiscal_period) in QUARTER_LABELS:
        return True
    if allow_10q_fallback and _norm(rec.form_type) == "10-Q":
        return True
    if rec.period_start and rec.period_end:
        return window.contains(days_between(rec.period_start, rec.period_end))
    return False


def is_annual(rec: FactRecord) -> bool:
    return _norm(rec.fiscal_period) == "FY" or _norm(rec.form_type) == "10-K"


def dedup_score(rec: FactRecord, weights: DedupWeights = DedupWeights()) -> int:
    score = 0
    if _norm(rec.form_type) == "10-Q":
        score += weights.form_10q
    if rec.filed_date:
        score += weights.filed
    if rec.frame:
        score += weights.frame
    if _norm(rec.fiscal_period) == "FY":
        score -= weights.fy_penalty
    return score


# ═══════════════════════════════════════════════════════════════════════════
#  Selection
# ═══════════════════════════════════════════════════════════════════════════

def select_anchors(
    records: Iterable[FactRecord],
    max: int = 12,
    allow_10q_fallback: bool = True,
    *,
    window: QuarterWindow | None = None,
    weights: DedupWeights | None = None,
) -> list[AnchorPeriod]:
    """Select up to ``max`` distinct quarter-end anchors, newest first.

    Within one period end the highest ``dedup_score`` wins; on equal
    scores the record seen first is kept.
    """
    window = window or default_window()
    weights = weights or default_weights()

    best: dict[date, tuple[int, FactRecord]] = {}
    seen = 0
    for rec in records:
        end = parse_iso_date(rec.period_end)
        if end is None:
            continue
        seen += 1
        if not is_quarter_like(rec, allow_10q_fallback=allow_10q_fallback, window=window):
            continue
        if is_annual(rec):
            continue
        score = dedup_score(rec, weights)
        prev = best.get(end)
        if prev is None or score > prev[0]:
            best[end] = (score, rec)

    ordered = sorted(best.items(), key=lambda kv: kv[0], reverse=True)
    anchors = [
        AnchorPeriod(
            period_end=end.isoformat(),
            period_start=rec.period_start,
            form_type=rec.form_type,
            filed_date=rec.filed_date,
            fiscal_period=rec.fiscal_period,
            fiscal_year=rec.fiscal_year,
            frame=rec.frame,
            concept=rec.concept,
            score=score,
        )
        for end, (score, rec) in (ordered[:max] if max > 0 else [])
    ]
    log.debug(
        "Anchor selection: %d dated records → %d distinct quarters → %d kept",
        seen, len(best), len(anchors),
    )
    return anchors
