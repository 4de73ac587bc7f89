"""Flatten an SEC companyfacts payload into uniform FactRecords.

companyfacts nests taxonomy → concept → units → unit → [record]. Any of
those levels can be missing, null, or the wrong type in the wild (and
some upstream caches rename fields), so the walk skips bad branches
rather than failing, and normalization accepts several historical names
for each field.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from typing import Any

from sec_series.fiscal import parse_iso_date
from sec_series.models import FactRecord

log = logging.getLogger(__name__)

# Where a companyfacts payload lives; cited as the source of every bundle
COMPANY_FACTS_URL = "https://data.sec.gov/api/xbrl/companyfacts/CIK{cik}.json"


# ═══════════════════════════════════════════════════════════════════════════
#  Value coercion
# ═══════════════════════════════════════════════════════════════════════════

def to_number(v: Any) -> float | None:
    """Coerce to a finite float; None for bools, NaN/inf and non-numerics."""
    if isinstance(v, bool) or not isinstance(v, (int, float, str)):
        return None
    try:
        f = float(v)
    except ValueError:
        return None
    if math.isnan(f) or math.isinf(f):
        return None
    return f


def to_text(v: Any) -> str | None:
    """Stripped string form of a leaf field; None when empty or missing."""
    if v is None:
        return None
    return str(v).strip() or None


def to_int(v: Any) -> int | None:
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, str) and v.strip().isdigit():
        return int(v.strip())
    return None


# ═══════════════════════════════════════════════════════════════════════════
#  Collection
# ═══════════════════════════════════════════════════════════════════════════

def _taxonomies(company_facts: Any) -> Mapping[str, Any]:
    """The taxonomy mapping, from a full payload or a bare ``facts`` dict."""
    if not isinstance(company_facts, Mapping):
        return {}
    inner = company_facts.get("facts")
    if isinstance(inner, Mapping):
        return inner
    return company_facts


def collect_all_facts(company_facts: Any) -> list[dict]:
    """Walk every taxonomy/concept/unit and flatten to one list of rows.

    Each row is a copy of the raw record tagged with ``concept``, ``unit``
    and ``taxonomy``. Branches of the wrong shape are skipped at every
    level.
    """
    out: list[dict] = []
    skipped = 0
    for taxonomy, concepts in _taxonomies(company_facts).items():
        if not isinstance(concepts, Mapping):
            skipped += 1
            continue
        for concept, body in concepts.items():
            units = body.get("units") if isinstance(body, Mapping) else None
            if not isinstance(units, Mapping):
                skipped += 1
                continue
            for unit, rows in units.items():
                if not isinstance(rows, list):
                    skipped += 1
                    continue
                for row in rows:
                    if not isinstance(row, Mapping):
                        skipped += 1
                        continue
                    out.append({**row, "concept": concept, "unit": unit, "taxonomy": taxonomy})

    if skipped:
        log.debug("Skipped %d malformed companyfacts branches", skipped)
    return out


def facts_for_taxonomy(company_facts: Any, taxonomy: str = "us-gaap") -> Mapping[str, Any]:
    """Concept → raw fact mapping for one taxonomy ({} when absent)."""
    concepts = _taxonomies(company_facts).get(taxonomy)
    return concepts if isinstance(concepts, Mapping) else {}


# ═══════════════════════════════════════════════════════════════════════════
#  Normalization
# ═══════════════════════════════════════════════════════════════════════════

# Logical field → source field names, highest priority first
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "period_end": ("end", "quarter_end_date", "period_end", "periodEnd", "fy_end"),
    "period_start": ("start", "period_start", "periodStart"),
    "fiscal_period": ("fp", "fiscal_period", "period"),
    "form_type": ("form", "report_form", "form_type"),
    "filed_date": ("filed", "filing_date", "filedAt", "filed_date"),
    "fiscal_year": ("fy", "fiscal_year"),
    "frame": ("frame",),
    "accession": ("accn", "accession"),
    "value": ("val", "value"),
    "concept": ("concept",),
    "unit": ("unit",),
    "taxonomy": ("taxonomy",),
}

_CONVERTERS = {
    "value": to_number,
    "fiscal_year": to_int,
}


def _first_present(row: Mapping[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        v = row.get(name)
        if v is not None and v != "":
            return v
    return None


def normalize_record(row: Mapping[str, Any] | FactRecord) -> FactRecord:
    """Normalize one raw row (or pass an existing FactRecord through)."""
    if isinstance(row, FactRecord):
        row = row._asdict()
    fields: dict[str, Any] = {}
    for field, names in FIELD_ALIASES.items():
        v = _first_present(row, names)
        fields[field] = _CONVERTERS.get(field, to_text)(v)
    return FactRecord(**fields)


def normalize_fields(records: Iterable[Mapping[str, Any] | FactRecord]) -> list[FactRecord]:
    """Normalize heterogeneous rows onto the FactRecord schema.

    For each field the first non-empty alias wins. Normalizing records
    that are already FactRecords returns equal records.
    """
    out: list[FactRecord] = []
    for row in records or ():
        if isinstance(row, (Mapping, FactRecord)):
            out.append(normalize_record(row))
    return out


def latest_period_end(records: Iterable[FactRecord]) -> str | None:
    """Latest parseable ``period_end`` across records, as ISO date."""
    latest = None
    for rec in records:
        d = parse_iso_date(rec.period_end)
        if d is not None and (latest is None or d > latest):
            latest = d
    return latest.isoformat() if latest else None
