"""Fundamentals API: quarterly SEC series over HTTP.

Endpoints:
  GET /health
  GET /api/fundamentals/{ticker}/series?limit=16   (limit clamped to 1–40)
  GET /api/fundamentals/{ticker}/latest
  GET /api/fundamentals/{ticker}/period/{period_id}

Run:  python -m sec_series.app
Open: http://localhost:{PORT}  (default 8877)
"""

from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from sec_series.config import get_config
from sec_series.models import SeriesResult
from sec_series.sec_client import SECClient, SECClientError, get_sec_client
from sec_series.series import extract_series

log = logging.getLogger(__name__)

app = FastAPI(title="SEC Fundamentals Series")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_client() -> SECClient:
    """Dependency hook; tests override it with a stub client."""
    return get_sec_client()


def clamp_limit(limit: int | None) -> int:
    cfg = get_config()
    if limit is None:
        return cfg.series_default_limit
    return max(1, min(limit, cfg.series_max_limit))


def _load_series(ticker: str, limit: int, client: SECClient) -> SeriesResult:
    try:
        facts = client.get_company_facts(ticker)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SECClientError as exc:
        log.warning("companyfacts fetch failed for %s: %s", ticker, exc)
        raise HTTPException(status_code=502, detail="SEC EDGAR request failed") from exc

    fye = client.get_fiscal_year_end_month(ticker)
    result = extract_series(ticker, facts, limit, fiscal_year_end_month=fye)
    if not result.series:
        raise HTTPException(
            status_code=404,
            detail={
                "error": "No quarterly data found",
                "ticker": result.ticker,
                "debug": result.debug.model_dump(mode="json"),
            },
        )
    return result


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/api/fundamentals/{ticker}/series")
def get_series(
    ticker: str,
    limit: int | None = Query(default=None),
    client: SECClient = Depends(get_client),
):
    result = _load_series(ticker, clamp_limit(limit), client)
    return result.model_dump(mode="json")


@app.get("/api/fundamentals/{ticker}/latest")
def get_latest(ticker: str, client: SECClient = Depends(get_client)):
    result = _load_series(ticker, clamp_limit(None), client)
    return {
        "ticker": result.ticker,
        "latest": result.series[0].model_dump(mode="json"),
        "debug": result.debug.model_dump(mode="json"),
    }


@app.get("/api/fundamentals/{ticker}/period/{period_id}")
def get_period(ticker: str, period_id: str, client: SECClient = Depends(get_client)):
    result = _load_series(ticker, get_config().series_max_limit, client)
    wanted = period_id.strip().upper()
    for bundle in result.series:
        if bundle.period.period_id == wanted:
            return bundle.model_dump(mode="json")
    raise HTTPException(
        status_code=404,
        detail={
            "error": f"Period {wanted} not found",
            "available_periods": [b.period.period_id for b in result.series if b.period.period_id],
        },
    )


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    log.info("Starting fundamentals API on port %d", config.port)
    uvicorn.run(app, host="0.0.0.0", port=config.port)
