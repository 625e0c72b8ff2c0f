from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from src.api import allocations as allocation_routes
from src.api.deps import get_conn
from src.config import settings
from src.exceptions import CountTimeoutError, StorageUnavailableError
from src.export.exporter import CONTENT_TYPES, FORMATS, render
from src.search.backend import CompanySearchParams, SearchBackend, SqliteRegistryBackend
from src.utils import configure_logging

configure_logging(settings.LOG_LEVEL)
log = logging.getLogger(__name__)

app = FastAPI(title="CNAE Lead Search API")

app.include_router(allocation_routes.router)


def _error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    """
    Helper to return a JSON error payload with a consistent shape.

    Example:
        { "error": "invalid_page_size", "detail": "page_size must be between 1 and 100" }
    """
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "detail": detail},
    )


@app.exception_handler(StorageUnavailableError)
async def _storage_unavailable(request: Request, exc: StorageUnavailableError) -> JSONResponse:
    log.error("storage unavailable on %s: %s", request.url.path, exc)
    return _error_response(503, "storage_unavailable", str(exc))


@app.exception_handler(CountTimeoutError)
async def _count_timeout(request: Request, exc: CountTimeoutError) -> JSONResponse:
    log.warning("count timed out on %s: %s", request.url.path, exc)
    return _error_response(504, "count_timeout", str(exc))


def _get_search_backend(
    request: Request,
    conn: sqlite3.Connection = Depends(get_conn),
) -> SearchBackend:
    """
    A SqliteRegistryBackend over this request's own connection, so a slow
    count and a page fetch never share a handle (or a progress handler).

    Tests may inject a different backend by setting app.state.search_backend.
    """
    backend: SearchBackend | None = getattr(request.app.state, "search_backend", None)
    if backend is not None:
        return backend
    return SqliteRegistryBackend(conn)


def _parse_page(raw: str | None) -> tuple[int, JSONResponse | None]:
    """
    Parse page into a positive integer, defaulting to 1.
    """
    if raw is None or not raw.strip():
        return 1, None
    try:
        value = int(raw)
    except ValueError:
        return 0, _error_response(400, "invalid_page", "page must be an integer")
    if value < 1:
        return 0, _error_response(400, "invalid_page", "page must be >= 1")
    return value, None


def _parse_page_size(raw: str | None) -> tuple[int, JSONResponse | None]:
    """
    Parse page_size with bounds 1..SEARCH_MAX_PAGE_SIZE, defaulting to
    SEARCH_DEFAULT_PAGE_SIZE.
    """
    max_size = settings.SEARCH_MAX_PAGE_SIZE
    if raw is None or not raw.strip():
        value = settings.SEARCH_DEFAULT_PAGE_SIZE
    else:
        try:
            value = int(raw)
        except ValueError:
            return 0, _error_response(
                400,
                "invalid_page_size",
                "page_size must be an integer",
            )

    if value < 1 or value > max_size:
        return 0, _error_response(
            400,
            "invalid_page_size",
            f"page_size must be between 1 and {max_size}",
        )
    return value, None


def _parse_state(raw: str | None) -> tuple[str | None, JSONResponse | None]:
    """
    Optional two-letter region code ('sp' -> 'SP'). Blank means no filter.
    """
    if raw is None or not raw.strip():
        return None, None
    value = raw.strip().upper()
    if len(value) != 2 or not value.isalpha():
        return None, _error_response(
            400,
            "invalid_state",
            "state must be a two-letter region code",
        )
    return value, None


def _build_params(
    q: str,
    page: str | None,
    page_size: str | None,
    state: str | None,
    include_secondary: bool,
) -> tuple[CompanySearchParams | None, JSONResponse | None]:
    page_value, err = _parse_page(page)
    if err is not None:
        return None, err
    size_value, err = _parse_page_size(page_size)
    if err is not None:
        return None, err
    state_value, err = _parse_state(state)
    if err is not None:
        return None, err
    return (
        CompanySearchParams(
            term=q,
            page=page_value,
            page_size=size_value,
            state=state_value,
            include_secondary=include_secondary,
        ),
        None,
    )


def _row_to_company(row: dict[str, Any]) -> dict[str, Any]:
    """Public JSON shape of one company row."""
    return {
        "id": row.get("id"),
        "cnpj": row.get("cnpj"),
        "legal_name": row.get("legal_name"),
        "trade_name": row.get("trade_name"),
        "phone_1": row.get("phone_1"),
        "phone_2": row.get("phone_2"),
        "email": row.get("email"),
        "primary_cnae": row.get("primary_cnae"),
        "primary_cnae_description": row.get("primary_cnae_description"),
        "secondary_cnae": row.get("secondary_cnae"),
        "address": row.get("address"),
        "district": row.get("district"),
        "city": row.get("city"),
        "state": row.get("state"),
        "postal_code": row.get("postal_code"),
        "owner_name": row.get("owner_name"),
    }


@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/companies/search")
def companies_search(
    q: str = "",
    page: str | None = None,
    page_size: str | None = None,
    state: str | None = None,
    include_secondary: bool = False,
    backend: SearchBackend = Depends(_get_search_backend),
):
    """
    One page of companies matching q: a single activity code, a
    comma-separated code list, or free text matched against the activity
    description (accent/case-insensitive).

    Response:
      {
        "results":   [ {...company...}, ... ],
        "page":      1,
        "page_size": 50,
        "has_more":  true
      }

    No total is returned here; ask /companies/count for it.
    """
    params, err = _build_params(q, page, page_size, state, include_secondary)
    if err is not None:
        return err
    assert params is not None

    try:
        result = backend.search(params)
    except ValueError as exc:
        return _error_response(400, "invalid_request", str(exc))

    return {
        "results": [_row_to_company(r) for r in result.rows],
        "page": result.page,
        "page_size": result.page_size,
        "has_more": result.has_more,
    }


@app.get("/companies/count")
def companies_count(
    q: str = "",
    state: str | None = None,
    include_secondary: bool = False,
    backend: SearchBackend = Depends(_get_search_backend),
):
    """
    Exact number of companies matching the same filter /companies/search
    uses. May answer 504 count_timeout on very broad free-text terms.

    Runs in the threadpool on its own connection (sync def),
    so page requests keep being served while a count is in progress.
    """
    state_value, err = _parse_state(state)
    if err is not None:
        return err
    params = CompanySearchParams(term=q, state=state_value, include_secondary=include_secondary)
    return {"total": backend.count(params)}


@app.get("/companies/export")
def companies_export(
    q: str = "",
    page: str | None = None,
    page_size: str | None = None,
    state: str | None = None,
    include_secondary: bool = False,
    format: str = "csv",
    backend: SearchBackend = Depends(_get_search_backend),
):
    """Download one search page as CSV or XLSX."""
    fmt = (format or "csv").strip().lower()
    if fmt not in FORMATS:
        return _error_response(
            400,
            "invalid_format",
            f"format must be one of: {', '.join(FORMATS)}",
        )
    params, err = _build_params(q, page, page_size, state, include_secondary)
    if err is not None:
        return err
    assert params is not None

    try:
        result = backend.search(params)
    except ValueError as exc:
        return _error_response(400, "invalid_request", str(exc))

    filename = f"empresas_{date.today().isoformat()}.{fmt}"
    return Response(
        content=render(result.rows, fmt),
        media_type=CONTENT_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
