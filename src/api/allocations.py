# src/api/allocations.py
from __future__ import annotations

import logging
import sqlite3

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from src.allocation import AllocationEngine, DistributionLedger, list_active_representatives
from src.api.deps import get_allocation_config, get_conn, require_admin
from src.config import AllocationConfig
from src.search.terms import split_codes

log = logging.getLogger(__name__)

router = APIRouter(
    tags=["allocations"],
    dependencies=[Depends(require_admin)],
)


class AllocationRequest(BaseModel):
    """
    Body of POST /allocations.

      {"codes": ["6821801"], "limit": 20}
      {"set": "real_estate"}
      {}                                  -> default set, default limit
    """

    model_config = ConfigDict(populate_by_name=True)

    codes: list[str] | None = None
    target_set: str | None = Field(default=None, alias="set")
    limit: int | None = None


def _bad_request(detail: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "invalid_request", "detail": detail})


@router.get("/representatives")
def representatives(conn: sqlite3.Connection = Depends(get_conn)) -> list[dict[str, object]]:
    return [r.to_dict() for r in list_active_representatives(conn)]


@router.get("/allocations/preview")
def allocation_preview(
    codes: str | None = None,
    target_set: str | None = Query(default=None, alias="set"),
    conn: sqlite3.Connection = Depends(get_conn),
    cfg: AllocationConfig = Depends(get_allocation_config),
):
    """
    How many undistributed companies each active representative could
    still receive for the target codes. Nothing is written.
    """
    try:
        target = cfg.resolve(split_codes(codes or ""), target_set)
        previews = AllocationEngine(conn).preview(target)
    except ValueError as exc:
        return _bad_request(str(exc))
    return {"codes": target, "representatives": [p.to_dict() for p in previews]}


@router.post("/allocations")
def create_allocations(
    body: AllocationRequest,
    conn: sqlite3.Connection = Depends(get_conn),
    cfg: AllocationConfig = Depends(get_allocation_config),
):
    """
    Run one allocation round over every active representative and return
    each representative's list. A representative whose attempt failed has
    an empty list and `error` set; the others are still committed.
    """
    limit = body.limit if body.limit is not None else cfg.default_limit
    try:
        target = cfg.resolve(body.codes, body.target_set)
        run = AllocationEngine(conn).allocate(target, limit)
    except ValueError as exc:
        return _bad_request(str(exc))

    log.info(
        "allocation run at %s: %d representatives, %d companies",
        run.exported_at,
        len(run.allocations),
        run.grand_total,
    )
    return run.to_dict()


@router.get("/allocations/stats")
def allocation_stats(conn: sqlite3.Connection = Depends(get_conn)) -> list[dict[str, object]]:
    return [s.to_dict() for s in DistributionLedger(conn).statistics()]
