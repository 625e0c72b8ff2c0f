# src/api/deps.py
from __future__ import annotations

import sqlite3
from collections.abc import Iterator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from src.config import AllocationConfig, load_allocation_config, settings
from src.db import get_connection

# Sent by the back-office tool that triggers allocation rounds.
# Example:  x-admin-api-key: supersecret
api_key_header = APIKeyHeader(name="x-admin-api-key", auto_error=False)


def get_conn(request: Request) -> Iterator[sqlite3.Connection]:
    """
    One SQLite connection per request, closed when the response is done.

    Connections are never shared between requests: a count's progress
    handler and an allocation's BEGIN IMMEDIATE are per-connection state,
    and two allocation rounds must contend for SQLite's write lock rather
    than interleave on one handle.

    Tests point this at a temporary database by setting app.state.db_path.
    """
    db_path: str | None = getattr(request.app.state, "db_path", None)
    # FastAPI may open, use and close the connection on different
    # threadpool workers; each request still has exclusive use of it.
    conn = get_connection(db_path, check_same_thread=False)
    try:
        yield conn
    finally:
        conn.close()


def get_allocation_config(request: Request) -> AllocationConfig:
    cfg: AllocationConfig | None = getattr(request.app.state, "allocation_config", None)
    if cfg is None:
        cfg = load_allocation_config()
        request.app.state.allocation_config = cfg
    return cfg


def _client_ip_permitted(client_ip: str | None) -> bool:
    """
    ADMIN_ALLOWED_IPS narrows who may run allocation rounds. An empty list
    means the key alone decides; an unknown client address never passes a
    non-empty list.
    """
    allowed = settings.ADMIN_ALLOWED_IPS
    if not allowed:
        return True
    return bool(client_ip) and client_ip in allowed


def require_admin(
    request: Request,
    api_key: str | None = Depends(api_key_header),
) -> None:
    """
    Guard for the representative / allocation router.

    POST /allocations writes to the distribution ledger, which can never be
    undone, and the preview and stats routes expose who received what. So
    the whole router sits behind this check, while /companies/* stays open:

      - ADMIN_API_KEY empty: no key required (local dev and tests).
      - ADMIN_API_KEY set: x-admin-api-key must match, else 401.
      - ADMIN_ALLOWED_IPS set: the caller's address must be listed, else 403.

    The key is checked first so an unauthenticated caller learns nothing
    about the allow-list.
    """
    configured_key = settings.ADMIN_API_KEY
    if configured_key and api_key != configured_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Allocation routes need a valid x-admin-api-key header",
        )

    client_ip = request.client.host if request.client else None
    if not _client_ip_permitted(client_ip):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Allocation routes are not open to {client_ip or 'this client'}",
        )
