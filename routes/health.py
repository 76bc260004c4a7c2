from __future__ import annotations

import os

from fastapi import APIRouter

from db import get_conn, pool_ready

router = APIRouter(tags=["health"])

MIGRATION_REVISION = "0001_operations_schema"


def _check_db() -> tuple[bool, str | None]:
    if not pool_ready():
        return False, "pool not initialized"
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, f"{type(exc).__name__}: {exc}"


def _check_migrations() -> bool:
    if not pool_ready():
        return False
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass('ops.alembic_version');")
                if not cur.fetchone()[0]:
                    return False
                cur.execute("SELECT version_num FROM ops.alembic_version LIMIT 1;")
                row = cur.fetchone()
                return bool(row and row[0] == MIGRATION_REVISION)
    except Exception:
        return False


def _resolve_git_sha() -> str | None:
    return (os.getenv("GIT_SHA") or "").strip() or None


@router.get("/health")
def health():
    return {
        "ok": True,
        "env": (os.getenv("ENVIRONMENT") or os.getenv("ENV") or "").strip(),
        "git_sha": _resolve_git_sha(),
    }


@router.get("/readyz")
def readyz():
    db_ok, db_error = _check_db()
    migrations_ok = _check_migrations()
    return {
        "ready": bool(db_ok and migrations_ok),
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
        "db_ok": db_ok,
        "db_error": db_error,
        "migrations_ok": migrations_ok,
        "migration_revision": MIGRATION_REVISION,
    }
