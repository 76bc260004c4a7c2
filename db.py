import psycopg2
from psycopg2.pool import SimpleConnectionPool
from contextlib import contextmanager
from settings import settings
import psycopg2.extras
_pool: SimpleConnectionPool | None = None


class PoolNotInitialized(RuntimeError):
    pass


def init_pool(dsn: str | None = None):
    """
    Initialize the PostgreSQL connection pool.
    Called once by the process entry point (API lifespan or worker main).
    """
    psycopg2.extras.register_uuid()
    global _pool
    if _pool is None:
        _pool = SimpleConnectionPool(
            minconn=settings.DB_POOL_MIN,
            maxconn=settings.DB_POOL_MAX,
            dsn=dsn or settings.DATABASE_URL,
            connect_timeout=5,
        )


def close_pool():
    """
    Gracefully close all pooled connections.
    """
    global _pool
    if _pool:
        _pool.closeall()
        _pool = None


def pool_ready() -> bool:
    return _pool is not None


@contextmanager
def get_conn():
    """
    Provides a transactional DB connection.
    Auto-commits on success, rolls back on error.
    """
    if _pool is None:
        raise PoolNotInitialized("init_pool() must be called by the entry point before get_conn()")

    conn = _pool.getconn()

    try:
        # Safety: never allow long-running queries
        with conn.cursor() as cur:
            cur.execute("SET statement_timeout = '5000ms';")
            cur.execute("SET idle_in_transaction_session_timeout = '5000ms';")
            cur.execute("SET application_name = 'opsrelay';")

        yield conn
        conn.commit()

    except Exception:
        conn.rollback()
        raise

    finally:
        _pool.putconn(conn)
