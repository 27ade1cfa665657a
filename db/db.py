from contextlib import contextmanager

import psycopg2
import psycopg2.pool

from src.config import get_config

_pool: psycopg2.pool.SimpleConnectionPool | None = None


def init_pool():
    global _pool
    if _pool is None:
        db_cfg = get_config().database

        _pool = psycopg2.pool.SimpleConnectionPool(
            1,
            db_cfg.max_connections,
            host=db_cfg.host,
            port=db_cfg.port,
            user=db_cfg.user,
            password=db_cfg.password,
            database=db_cfg.database,
        )
    return _pool


def get_conn():
    init_pool()
    return _pool.getconn()


def put_conn(conn):
    if _pool:
        _pool.putconn(conn)


@contextmanager
def transaction():
    """Borrow a connection and commit on success, roll back on any error."""
    conn = get_conn()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        put_conn(conn)


def close_pool():
    """Close the connection pool."""
    global _pool
    if _pool:
        _pool.closeall()
        _pool = None
