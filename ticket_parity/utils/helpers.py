"""Shared session helpers for the write paths.

begin_write:  open the outer write transaction before any savepoint or
              compare-and-increment (SQLite only; a no-op elsewhere)
"""
import logging

logger = logging.getLogger(__name__)


def begin_write(session) -> None:
    """Start the session's transaction on SQLite with the write lock held.

    pysqlite sends no BEGIN of its own until the first DML statement. A
    SAVEPOINT issued before that opens the transaction itself, and its
    RELEASE then commits, so ``begin_nested()`` on a fresh connection would
    persist work the caller may still roll back. ``BEGIN IMMEDIATE`` also
    makes concurrent writers queue on the busy timeout instead of failing
    the SHARED -> RESERVED upgrade.
    """
    conn = session.connection()
    if conn.dialect.name != "sqlite":
        return
    dbapi_conn = conn.connection.dbapi_connection
    if not dbapi_conn.in_transaction:
        conn.exec_driver_sql("BEGIN IMMEDIATE")
        logger.debug("Opened SQLite write transaction")
