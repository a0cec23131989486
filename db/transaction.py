"""
db/transaction.py
-----------------
Runs a caller-supplied unit of work inside one transaction on one
checked-out connection.

    def transfer(tx):
        tx.execute("UPDATE ... WHERE id = %s", (a,))
        tx.execute("UPDATE ... WHERE id = %s", (b,))
        return True

    run_transaction(pool, transfer)

The coordinator owns BEGIN/COMMIT/ROLLBACK and the release of the
connection; `work` only issues statements and returns a result or raises.
"""

from enum import Enum
from typing import Callable, Optional, TypeVar

from psycopg2.extensions import connection as PgConnection

from db.connection import ConnectionPool
from db.errors import RollbackError
from db.query import Params, RowSet, commit, run_statement
from utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class TransactionState(str, Enum):
    ACQUIRED = "acquired"
    IN_TRANSACTION = "in_transaction"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    RELEASED = "released"


class Transaction:
    """
    Handle passed to the unit of work.

    Attributes:
        connection: The raw psycopg2 connection, exclusively owned until release.
        state: Current TransactionState.
        history: Every state entered, in order. No state appears twice.
    """

    def __init__(self, connection: PgConnection):
        self.connection = connection
        self.state: Optional[TransactionState] = None
        self.history: list[TransactionState] = []
        self._enter(TransactionState.ACQUIRED)

    def _enter(self, state: TransactionState) -> None:
        if self.state is TransactionState.RELEASED or state in self.history:
            raise RuntimeError(f"Illegal transaction transition {self.state} -> {state}")
        self.state = state
        self.history.append(state)

    @property
    def active(self) -> bool:
        return self.state is TransactionState.IN_TRANSACTION

    def execute(self, statement: str, params: Params = None) -> RowSet:
        """Run a statement on this transaction's connection."""
        if not self.active:
            raise RuntimeError(f"Transaction is not active (state={self.state.value})")
        return run_statement(self.connection, statement, params)


def run_transaction(pool: ConnectionPool, work: Callable[[Transaction], T]) -> T:
    """
    Execute `work` atomically.

    Args:
        pool: The process connection pool.
        work: Callable receiving a Transaction; its return value is returned.

    Returns:
        Whatever `work` returned, after COMMIT.

    Raises:
        PoolExhaustedError: No connection became available in time.
        RollbackError: `work` failed and the ROLLBACK failed too; carries both.
        Any exception raised by `work` (or QueryError from COMMIT) is
        re-raised unchanged after ROLLBACK.
    """
    conn = pool.acquire()
    tx = Transaction(conn)
    discard = False
    try:
        # psycopg2 issues BEGIN before the first statement on a
        # non-autocommit connection
        tx._enter(TransactionState.IN_TRANSACTION)
        try:
            result = work(tx)
            commit(conn)
        except BaseException as original:
            if conn.closed:
                # server already dropped the transaction with the connection
                discard = True
            else:
                try:
                    conn.rollback()
                except Exception as rollback_error:
                    discard = True
                    logger.error(f"❌ Rollback failed: {rollback_error} (after {original!r})")
                    raise RollbackError(original, rollback_error) from original
            tx._enter(TransactionState.ROLLED_BACK)
            logger.debug(f"Transaction rolled back: {original!r}")
            raise
        tx._enter(TransactionState.COMMITTED)
        return result
    finally:
        pool.release(conn, discard=discard)
        tx._enter(TransactionState.RELEASED)
