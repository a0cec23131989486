"""
db/ - Database Layer
====================
Handles the PostgreSQL connection pool, single statements, transactions
and schema initialization.
This layer is the lowest in the architecture and has no dependencies on other layers.
"""

from db.connection import ConnectionPool, open_pool
from db.errors import (
    BootstrapError,
    DatabaseConnectionError,
    DatabaseError,
    PoolExhaustedError,
    QueryError,
    RollbackError,
)
from db.query import RowSet, execute
from db.transaction import Transaction, TransactionState, run_transaction

__all__ = [
    "ConnectionPool",
    "open_pool",
    "execute",
    "run_transaction",
    "RowSet",
    "Transaction",
    "TransactionState",
    "DatabaseError",
    "DatabaseConnectionError",
    "PoolExhaustedError",
    "QueryError",
    "RollbackError",
    "BootstrapError",
]
