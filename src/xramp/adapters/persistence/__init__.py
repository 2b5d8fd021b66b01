"""
Persistence Adapters - Data Storage

This package contains adapters for persisting transactions:
- In-memory storage
- File-based storage (JSON)
"""

from xramp.adapters.persistence.transaction_store import (
    InMemoryTransactionStore,
    JsonFileTransactionStore,
    TransactionStore,
)

__all__ = [
    "InMemoryTransactionStore",
    "JsonFileTransactionStore",
    "TransactionStore",
]
