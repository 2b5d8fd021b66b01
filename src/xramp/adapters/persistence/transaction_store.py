# src/xramp/adapters/persistence/transaction_store.py
"""
Transaction Store - Persistence for the Transaction Record Set

Two interchangeable stores with the same semantics:
- InMemoryTransactionStore: dict keyed by transaction id (tests, simulations)
- JsonFileTransactionStore: same, persisted to a JSON file with atomic writes

Both keep a partial unique index on provider_payment_id (only non-empty ids are
indexed) and hand out copies, so a caller's unsaved mutations never leak into
the store. Records are never deleted.

Files that USE this module:
- xramp.application.state_machine (load / save per transition)
- xramp.application.reconciler (lookup by provider payment id or id)
- xramp.application.payment_service (add, queries)
- xramp.app (builds the file store)
- tests.test_transaction_store (unit tests)

Files that this module USES:
- xramp.domain.models (Transaction)
- xramp.domain.errors (DuplicateProviderPaymentIdError, TransactionNotFoundError)
- xramp.config (settings for the file path)
"""
from __future__ import annotations

import copy
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from xramp.config import settings
from xramp.domain.errors import DuplicateProviderPaymentIdError, TransactionNotFoundError
from xramp.domain.models import Transaction

logger = logging.getLogger(__name__)


class TransactionStore(Protocol):
    """Protocol for transaction persistence."""

    def add(self, transaction: Transaction) -> Transaction: ...

    def get(self, transaction_id: str) -> Optional[Transaction]: ...

    def get_by_provider_payment_id(self, provider_payment_id: str) -> Optional[Transaction]: ...

    def save(self, transaction: Transaction) -> Transaction: ...

    def all(self) -> List[Transaction]: ...

    def for_user(self, user_id: str) -> List[Transaction]: ...


class InMemoryTransactionStore:
    """Dict-backed store; the reference implementation of the store semantics."""

    def __init__(self):
        self._records: Dict[str, Transaction] = {}
        self._by_provider_id: Dict[str, str] = {}

    def _check_provider_id(self, transaction: Transaction) -> None:
        pid = transaction.provider_payment_id
        if not pid:
            return
        owner = self._by_provider_id.get(pid)
        if owner is not None and owner != transaction.id:
            raise DuplicateProviderPaymentIdError(
                f"Provider payment id {pid} already belongs to transaction {owner}"
            )

    def _put(self, transaction: Transaction) -> None:
        previous = self._records.get(transaction.id)
        if previous is not None and previous.provider_payment_id != transaction.provider_payment_id:
            self._by_provider_id.pop(previous.provider_payment_id or "", None)
        self._records[transaction.id] = copy.deepcopy(transaction)
        if transaction.provider_payment_id:
            self._by_provider_id[transaction.provider_payment_id] = transaction.id

    def _persist(self) -> None:
        """Hook for durable subclasses; called after every accepted write."""

    def add(self, transaction: Transaction) -> Transaction:
        """
        Insert a new transaction.

        Raises:
            DuplicateProviderPaymentIdError: If the provider payment id is taken
            ValueError: If the transaction id already exists
        """
        if transaction.id in self._records:
            raise ValueError(f"Transaction {transaction.id} already exists")
        self._check_provider_id(transaction)
        self._put(transaction)
        self._persist()
        return copy.deepcopy(transaction)

    def get(self, transaction_id: str) -> Optional[Transaction]:
        record = self._records.get(transaction_id)
        return copy.deepcopy(record) if record is not None else None

    def get_by_provider_payment_id(self, provider_payment_id: str) -> Optional[Transaction]:
        if not provider_payment_id:
            return None
        transaction_id = self._by_provider_id.get(provider_payment_id)
        return self.get(transaction_id) if transaction_id else None

    def save(self, transaction: Transaction) -> Transaction:
        """
        Replace an existing transaction in one step.

        Raises:
            TransactionNotFoundError: If the transaction was never added
            DuplicateProviderPaymentIdError: If the provider payment id is taken
        """
        if transaction.id not in self._records:
            raise TransactionNotFoundError(f"Transaction {transaction.id} not found")
        self._check_provider_id(transaction)
        self._put(transaction)
        self._persist()
        return copy.deepcopy(transaction)

    def all(self) -> List[Transaction]:
        return [copy.deepcopy(t) for t in self._records.values()]

    def for_user(self, user_id: str) -> List[Transaction]:
        return [copy.deepcopy(t) for t in self._records.values() if t.user_id == user_id]

    def __len__(self) -> int:
        return len(self._records)


class JsonFileTransactionStore(InMemoryTransactionStore):
    """
    In-memory store mirrored to a JSON file.

    Every write rewrites the file via temp file + fsync + atomic rename. A
    corrupt file is backed up next to the original and the store starts empty.
    """

    def __init__(self, path: Optional[Path] = None):
        super().__init__()
        self.path = Path(path or settings.transactions_file)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            logger.info("No transaction file at %s, starting empty", self.path)
            return

        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            backup_path = self.path.with_suffix(".json.corrupt")
            shutil.copy2(self.path, backup_path)
            self.path.unlink()
            logger.warning("Transaction file corrupted (JSON decode error), backed up to %s: %s",
                           backup_path, e)
            return

        loaded = 0
        for raw in data.get("transactions", []):
            try:
                transaction = Transaction.from_json(raw)
            except (KeyError, ValueError, TypeError) as e:
                logger.error("Skipping unreadable transaction record %r: %s", raw.get("id"), e)
                continue
            self._put(transaction)
            loaded += 1
        logger.info("Loaded %d transactions from %s", loaded, self.path)

    def _persist(self) -> None:
        payload = {"transactions": [t.to_json() for t in self._records.values()]}

        # Atomic write: write to temp file first, then rename atomically
        temp_fd, temp_path = tempfile.mkstemp(suffix=".json.tmp", dir=str(self.path.parent), text=True)
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, str(self.path))
        except Exception as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise RuntimeError(f"Failed to save transaction file: {e}") from e
