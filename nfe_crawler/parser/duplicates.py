"""Duplicate-import lookup.

The orchestrator only needs an existence check on (owner_id, invoice_key);
persistent stores implement the DuplicateChecker protocol.
"""

import threading
from typing import Protocol


class DuplicateChecker(Protocol):
    """Existence lookup against the caller's store of imported invoices."""

    def exists(self, owner_id: str, invoice_key: str) -> bool: ...


class InMemoryDuplicateChecker:
    """Process-local DuplicateChecker for tests and single-instance setups."""

    def __init__(self) -> None:
        self._keys: set[tuple[str, str]] = set()
        self._lock = threading.Lock()

    def record(self, owner_id: str, invoice_key: str) -> None:
        """Mark an invoice as imported by an owner."""
        with self._lock:
            self._keys.add((owner_id, invoice_key))

    def exists(self, owner_id: str, invoice_key: str) -> bool:
        with self._lock:
            return (owner_id, invoice_key) in self._keys
