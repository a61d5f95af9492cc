# walletgate/services/ledger.py
"""
Content catalog and purchase ledger.

The access authorizer only needs two reads: the entry being requested and
whether a purchase exists for (entry, wallet). Both live behind small
interfaces so a relational store can replace the in-memory version used
for development and tests.
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple

logger = logging.getLogger(__name__)


@dataclass
class ContentEntry:
    id: str
    content_id: str
    owner_address: str
    title: Optional[str] = None
    is_free: bool = False
    piid: Optional[str] = None
    price: Optional[str] = None


class ContentCatalog(ABC):

    @abstractmethod
    def get_entry(self, entry_id: str) -> Optional[ContentEntry]:
        ...

    @abstractmethod
    def add_entry(self, entry: ContentEntry) -> None:
        ...

    @abstractmethod
    def remove_entry(self, entry_id: str) -> None:
        ...


class PurchaseLedger(ABC):

    @abstractmethod
    def has_purchase(self, entry_id: str, wallet_address: str) -> bool:
        """Point lookup: does a transaction exist for this entry and payer?"""

    @abstractmethod
    def record_purchase(self, entry_id: str, wallet_address: str) -> None:
        ...


class InMemoryLedger(ContentCatalog, PurchaseLedger):
    """Thread-safe in-memory catalog and ledger."""

    def __init__(self):
        self._entries: Dict[str, ContentEntry] = {}
        self._purchases: Set[Tuple[str, str]] = set()
        self._lock = threading.Lock()

    def get_entry(self, entry_id: str) -> Optional[ContentEntry]:
        with self._lock:
            return self._entries.get(entry_id)

    def add_entry(self, entry: ContentEntry) -> None:
        with self._lock:
            self._entries[entry.id] = entry

    def remove_entry(self, entry_id: str) -> None:
        with self._lock:
            self._entries.pop(entry_id, None)

    def has_purchase(self, entry_id: str, wallet_address: str) -> bool:
        with self._lock:
            return (entry_id, wallet_address.lower()) in self._purchases

    def record_purchase(self, entry_id: str, wallet_address: str) -> None:
        with self._lock:
            self._purchases.add((entry_id, wallet_address.lower()))
        logger.info(f"Recorded purchase of entry {entry_id} by {wallet_address.lower()}")

    def reset(self) -> None:
        """Drop all entries and purchases (useful for testing)."""
        with self._lock:
            self._entries.clear()
            self._purchases.clear()


# Global ledger instance
_ledger: Optional[InMemoryLedger] = None
_ledger_lock = threading.Lock()


def get_ledger() -> InMemoryLedger:
    """Get the process-wide catalog/ledger."""
    global _ledger

    if _ledger is None:
        with _ledger_lock:
            if _ledger is None:
                _ledger = InMemoryLedger()

    return _ledger
