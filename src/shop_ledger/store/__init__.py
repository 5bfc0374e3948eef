"""Ledger store adapters."""

from shop_ledger.store.base import LedgerStore, ListQuery
from shop_ledger.store.rest import RestLedgerStore

__all__ = ["LedgerStore", "ListQuery", "RestLedgerStore"]
