"""Ledger store interface.

The store offers per-row operations only. No call commits more than one row
atomically, and callers must be written with that in mind.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol


@dataclass(frozen=True)
class ListQuery:
    """Filter for ``LedgerStore.list``.

    ``equals`` matches columns exactly. ``date_column`` together with
    ``date_from``/``date_to`` selects an inclusive date window.
    """

    equals: dict[str, Any] = field(default_factory=dict)
    date_column: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    order_by: str | None = None
    descending: bool = True
    limit: int | None = None


class LedgerStore(Protocol):
    """Remote record store for orders, bills, transactions and accounts."""

    async def create(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as stored (including its id)."""
        ...

    async def get(self, table: str, row_id: str) -> dict[str, Any]:
        """Fetch a row. Raises ``NotFoundError`` if it does not exist."""
        ...

    async def update(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply a partial update to one row and return the stored row."""
        ...

    async def list(self, table: str, query: ListQuery | None = None) -> list[dict[str, Any]]:
        """List rows matching the query."""
        ...
