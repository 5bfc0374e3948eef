"""Explicit ledger defaults passed into payment and report functions."""

from __future__ import annotations

from dataclasses import dataclass

from shop_ledger.config.settings import FlatSettings


@dataclass(frozen=True)
class LedgerDefaults:
    """Defaults resolved once at the call boundary.

    Core logic receives this object instead of reading settings, so two
    services with different defaults can run side by side.
    """

    purchase_category: str = "expense_purchases"
    sale_category: str = "income_sales"
    payment_method: str = "Cash"
    account_id: str | None = None

    @classmethod
    def from_settings(cls, settings: FlatSettings) -> LedgerDefaults:
        return cls(
            purchase_category=settings.purchase_category,
            sale_category=settings.sale_category,
            payment_method=settings.default_payment_method,
            account_id=settings.default_account_id,
        )
