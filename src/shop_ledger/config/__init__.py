"""Configuration module for the shop ledger."""

from shop_ledger.config.defaults import LedgerDefaults
from shop_ledger.config.logging import configure_logging
from shop_ledger.config.settings import FlatSettings, get_settings

__all__ = [
    "FlatSettings",
    "LedgerDefaults",
    "get_settings",
    "configure_logging",
]
