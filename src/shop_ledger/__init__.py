"""Shop Ledger - order, bill and payment ledger core with financial reports."""

__version__ = "0.1.0"

from shop_ledger.cache import ReadCache
from shop_ledger.config import LedgerDefaults, configure_logging, get_settings
from shop_ledger.errors import (
    LedgerError,
    PartialWriteFailure,
    PaymentError,
    StaleReadError,
    StatusError,
    TransactionLogFailure,
    ValidationError,
    WriteFailure,
)
from shop_ledger.models import (
    Account,
    Actor,
    Bill,
    BillStatus,
    EntityRef,
    LineItem,
    Order,
    OrderStatus,
    Transaction,
    TransactionType,
)
from shop_ledger.payments import PaymentOutcome, PaymentRecorder, PaymentRequest, SagaOutcome
from shop_ledger.realtime import CacheInvalidator, ChangeEvent, ChangeFeed
from shop_ledger.reports import DateRange, ReportInput, ReportKind, aggregate
from shop_ledger.repository import LedgerRepository
from shop_ledger.service import LedgerService
from shop_ledger.state_machines import BillAction, OrderAction
from shop_ledger.store import LedgerStore, ListQuery, RestLedgerStore

__all__ = [
    # Version
    "__version__",
    # Models
    "Account",
    "Actor",
    "Bill",
    "BillStatus",
    "EntityRef",
    "LineItem",
    "Order",
    "OrderStatus",
    "Transaction",
    "TransactionType",
    # Lifecycle
    "OrderAction",
    "BillAction",
    # Payments
    "PaymentRecorder",
    "PaymentRequest",
    "PaymentOutcome",
    "SagaOutcome",
    # Reports
    "DateRange",
    "ReportInput",
    "ReportKind",
    "aggregate",
    # Store, cache and change feed
    "LedgerStore",
    "ListQuery",
    "RestLedgerStore",
    "ReadCache",
    "LedgerRepository",
    "ChangeEvent",
    "ChangeFeed",
    "CacheInvalidator",
    # Service
    "LedgerService",
    # Errors
    "LedgerError",
    "PaymentError",
    "ValidationError",
    "TransactionLogFailure",
    "PartialWriteFailure",
    "WriteFailure",
    "StaleReadError",
    "StatusError",
    # Config
    "LedgerDefaults",
    "get_settings",
    "configure_logging",
]
