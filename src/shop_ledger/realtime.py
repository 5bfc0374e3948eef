"""Realtime change feed for ledger tables.

The feed holds a websocket connection to the store's realtime endpoint, joins
one channel per table, heartbeats, and turns incoming change messages into
``ChangeEvent`` values passed to every registered hook. Changes are only a
"data changed, refetch" signal; ``CacheInvalidator`` is the hook that turns
them into cache invalidations.
"""

import asyncio
import contextlib
import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import structlog
import websockets
from websockets.asyncio.client import ClientConnection, connect

from shop_ledger.cache import CachePort, row_key
from shop_ledger.config import get_settings
from shop_ledger.models import Table

logger = structlog.get_logger(__name__)

EventHook = Callable[["ChangeEvent"], None]


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class ChangeEvent:
    """One row change on a ledger table."""

    table: str
    kind: ChangeKind
    row: dict[str, Any] = field(default_factory=dict)
    old_row: dict[str, Any] = field(default_factory=dict)
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def row_id(self) -> str | None:
        value = self.row.get("id") or self.old_row.get("id")
        return str(value) if value is not None else None

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "ChangeEvent | None":
        """Decode a change message; returns None for anything that is not a row change.

        Accepts the channel envelope (``payload.data`` with ``record`` and
        ``old_record``) as well as a flat ``{table, type, new, old}`` object.
        """
        payload = message.get("payload")
        if isinstance(payload, dict):
            data = payload.get("data", payload)
        else:
            data = message
        if not isinstance(data, dict):
            return None

        table = data.get("table")
        kind = data.get("type") or data.get("eventType")
        if not table or not kind:
            return None
        try:
            change_kind = ChangeKind(str(kind).lower())
        except ValueError:
            return None

        row = data.get("record") or data.get("new") or {}
        old_row = data.get("old_record") or data.get("old") or {}
        return cls(table=str(table), kind=change_kind, row=dict(row), old_row=dict(old_row))

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "kind": self.kind.value,
            "row_id": self.row_id,
            "received_at": self.received_at.isoformat(),
        }


class CacheInvalidator:
    """Change hook that invalidates the changed row and its table's lists."""

    def __init__(self, cache: CachePort):
        self._cache = cache

    def __call__(self, event: ChangeEvent) -> None:
        if event.row_id is not None:
            self._cache.invalidate(row_key(event.table, event.row_id))
        self._cache.invalidate_lists(event.table)
        logger.debug("cache_invalidated_by_change", **event.to_dict())


class ChangeFeed:
    """Websocket client for table change notifications.

    Usage:
        feed = ChangeFeed()
        feed.add_event_hook(CacheInvalidator(cache))
        await feed.run()  # until feed.stop()
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        tables: Iterable[Table | str] | None = None,
        heartbeat_interval: float | None = None,
        max_backoff: float = 30.0,
    ):
        settings = get_settings()
        self._url = url or settings.ledger_realtime_url
        self._api_key = api_key or settings.ledger_api_key.get_secret_value()
        self._tables = [Table(t).value for t in (tables or list(Table))]
        self._heartbeat_interval = (
            heartbeat_interval
            if heartbeat_interval is not None
            else settings.ledger_realtime_heartbeat
        )
        self._max_backoff = max_backoff

        self._event_hooks: list[EventHook] = []
        self._connection: ClientConnection | None = None
        self._ref = 0
        self._is_running = False

        self._logger = logger.bind(component="change_feed")

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def tables(self) -> list[str]:
        return list(self._tables)

    def add_event_hook(self, hook: EventHook) -> None:
        """Add a hook to be called for every change event."""
        self._event_hooks.append(hook)

    def remove_event_hook(self, hook: EventHook) -> None:
        if hook in self._event_hooks:
            self._event_hooks.remove(hook)

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def _connect_url(self) -> str:
        separator = "&" if "?" in self._url else "?"
        return f"{self._url}{separator}apikey={self._api_key}&vsn=1.0.0"

    # === Protocol messages ===

    def join_message(self, table: str) -> dict[str, Any]:
        return {
            "topic": f"realtime:public:{table}",
            "event": "phx_join",
            "payload": {
                "config": {
                    "postgres_changes": [{"event": "*", "schema": "public", "table": table}]
                }
            },
            "ref": self._next_ref(),
        }

    def heartbeat_message(self) -> dict[str, Any]:
        return {"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": self._next_ref()}

    # === Dispatch ===

    def dispatch(self, event: ChangeEvent) -> None:
        """Call every hook with ``event``; a failing hook does not stop the others."""
        self._logger.info("change_event_received", **event.to_dict())
        for hook in self._event_hooks:
            try:
                hook(event)
            except Exception as e:
                self._logger.error("event_hook_error", error=str(e), table=event.table)

    def handle_message(self, message: str | bytes) -> ChangeEvent | None:
        """Decode one raw websocket message and dispatch it if it is a change."""
        if isinstance(message, bytes):
            try:
                message = message.decode("utf-8")
            except UnicodeDecodeError:
                self._logger.warning("invalid_message_encoding")
                return None
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            self._logger.warning("invalid_json")
            return None
        if not isinstance(data, dict):
            return None

        event_name = data.get("event")
        if event_name in ("phx_reply", "system", "presence_state"):
            self._logger.debug(
                "feed_control_message", message_event=event_name, topic=data.get("topic")
            )
            return None
        if event_name == "phx_error":
            self._logger.warning("channel_error", topic=data.get("topic"))
            return None

        event = ChangeEvent.from_message(data)
        if event is not None:
            self.dispatch(event)
        return event

    # === Connection loop ===

    async def _heartbeat(self, connection: ClientConnection) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            await connection.send(json.dumps(self.heartbeat_message()))

    async def _listen(self, connection: ClientConnection) -> None:
        for table in self._tables:
            await connection.send(json.dumps(self.join_message(table)))
        self._logger.info("feed_subscribed", tables=self._tables)

        heartbeat = asyncio.create_task(self._heartbeat(connection))
        try:
            async for message in connection:
                self.handle_message(message)
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

    async def run(self) -> None:
        """Connect and dispatch events until ``stop()``, reconnecting with backoff."""
        self._is_running = True
        attempt = 0
        while self._is_running:
            try:
                async with connect(self._connect_url()) as connection:
                    self._connection = connection
                    attempt = 0
                    self._logger.info("feed_connected", url=self._url)
                    await self._listen(connection)
            except (websockets.ConnectionClosed, OSError) as e:
                self._logger.warning("feed_disconnected", error=str(e))
            finally:
                self._connection = None

            if not self._is_running:
                break
            delay = min(2**attempt, self._max_backoff)
            attempt += 1
            self._logger.info("feed_reconnecting", delay=delay, attempt=attempt)
            await asyncio.sleep(delay)

        self._logger.info("feed_stopped")

    async def stop(self) -> None:
        """Stop the feed and close the connection."""
        self._is_running = False
        if self._connection is not None:
            await self._connection.close()
