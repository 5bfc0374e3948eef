"""REST ledger store client (PostgREST-style ``/rest/v1/<table>`` endpoints)."""

import asyncio
from typing import Any, cast

import httpx
import structlog

from shop_ledger.config import get_settings
from shop_ledger.errors import (
    AuthenticationError,
    NotFoundError,
    RateLimitError,
    StoreError,
)
from shop_ledger.store.base import ListQuery

logger = structlog.get_logger(__name__)

Params = list[tuple[str, str]]


class RestLedgerStore:
    """Async client for the ledger's REST interface."""

    # Inserts are not retried: a timed-out POST may still have landed.
    _RETRYABLE_METHODS = frozenset({"GET", "PATCH"})

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        access_token: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.ledger_api_url).rstrip("/")
        self._api_key = api_key or settings.ledger_api_key.get_secret_value()
        if access_token is None and settings.ledger_access_token is not None:
            access_token = settings.ledger_access_token.get_secret_value()
        self._access_token = access_token
        self._timeout = timeout if timeout is not None else settings.ledger_timeout
        self._max_retries = (
            max_retries if max_retries is not None else settings.ledger_max_retries
        )

        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RestLedgerStore":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def set_access_token(self, token: str | None) -> None:
        """Use a user session token instead of the anonymous key."""
        self._access_token = token

    def _get_headers(self) -> dict[str, str]:
        bearer = self._access_token or self._api_key
        return {
            "Content-Type": "application/json",
            "apikey": self._api_key,
            "Authorization": f"Bearer {bearer}",
            "Prefer": "return=representation",
        }

    @staticmethod
    def _path(table: str) -> str:
        return f"/rest/v1/{table}"

    # === Generic Request ===

    async def _request(
        self,
        method: str,
        path: str,
        params: Params | None = None,
        json: dict[str, Any] | None = None,
        retry_count: int = 0,
    ) -> list[dict[str, Any]]:
        """Make a request with retry logic for idempotent methods."""
        client = await self._get_client()

        try:
            response = await client.request(
                method=method,
                url=path,
                params=params,
                json=json,
                headers=self._get_headers(),
            )
        except httpx.RequestError as e:
            if method in self._RETRYABLE_METHODS and retry_count < self._max_retries:
                logger.warning(
                    "store_request_retry",
                    method=method,
                    path=path,
                    attempt=retry_count + 1,
                    error=str(e),
                )
                await asyncio.sleep(2**retry_count)
                return await self._request(method, path, params, json, retry_count + 1)
            raise StoreError(f"Request failed: {e}") from e

        if response.status_code == 401:
            raise AuthenticationError("Not authorized", status_code=401)

        if response.status_code == 404:
            raise NotFoundError(f"{path} not found", status_code=404)

        if response.status_code == 429:
            retry_after = int(response.headers.get("Retry-After", "60"))
            raise RateLimitError(
                f"Rate limited, retry after {retry_after}s",
                status_code=429,
                details={"retry_after": retry_after},
            )

        if response.status_code >= 400:
            try:
                error_detail = response.json() if response.content else {}
            except ValueError:
                error_detail = {
                    "raw": response.text[:500] if response.text else "empty response"
                }
            raise StoreError(
                f"Store error: {response.status_code}",
                status_code=response.status_code,
                details=error_detail,
            )

        if not response.content:
            return []
        data = response.json()
        if isinstance(data, dict):
            return [cast(dict[str, Any], data)]
        if isinstance(data, list):
            return cast(list[dict[str, Any]], data)
        raise StoreError("Invalid response format", details={"raw": str(data)[:500]})

    # === Row Operations ===

    async def create(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as stored."""
        rows = await self._request("POST", self._path(table), json=row)
        if not rows:
            raise StoreError(f"Insert into {table} returned no row")
        logger.debug("row_created", table=table, row_id=rows[0].get("id"))
        return rows[0]

    async def get(self, table: str, row_id: str) -> dict[str, Any]:
        """Fetch a row by id."""
        rows = await self._request(
            "GET",
            self._path(table),
            params=[("select", "*"), ("id", f"eq.{row_id}")],
        )
        if not rows:
            raise NotFoundError(f"{table} {row_id} not found", status_code=404)
        return rows[0]

    async def update(
        self, table: str, row_id: str, changes: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply a partial update and return the stored row."""
        rows = await self._request(
            "PATCH",
            self._path(table),
            params=[("id", f"eq.{row_id}")],
            json=changes,
        )
        if not rows:
            # Update matched nothing or row policies hid the result
            raise NotFoundError(
                f"{table} {row_id} not updated (no row returned)", status_code=404
            )
        logger.debug("row_updated", table=table, row_id=row_id, columns=sorted(changes))
        return rows[0]

    async def list(
        self, table: str, query: ListQuery | None = None
    ) -> list[dict[str, Any]]:
        """List rows matching the query."""
        return await self._request(
            "GET", self._path(table), params=self._query_params(query or ListQuery())
        )

    @staticmethod
    def _query_params(query: ListQuery) -> Params:
        params: Params = [("select", "*")]
        for column, value in query.equals.items():
            params.append((column, f"eq.{value}"))
        if query.date_column:
            if query.date_from:
                params.append((query.date_column, f"gte.{query.date_from.isoformat()}"))
            if query.date_to:
                params.append((query.date_column, f"lte.{query.date_to.isoformat()}"))
        if query.order_by:
            direction = "desc" if query.descending else "asc"
            params.append(("order", f"{query.order_by}.{direction}"))
        if query.limit is not None:
            params.append(("limit", str(min(max(query.limit, 1), 1000))))
        return params
