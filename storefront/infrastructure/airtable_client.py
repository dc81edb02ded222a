"""Airtable HTTP client.

Thin async wrapper over the Airtable REST API used by the order sink
and the checkout tracker.
"""

from typing import Any
from urllib.parse import quote

import httpx
import structlog

from storefront.infrastructure.config import settings

logger = structlog.get_logger()

AIRTABLE_API_URL = "https://api.airtable.com/v0"


class AirtableError(Exception):
    """Error from an Airtable API call."""

    def __init__(
        self, table: str, message: str, status_code: int | None = None
    ) -> None:
        self.table = table
        self.message = message
        self.status_code = status_code
        super().__init__(f"[{table}] {message}")


class AirtableClient:
    """HTTP client for one Airtable base.

    Provides record create, lookup and update with error handling and
    response normalization.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_id: str | None = None,
        timeout: float | None = None,
        base_url: str = AIRTABLE_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Airtable client.

        Args:
            api_key: Personal access token (defaults to settings).
            base_id: Airtable base id (defaults to settings).
            timeout: Request timeout in seconds.
            base_url: API root.
            transport: Optional transport override (used by tests).
        """
        self.api_key = api_key if api_key is not None else settings.airtable_api_key
        self.base_id = base_id if base_id is not None else settings.airtable_base_id
        self.timeout = timeout if timeout is not None else settings.airtable_timeout
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.base_id)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/{self.base_id}",
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        table: str,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        if not self.is_configured:
            raise AirtableError(table, "Airtable is not configured")

        try:
            client = await self._get_client()
            response = await client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            raise AirtableError(table, f"Connection error: {e}") from e

        if response.status_code >= 400:
            raise AirtableError(
                table,
                f"{method} failed: {response.text}",
                response.status_code,
            )
        return response.json()

    async def create_record(self, table: str, fields: dict[str, Any]) -> str:
        """Create a record.

        Args:
            table: Table name.
            fields: Field values keyed by Airtable field name.

        Returns:
            Airtable record id.

        Raises:
            AirtableError: On API error.
        """
        data = await self._request(
            table,
            "POST",
            f"/{quote(table)}",
            json={"fields": fields, "typecast": True},
        )
        record_id = data.get("id")
        if not record_id:
            raise AirtableError(table, "Create response carried no record id")
        logger.debug("Airtable record created", table=table, record_id=record_id)
        return record_id

    async def find_record(self, table: str, formula: str) -> dict[str, Any] | None:
        """Find the first record matching a formula.

        Args:
            table: Table name.
            formula: Airtable filterByFormula expression.

        Returns:
            The record (``id`` and ``fields``) or None.
        """
        data = await self._request(
            table,
            "GET",
            f"/{quote(table)}",
            params={"filterByFormula": formula, "maxRecords": 1},
        )
        records = data.get("records") or []
        return records[0] if records else None

    async def list_records(self, table: str, formula: str) -> list[dict[str, Any]]:
        """All records matching a formula, following pagination offsets."""
        records: list[dict[str, Any]] = []
        params: dict[str, Any] = {"filterByFormula": formula}
        while True:
            data = await self._request(table, "GET", f"/{quote(table)}", params=params)
            records.extend(data.get("records") or [])
            offset = data.get("offset")
            if not offset:
                return records
            params = {"filterByFormula": formula, "offset": offset}

    async def update_record(
        self, table: str, record_id: str, fields: dict[str, Any]
    ) -> None:
        """Patch fields of an existing record."""
        await self._request(
            table,
            "PATCH",
            f"/{quote(table)}/{record_id}",
            json={"fields": fields, "typecast": True},
        )


def field_equals(field: str, value: str) -> str:
    """Build a filterByFormula expression matching one field value."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'{{{field}}}="{escaped}"'


# Global client instance
_airtable_client: AirtableClient | None = None


def get_airtable_client() -> AirtableClient:
    """Get the Airtable client singleton.

    Returns:
        AirtableClient instance.
    """
    global _airtable_client
    if _airtable_client is None:
        _airtable_client = AirtableClient()
    return _airtable_client


async def close_airtable_client() -> None:
    """Close the singleton client if it was created."""
    global _airtable_client
    if _airtable_client is not None:
        await _airtable_client.close()
        _airtable_client = None
