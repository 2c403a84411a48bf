"""
Work App REST records API client.

Resolves an address to a building record and an issue ID to a work order,
then builds the Work App page URLs for them. Authentication uses the
client-id / client-secret / system-id headers from configuration.
"""

from __future__ import annotations

import re
from typing import Any

import httpx

from tabharvest.errors import InvalidInput, RecordsApiError
from tabharvest.utils.api_retry import RequestRetryPolicy, RetriesExhausted, send_with_retry
from tabharvest.utils.config import RecordsApiConfig, WorkAppConfig, get_settings
from tabharvest.utils.logging import get_logger

logger = get_logger(__name__)

_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")


def parse_issue_id(issue_id: str) -> int:
    """Leading integer of an issue ID ("1042", " 1042 ").

    Raises:
        InvalidInput: No leading integer.
    """
    match = _LEADING_INT_RE.match(issue_id or "")
    if not match:
        raise InvalidInput(f"Invalid Issue ID format: {issue_id}", param_name="issue_id")
    return int(match.group(1))


class RecordsClient:
    """Async client for the records API."""

    def __init__(
        self,
        config: RecordsApiConfig | None = None,
        work_app: WorkAppConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self._config = config or settings.records_api
        self._work_app = work_app or settings.work_app
        self._transport = transport
        self._session: httpx.AsyncClient | None = None
        self._policy = RequestRetryPolicy(max_retries=self._config.max_retries)

    @property
    def default_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "x-propertyware-client-id": self._config.client_id,
            "x-propertyware-client-secret": self._config.client_secret,
            "x-propertyware-system-id": self._config.system_id,
        }

    async def _get_session(self) -> httpx.AsyncClient:
        """Get HTTP session (lazy initialization)."""
        if self._session is None:
            self._session = httpx.AsyncClient(
                base_url=self._config.base_url.rstrip("/"),
                timeout=self._config.timeout,
                headers=self.default_headers,
                transport=self._transport,
            )
        return self._session

    async def close(self) -> None:
        """Close the session."""
        if self._session is not None:
            await self._session.aclose()
            self._session = None
            logger.debug("Records API client closed")

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        if not self._config.client_id or not self._config.client_secret:
            raise RecordsApiError(
                "Records API credentials are not configured "
                "(records_api.client_id / records_api.client_secret)"
            )

        session = await self._get_session()

        async def _send() -> httpx.Response:
            return await session.get(path, params=params)

        try:
            response = await send_with_retry(_send, policy=self._policy, operation=f"GET {path}")
            return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise RecordsApiError(
                f"Records API request failed: {status} {e.response.reason_phrase}",
                status=status,
            ) from e
        except RetriesExhausted as e:
            raise RecordsApiError(f"Records API request failed: {e}", status=e.status) from e
        except (httpx.HTTPError, ValueError) as e:
            raise RecordsApiError(f"Records API request failed: {e}") from e

    @staticmethod
    def _record_id(record: Any, kind: str) -> int:
        """Integer "id" of an API record.

        Raises:
            RecordsApiError: The record is not an object or its id is not an integer.
        """
        value = record.get("id") if isinstance(record, dict) else None
        if isinstance(value, bool) or value is None:
            raise RecordsApiError(f"Unexpected {kind} record: missing id")
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise RecordsApiError(f"Unexpected {kind} record: id {value!r}") from e

    async def get_building_id(self, address: str) -> int | None:
        """ID of the first building matching the address, or None."""
        buildings = await self._get_json("/buildings", {"address": address})
        if not isinstance(buildings, list):
            raise RecordsApiError("Unexpected buildings response shape")

        logger.info("Buildings lookup", address=address, count=len(buildings))
        if not buildings:
            return None
        return self._record_id(buildings[0], "building")

    async def get_work_orders(self, building_id: int) -> list[dict[str, Any]]:
        """Newest work orders of a building (up to work_order_limit)."""
        work_orders = await self._get_json(
            "/workorders",
            {
                "buildingID": str(building_id),
                "orderby": "createddate desc",
                "limit": str(self._config.work_order_limit),
            },
        )
        if not isinstance(work_orders, list):
            raise RecordsApiError("Unexpected work orders response shape")
        logger.info("Work orders lookup", building_id=building_id, count=len(work_orders))
        return work_orders

    async def resolve_building_id(self, address: str, fallback_address: str | None = None) -> int:
        """Building ID for address, trying fallback_address when nothing matches.

        Raises:
            RecordsApiError: Neither address matches a building.
        """
        building_id = await self.get_building_id(address)
        if building_id is None and fallback_address and fallback_address != address:
            logger.info("No building for address, trying fallback", address=address)
            building_id = await self.get_building_id(fallback_address)
        if building_id is None:
            raise RecordsApiError(f"Could not find building for address: {address}")
        return building_id

    async def find_work_order_url(
        self,
        address: str,
        issue_id: str,
        *,
        fallback_address: str | None = None,
    ) -> str | None:
        """Work App URL of the work order whose number equals the issue ID.

        Returns:
            The URL, or None when the building has no such work order.

        Raises:
            InvalidInput: The issue ID is not a number.
            RecordsApiError: The building lookup or the API call failed.
        """
        number = parse_issue_id(issue_id)
        building_id = await self.resolve_building_id(address, fallback_address)

        for work_order in await self.get_work_orders(building_id):
            if isinstance(work_order, dict) and work_order.get("number") == number:
                url = self.work_order_url(self._record_id(work_order, "work order"))
                logger.info("Work order found", number=number, url=url)
                return url

        logger.warning("No work order with issue number", number=number, building_id=building_id)
        return None

    def unit_detail_url(self, building_id: int) -> str:
        return f"{self._work_app.base_url}{self._work_app.unit_detail_path}?entityID={building_id}"

    def work_order_url(self, work_order_id: int) -> str:
        return f"{self._work_app.base_url}{self._work_app.work_order_path}?entityID={work_order_id}"
