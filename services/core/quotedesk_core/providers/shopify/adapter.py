"""Shopify Admin API adapter.

Implements the OrderSource interface over the Admin GraphQL API, mapping
orders to normalized DTOs.

Usage:
    adapter = ShopifyAdapter(store_domain="shop.myshopify.com", access_token="...")
    orders = await adapter.list_recent_orders(days_back=7, limit=500)
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

import httpx

from quotedesk_core.infrastructure.retry import (
    BackoffStrategy,
    RetryableStatus,
    raise_for_retryable_status,
    retry_async,
)
from quotedesk_core.providers.base import (
    OrderLineItem,
    OrderRecord,
    OrderSource,
    ProviderNotConfigured,
    UpstreamFailure,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


DEFAULT_API_VERSION = "2024-10"

# Shopify caps connection page size at 250
MAX_PAGE_SIZE = 250

RECENT_ORDERS_QUERY = """
query RecentOrders($query: String!, $first: Int!, $after: String) {
  orders(first: $first, after: $after, query: $query, sortKey: CREATED_AT, reverse: true) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
        name
        createdAt
        totalPriceSet {
          shopMoney {
            amount
            currencyCode
          }
        }
        customer {
          id
          firstName
          lastName
          phone
        }
        lineItems(first: 20) {
          edges {
            node {
              title
              quantity
              sku
              variant {
                id
                title
                price
              }
            }
          }
        }
      }
    }
  }
}
"""


def clean_store_domain(domain: Optional[str]) -> str:
    """Strip scheme and trailing slashes from a store domain."""
    domain = re.sub(r"^https?://", "", (domain or "").strip())
    return domain.rstrip("/")


def _decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


class ShopifyAdapter(OrderSource):
    """Shopify order source."""

    def __init__(
        self,
        store_domain: Optional[str],
        access_token: Optional[str],
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 30.0,
        backoff: Optional[BackoffStrategy] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """Initialize the Shopify adapter.

        Args:
            store_domain: Store domain, e.g. "shop.myshopify.com".
            access_token: Admin API access token.
            api_version: Admin API version.
            timeout: Per-request timeout in seconds.
            backoff: Retry policy for transient failures.
            client: Optional shared HTTP client.
            clock: Returns the current time (used for the date filter).
        """
        self.store_domain = clean_store_domain(store_domain)
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self.backoff = backoff or BackoffStrategy()
        self._client = client
        self._clock = clock

    @property
    def provider_id(self) -> str:
        """Return the provider identifier."""
        return "shopify"

    @property
    def is_configured(self) -> bool:
        return bool(self.store_domain and self.access_token)

    @property
    def graphql_url(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}/graphql.json"

    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """POST a GraphQL query with retries and return its ``data``."""
        if not self.store_domain:
            raise ProviderNotConfigured("SHOPIFY_STORE_DOMAIN is not configured", self.provider_id)
        if not self.access_token:
            raise ProviderNotConfigured(
                "SHOPIFY_ACCESS_TOKEN is not configured", self.provider_id
            )

        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self.access_token,
        }
        body = {"query": query, "variables": variables}

        async def attempt() -> httpx.Response:
            if self._client is not None:
                response = await self._client.post(
                    self.graphql_url, headers=headers, json=body, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.graphql_url, headers=headers, json=body)
            raise_for_retryable_status(response)
            return response

        try:
            response = await retry_async(attempt, self.backoff, description="Shopify GraphQL")
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Shopify request failed: {e}", self.provider_id) from e
        except RetryableStatus as e:
            raise UpstreamFailure(
                f"Shopify API error: {e.status_code}", self.provider_id, e.status_code
            ) from e

        if response.status_code != 200:
            raise UpstreamFailure(
                f"Shopify API error: {response.status_code} - {response.text[:200]}",
                self.provider_id,
                response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamFailure(f"Shopify returned invalid JSON: {e}", self.provider_id) from e

        if payload.get("errors"):
            messages = ", ".join(
                str(err.get("message", err)) if isinstance(err, dict) else str(err)
                for err in payload["errors"]
            )
            raise UpstreamFailure(f"Shopify GraphQL error: {messages}", self.provider_id)

        return payload.get("data") or {}

    async def list_recent_orders(self, days_back: int, limit: int) -> list[OrderRecord]:
        """List recent orders with a customer phone, newest first."""
        since = (self._clock() - timedelta(days=days_back)).date().isoformat()
        search = f"created_at:>={since}"

        orders: list[OrderRecord] = []
        cursor: Optional[str] = None
        fetched = 0

        while fetched < limit:
            page_size = min(MAX_PAGE_SIZE, limit - fetched)
            data = await self._graphql(
                RECENT_ORDERS_QUERY,
                {"query": search, "first": page_size, "after": cursor},
            )
            connection = data.get("orders") or {}
            edges = connection.get("edges") or []
            fetched += len(edges)

            for edge in edges:
                order = self._map_order(edge.get("node") or {})
                if order is not None:
                    orders.append(order)

            page_info = connection.get("pageInfo") or {}
            cursor = page_info.get("endCursor")
            if not edges or not page_info.get("hasNextPage") or not cursor:
                break

        logger.info(
            "Fetched %d Shopify orders since %s (%d with phone)", fetched, since, len(orders)
        )
        return orders

    def _map_order(self, node: dict[str, Any]) -> Optional[OrderRecord]:
        customer = node.get("customer") or {}
        phone = customer.get("phone")
        created_at = parse_timestamp(node.get("createdAt"))
        if not phone or not node.get("id") or created_at is None:
            return None

        money = (node.get("totalPriceSet") or {}).get("shopMoney") or {}
        line_items = []
        for edge in (node.get("lineItems") or {}).get("edges") or []:
            item = edge.get("node") or {}
            variant = item.get("variant") or {}
            line_items.append(
                OrderLineItem(
                    title=item.get("title") or "",
                    quantity=int(item.get("quantity") or 0),
                    price=_decimal(variant.get("price") or 0),
                )
            )

        return OrderRecord(
            id=str(node["id"]),
            name=node.get("name") or "",
            created_at=created_at,
            total_amount=_decimal(money.get("amount") or 0),
            currency=money.get("currencyCode") or "",
            customer_phone=phone,
            customer_first_name=customer.get("firstName"),
            customer_last_name=customer.get("lastName"),
            line_items=tuple(line_items),
        )
