"""Zoko WhatsApp CRM adapter.

Implements the ConversationSource interface over Zoko's REST API, mapping
Zoko customers and messages to normalized DTOs.

Endpoints:
    GET /customer?channel=whatsapp&page=N          -> customers page
    GET /customer/{id}/messages?channel=whatsapp   -> message list

Usage:
    adapter = ZokoAdapter(api_key="...")

    page = await adapter.list_conversations_page(1)
    messages = await adapter.get_messages(page.conversations[0].id)
"""

import logging
from typing import Any, Optional

import httpx

from quotedesk_core.infrastructure.retry import (
    BackoffStrategy,
    RetryableStatus,
    raise_for_retryable_status,
    retry_async,
)
from quotedesk_core.providers.base import (
    ConversationMessage,
    ConversationPage,
    ConversationRecord,
    ConversationSource,
    MessageDirection,
    MessageType,
    ProviderNotConfigured,
    UpstreamFailure,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "https://chat.zoko.io/v2"
CHANNEL = "whatsapp"

_DIRECTIONS = {
    "FROM_CUSTOMER": MessageDirection.FROM_CUSTOMER,
    "FROM_STORE": MessageDirection.FROM_STORE,
}


class ZokoAdapter(ConversationSource):
    """Zoko conversation source.

    A shared ``httpx.AsyncClient`` may be injected; otherwise each call
    opens a short-lived client.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        backoff: Optional[BackoffStrategy] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the Zoko adapter.

        Args:
            api_key: Zoko API key (sent as the ``apikey`` header).
            base_url: API base URL.
            timeout: Per-request timeout in seconds.
            backoff: Retry policy for transient failures.
            client: Optional shared HTTP client.
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.backoff = backoff or BackoffStrategy()
        self._client = client

    @property
    def provider_id(self) -> str:
        """Return the provider identifier."""
        return "zoko"

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_headers(self) -> dict[str, str]:
        return {"apikey": self.api_key or "", "Content-Type": "application/json"}

    async def _get_json(self, endpoint: str, params: Optional[dict] = None) -> Any:
        """GET ``endpoint`` with retries and return the decoded JSON body."""
        if not self.api_key:
            raise ProviderNotConfigured("ZOKO_API_KEY is not configured", self.provider_id)

        url = f"{self.base_url}{endpoint}"

        async def attempt() -> httpx.Response:
            if self._client is not None:
                response = await self._client.get(
                    url, headers=self._get_headers(), params=params, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(
                        url, headers=self._get_headers(), params=params
                    )
            raise_for_retryable_status(response)
            return response

        try:
            response = await retry_async(
                attempt, self.backoff, description=f"Zoko GET {endpoint}"
            )
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Zoko request failed: {e}", self.provider_id) from e
        except RetryableStatus as e:
            raise UpstreamFailure(
                f"Zoko API error: {e.status_code}", self.provider_id, e.status_code
            ) from e

        if response.status_code != 200:
            raise UpstreamFailure(
                f"Zoko API error: {response.status_code}",
                self.provider_id,
                response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFailure(f"Zoko returned invalid JSON: {e}", self.provider_id) from e

    # =========================================================================
    # CONVERSATIONS
    # =========================================================================

    async def list_conversations_page(self, page: int) -> ConversationPage:
        """List one page of WhatsApp customers."""
        data = await self._get_json("/customer", {"channel": CHANNEL, "page": page})
        if not isinstance(data, dict):
            raise UpstreamFailure("Unexpected customer listing payload", self.provider_id)

        conversations = []
        for raw in data.get("customers") or []:
            conversation = self._map_customer(raw)
            if conversation is not None:
                conversations.append(conversation)

        total_pages = data.get("totalPages")
        try:
            total_pages = int(total_pages)
        except (TypeError, ValueError):
            total_pages = page

        return ConversationPage(
            conversations=conversations,
            page=page,
            total_pages=total_pages,
            total=data.get("totalCustomers"),
            raw_meta={k: v for k, v in data.items() if k != "customers"},
        )

    def _map_customer(self, raw: dict[str, Any]) -> Optional[ConversationRecord]:
        customer_id = raw.get("id")
        if not customer_id:
            return None
        return ConversationRecord(
            id=str(customer_id),
            display_name=raw.get("name") or "",
            phone=raw.get("channelId") or "",
            last_incoming_message_at=parse_timestamp(raw.get("lastIncomingMessageAt")),
        )

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def get_messages(self, conversation_id: str) -> list[ConversationMessage]:
        """Fetch all WhatsApp messages of a customer, oldest first."""
        data = await self._get_json(
            f"/customer/{conversation_id}/messages", {"channel": CHANNEL}
        )
        if isinstance(data, dict):
            data = data.get("messages") or []
        if not isinstance(data, list):
            raise UpstreamFailure("Unexpected message listing payload", self.provider_id)

        messages: list[ConversationMessage] = []
        for raw in data:
            if isinstance(raw, dict):
                messages.extend(self._map_message(raw))

        messages.sort(key=lambda m: (m.sent_at, m.id))
        return messages

    def _map_message(self, raw: dict[str, Any]) -> list[ConversationMessage]:
        """Map one raw message; multi-attachment messages yield one per attachment."""
        key = raw.get("key") or {}
        message_id = key.get("msgId") or raw.get("id")
        sent_at = parse_timestamp(raw.get("createdAt")) or parse_timestamp(
            key.get("platformTimestamp")
        )
        if not message_id or sent_at is None:
            logger.debug("Skipping Zoko message without id or timestamp")
            return []

        direction = _DIRECTIONS.get(
            str(raw.get("direction") or "").upper(), MessageDirection.FROM_STORE
        )
        message_type = MessageType.parse(raw.get("type"))
        text = raw.get("text") or None
        caption = raw.get("fileCaption") or None

        media = raw.get("media")
        if isinstance(media, list) and media:
            result = []
            for i, item in enumerate(media):
                if not isinstance(item, dict):
                    continue
                result.append(
                    ConversationMessage(
                        id=f"{message_id}:{i}",
                        direction=direction,
                        type=message_type,
                        sent_at=sent_at,
                        media_url=item.get("url") or item.get("mediaUrl") or None,
                        text=text,
                        caption=item.get("caption") or caption,
                    )
                )
            return result

        return [
            ConversationMessage(
                id=str(message_id),
                direction=direction,
                type=message_type,
                sent_at=sent_at,
                media_url=raw.get("mediaUrl") or raw.get("fileUrl") or None,
                text=text,
                caption=caption,
            )
        ]
