"""Base provider interfaces and DTOs.

This module defines the narrow contracts the reconciliation core consumes
from its external collaborators, along with the normalized, immutable
records they return:

- ConversationMessage: one message of a messaging-CRM conversation
- ConversationRecord: a messaging-CRM customer conversation
- OrderRecord / OrderLineItem: a commerce order snapshot
- ConversationPage: one page of the conversation listing

Adapters convert raw API payloads into these records exactly once, at the
boundary. Nothing past this module sees untyped JSON.

Usage:
    class ZokoAdapter(ConversationSource):
        @property
        def provider_id(self) -> str:
            return "zoko"

        async def list_conversations_page(self, page: int) -> ConversationPage:
            ...
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


# =============================================================================
# EXCEPTIONS
# =============================================================================


class ProviderError(Exception):
    """Base exception for collaborator failures."""

    def __init__(self, message: str, provider_id: str = ""):
        super().__init__(message)
        self.provider_id = provider_id


class ProviderNotConfigured(ProviderError):
    """Raised when a required collaborator has no credentials configured.

    Operations that need the collaborator fail fast instead of degrading.
    """


class UpstreamFailure(ProviderError):
    """Raised when a collaborator call fails (transport error, bad status, bad payload)."""

    def __init__(
        self,
        message: str,
        provider_id: str = "",
        status_code: Optional[int] = None,
    ):
        super().__init__(message, provider_id=provider_id)
        self.status_code = status_code


# =============================================================================
# ENUMS
# =============================================================================


class MessageDirection(str, Enum):
    """Direction of a conversation message."""

    FROM_CUSTOMER = "from_customer"
    FROM_STORE = "from_store"


class MessageType(str, Enum):
    """Type of a conversation message."""

    IMAGE = "image"
    TEXT = "text"
    TEMPLATE = "template"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "MessageType":
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.OTHER


# =============================================================================
# HELPERS
# =============================================================================


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or epoch milliseconds into an aware UTC datetime.

    Returns None for empty or unparsable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return ensure_utc(parsed)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime (naive values are assumed UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass(frozen=True)
class ConversationMessage:
    """Normalized message from the messaging CRM.

    A message carries at most one media URL. Provider payloads holding
    several attachments are split into one message per attachment by the
    adapter, so every image is addressed by its own id.
    """

    id: str
    direction: MessageDirection
    type: MessageType
    sent_at: datetime

    # Optional fields
    media_url: Optional[str] = None
    text: Optional[str] = None
    caption: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.type == MessageType.IMAGE

    @property
    def is_customer_image(self) -> bool:
        return self.is_image and self.direction == MessageDirection.FROM_CUSTOMER

    @property
    def display_text(self) -> str:
        return self.text or self.caption or ""


@dataclass(frozen=True)
class ConversationRecord:
    """Normalized customer conversation from the messaging CRM."""

    id: str
    display_name: str
    phone: str

    # Optional fields
    last_incoming_message_at: Optional[datetime] = None
    messages: tuple[ConversationMessage, ...] = ()

    @property
    def phone_key(self) -> str:
        from quotedesk_core.domain.services.phone import normalize_phone

        return normalize_phone(self.phone)


@dataclass(frozen=True)
class OrderLineItem:
    """A single line item of a commerce order."""

    title: str
    quantity: int
    price: Decimal = Decimal("0")


@dataclass(frozen=True)
class OrderRecord:
    """Normalized commerce order snapshot."""

    id: str
    name: str  # Display number like "#1001"
    created_at: datetime

    # Optional fields
    total_amount: Decimal = Decimal("0")
    currency: str = ""
    customer_phone: Optional[str] = None
    customer_first_name: Optional[str] = None
    customer_last_name: Optional[str] = None
    line_items: tuple[OrderLineItem, ...] = ()

    @property
    def customer_name(self) -> str:
        parts = [self.customer_first_name, self.customer_last_name]
        return " ".join(p.strip() for p in parts if p and p.strip())


@dataclass
class ConversationPage:
    """One page of the conversation listing (1-based pages)."""

    conversations: list[ConversationRecord]
    page: int
    total_pages: int
    total: Optional[int] = None
    raw_meta: dict = field(default_factory=dict)


# =============================================================================
# COLLABORATOR INTERFACES
# =============================================================================


class ConversationSource(ABC):
    """Messaging-CRM conversation source.

    Methods:
        list_conversations_page: One page of the customer/conversation listing
        get_messages: All messages of one conversation
    """

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Return the unique provider identifier (e.g., 'zoko')."""
        ...

    @abstractmethod
    async def list_conversations_page(self, page: int) -> ConversationPage:
        """List one page of conversations.

        Args:
            page: 1-based page number.

        Returns:
            The page, including the source's total page count.

        Raises:
            ProviderNotConfigured: If credentials are missing.
            UpstreamFailure: If the source errors.
        """
        ...

    @abstractmethod
    async def get_messages(self, conversation_id: str) -> list[ConversationMessage]:
        """Fetch all messages of a conversation.

        Raises:
            ProviderNotConfigured: If credentials are missing.
            UpstreamFailure: If the source errors.
        """
        ...


class OrderSource(ABC):
    """Commerce-platform order source."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Return the unique provider identifier (e.g., 'shopify')."""
        ...

    @abstractmethod
    async def list_recent_orders(
        self,
        days_back: int,
        limit: int,
    ) -> list[OrderRecord]:
        """List orders created within the last ``days_back`` days, newest first.

        Only orders exposing a non-empty customer phone are returned.

        Raises:
            ProviderNotConfigured: If credentials are missing.
            UpstreamFailure: If the source errors.
        """
        ...
