"""Temporal grouping of customer photos into physical items.

Customers usually send several photos of one item in a burst, then come
back hours or days later with another item. Photos separated by more than
``gap`` from the previous photo start a new group.

Usage:
    groups = group_images(messages, gap=timedelta(hours=2))
    recent = group_images_before(messages, anchor=order.created_at,
                                 lookback=timedelta(days=7),
                                 gap=timedelta(hours=2))
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from quotedesk_core.providers.base import ConversationMessage, ensure_utc


DEFAULT_GAP = timedelta(minutes=120)
DEFAULT_LOOKBACK = timedelta(days=7)


@dataclass(frozen=True)
class ImageGroup:
    """Time-contiguous burst of image messages, oldest first."""

    messages: tuple[ConversationMessage, ...]

    @property
    def first_at(self) -> datetime:
        return self.messages[0].sent_at

    @property
    def last_at(self) -> datetime:
        return self.messages[-1].sent_at

    @property
    def message_ids(self) -> tuple[str, ...]:
        return tuple(m.id for m in self.messages)

    @property
    def media_urls(self) -> tuple[str, ...]:
        return tuple(m.media_url for m in self.messages if m.media_url)

    def __len__(self) -> int:
        return len(self.messages)


def _sort_key(message: ConversationMessage) -> tuple[datetime, str]:
    return (ensure_utc(message.sent_at), message.id)


def group_images(
    messages: Iterable[ConversationMessage],
    gap: timedelta = DEFAULT_GAP,
) -> list[ImageGroup]:
    """Partition image messages into groups separated by more than ``gap``.

    The gap is measured from the last message of the current group, so a
    slow steady stream of photos stays in one group. Equal timestamps always
    share a group.

    Args:
        messages: Image messages in any order.
        gap: Largest silence allowed inside a group.

    Returns:
        Groups in ascending time order; every input message appears in
        exactly one group.
    """
    ordered = sorted(messages, key=_sort_key)
    if not ordered:
        return []

    groups: list[list[ConversationMessage]] = [[ordered[0]]]
    for message in ordered[1:]:
        previous = groups[-1][-1]
        if ensure_utc(message.sent_at) - ensure_utc(previous.sent_at) > gap:
            groups.append([message])
        else:
            groups[-1].append(message)

    return [ImageGroup(messages=tuple(group)) for group in groups]


def images_before(
    messages: Iterable[ConversationMessage],
    anchor: datetime,
    lookback: timedelta = DEFAULT_LOOKBACK,
) -> list[ConversationMessage]:
    """Customer images with a media URL sent in ``[anchor - lookback, anchor)``."""
    anchor = ensure_utc(anchor)
    window_start = anchor - lookback
    return [
        m
        for m in messages
        if m.is_customer_image
        and m.media_url
        and window_start <= ensure_utc(m.sent_at) < anchor
    ]


def group_images_before(
    messages: Iterable[ConversationMessage],
    anchor: datetime,
    lookback: timedelta = DEFAULT_LOOKBACK,
    gap: timedelta = DEFAULT_GAP,
) -> list[ImageGroup]:
    """Group the customer images sent in the lookback window before ``anchor``."""
    return group_images(images_before(messages, anchor, lookback), gap=gap)


def customer_images_since(
    messages: Iterable[ConversationMessage],
    since: datetime,
) -> list[ConversationMessage]:
    """Customer images with a media URL sent at or after ``since``."""
    since = ensure_utc(since)
    return [
        m
        for m in messages
        if m.is_customer_image and m.media_url and ensure_utc(m.sent_at) >= since
    ]


__all__ = [
    "DEFAULT_GAP",
    "DEFAULT_LOOKBACK",
    "ImageGroup",
    "customer_images_since",
    "group_images",
    "group_images_before",
    "images_before",
]
