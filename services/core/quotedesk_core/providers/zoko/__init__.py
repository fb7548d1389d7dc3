"""Zoko WhatsApp CRM integration."""

from quotedesk_core.providers.zoko.adapter import ZokoAdapter

__all__ = ["ZokoAdapter"]
