"""Shopify commerce integration."""

from quotedesk_core.providers.shopify.adapter import ShopifyAdapter, clean_store_domain

__all__ = ["ShopifyAdapter", "clean_store_domain"]
