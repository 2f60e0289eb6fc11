"""Storefront order pipeline — checkout, notifications, webhooks, receipts."""
