"""Order webhooks.

Outbound: signed order events pushed to the inventory app.
Inbound: signature-verified bank transfer notices.
"""
