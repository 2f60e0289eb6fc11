"""Order notifications: local listeners, webhook, realtime push."""
