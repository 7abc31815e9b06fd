"""
channels — Outbound delivery backends.

Each transport exposes:
    async send(phone, message) → None   (raises on failure)

Transports are unaware of recipients and accounting; the per-recipient loop
lives in alerts.sms_dispatcher.
"""
