"""TempMail: disposable mailboxes with real-time push delivery.

Inbound SMTP mail for a live mailbox is parsed and pushed straight to the one
WebSocket client subscribed to it. Nothing is stored.
"""

__version__ = "0.1.0"
