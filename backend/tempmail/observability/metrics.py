"""Prometheus metrics for TempMail.

Defines operational metrics for monitoring the directory, the SMTP gateway
and the push path.
"""

from prometheus_client import Counter, Gauge

# Directory metrics
mailboxes_created_total = Counter(
    "tempmail_mailboxes_created_total",
    "Total number of mailboxes provisioned (including re-creations)",
)

messages_received_total = Counter(
    "tempmail_messages_received_total",
    "Total number of messages accepted for a live mailbox",
)

sessions_swept_total = Counter(
    "tempmail_sessions_swept_total",
    "Total number of expired sessions removed by the sweep",
)

active_mailboxes = Gauge(
    "tempmail_active_mailboxes",
    "Number of sessions currently held by the directory",
)

active_connections = Gauge(
    "tempmail_active_connections",
    "Number of bound notification channels that are open",
)

# SMTP gateway metrics
smtp_recipients_rejected_total = Counter(
    "tempmail_smtp_recipients_rejected_total",
    "RCPT TO commands rejected by the gateway",
    ["reason"],  # reason: domain|mailbox
)

smtp_transfers_total = Counter(
    "tempmail_smtp_transfers_total",
    "Completed DATA transfers by result",
    ["status"],  # status: accepted|parse_error|no_recipients|error
)

# Push metrics
deliveries_total = Counter(
    "tempmail_deliveries_total",
    "Push delivery attempts by outcome",
    ["outcome"],  # outcome: delivered|no_subscriber|send_failed
)
