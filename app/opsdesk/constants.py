"""
Central constants for the operations dashboard.
"""
from __future__ import annotations

ROLE_ADMIN = "admin"
ROLE_ASSISTANT = "assistant"

# Order fulfilment status, in lifecycle order (index == rank).
ORDER_STATUS_FLOW = ("pending", "confirmed", "in_progress", "completed")
ORDER_STATUS_CANCELLED = "cancelled"
ORDER_STATUSES = frozenset(ORDER_STATUS_FLOW) | {ORDER_STATUS_CANCELLED}
ORDER_TERMINAL_STATUSES = frozenset({"completed", ORDER_STATUS_CANCELLED})

# Payment is tracked separately from fulfilment; the two never drive each other.
PAYMENT_STATUS_FLOW = ("pending", "partial", "paid")
PAYMENT_STATUS_REFUNDED = "refunded"
PAYMENT_STATUSES = frozenset(PAYMENT_STATUS_FLOW) | {PAYMENT_STATUS_REFUNDED}

INVOICE_STATUSES = frozenset({"draft", "sent", "paid", "cancelled"})
INVOICE_CLOSED_STATUSES = frozenset({"paid", "cancelled"})
# Display-only; never stored.
INVOICE_DISPLAY_OVERDUE = "overdue"

CUSTOMER_STATUSES = frozenset({"active", "inactive"})

DEFAULT_PAYMENT_TERMS = "Net {days} days"
