"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter, Gauge

# Invoice metrics
invoices_created_total = Counter(
    "invoices_created_total",
    "Total number of invoices created",
    labelnames=["status", "currency"],
)

invoices_voided_total = Counter(
    "invoices_voided_total",
    "Total number of invoices voided",
)

invoice_documents_total = Counter(
    "invoice_documents_total",
    "Invoice PDF generation attempts",
    labelnames=["outcome"],  # stored, failed
)

# Payment metrics
payments_reconciled_total = Counter(
    "payments_reconciled_total",
    "Payment state changes applied by reconciliation",
    labelnames=["event_type", "status"],
)

checkout_sessions_total = Counter(
    "checkout_sessions_total",
    "Checkout sessions requested for invoices",
    labelnames=["outcome"],  # created, failed
)

refunds_total = Counter(
    "refunds_total",
    "Refunds requested through the API",
    labelnames=["outcome"],
)

# Webhook metrics
webhook_events_total = Counter(
    "webhook_events_total",
    "Inbound provider webhook events",
    labelnames=["event_type", "outcome"],  # outcome: applied, unmatched, ignored, failed
)

# Recurring billing metrics
recurring_invoices_generated_total = Counter(
    "recurring_invoices_generated_total",
    "Invoices materialized from recurring schedules",
)

recurring_sweep_errors_total = Counter(
    "recurring_sweep_errors_total",
    "Recurring schedules that failed during a sweep",
)

recurring_schedules_due_gauge = Gauge(
    "recurring_schedules_due",
    "Due schedules found by the most recent sweep",
)

# Notification metrics
notifications_sent_total = Counter(
    "notifications_sent_total",
    "Outbound email notifications",
    labelnames=["kind", "outcome"],  # outcome: sent, skipped, failed
)
