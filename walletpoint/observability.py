from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from pythonjsonlogger import jsonlogger
import logging
from flask import Response

# Basic metrics
HTTP_REQUESTS = Counter('http_requests_total', 'HTTP requests', ['method', 'endpoint', 'status'])
HTTP_LATENCY = Histogram('http_request_duration_seconds', 'HTTP request latency', ['endpoint'])

# Marketplace metrics
PURCHASES = Counter('marketplace_purchases_total', 'Completed purchases and cart checkouts', ['source'])
CHECKOUT_FAILURES = Counter('marketplace_checkout_failures_total', 'Rejected or failed checkouts', ['reason'])
POINTS_SPENT = Counter('marketplace_points_spent_total', 'Wallet points debited by the marketplace')
AUDIT_FAILURES = Counter('audit_write_failures_total', 'Audit records that could not be written')


def configure_logging(level=logging.INFO):
    """Send JSON log lines to stderr. ``level`` may be a name such as "DEBUG"."""
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
        if not isinstance(level, int):
            level = logging.INFO
    handler = logging.StreamHandler()
    formatter = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s')
    handler.setFormatter(formatter)
    root = logging.getLogger()
    # Avoid adding duplicate handlers
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        root.addHandler(handler)
    root.setLevel(level)


def metrics_endpoint():
    """Return a Flask Response with current Prometheus metrics."""
    data = generate_latest()
    return Response(data, mimetype=CONTENT_TYPE_LATEST)
