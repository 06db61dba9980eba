"""
Prometheus metrics for the POS engine.

Request instrumentation is attached to the app by
``setup_metrics_instrumentation``; sale counters are incremented by the
sale service after each committed unit of work. ``/metrics`` is not
authenticated and must only be reachable from the monitoring network.
"""
import os
import time

from flask import Blueprint, Response, request, g
from prometheus_client import (
    Counter, Histogram, Gauge, CollectorRegistry, REGISTRY, CONTENT_TYPE_LATEST, generate_latest, multiprocess
)

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share samples through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    _metric_registry = None
else:
    registry = REGISTRY
    _metric_registry = REGISTRY

# Checkout requests are short; anything past a second is worth seeing
REQUEST_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)

http_requests_total = Counter(
    'http_requests_total',
    'HTTP requests by endpoint and status',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    buckets=REQUEST_BUCKETS,
    registry=_metric_registry
)

http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'HTTP requests being served',
    registry=_metric_registry
)

# Sale lifecycle
sales_completed_total = Counter(
    'pos_sales_completed_total',
    'Sales completed, by fulfilment (counter or delivery)',
    ['fulfilment'],
    registry=_metric_registry
)

sales_voided_total = Counter(
    'pos_sales_voided_total',
    'Completed sales voided',
    registry=_metric_registry
)

payments_recorded_total = Counter(
    'pos_payments_recorded_total',
    'Payments appended to sales, by method',
    ['method'],
    registry=_metric_registry
)

stock_rejections_total = Counter(
    'pos_stock_rejections_total',
    'Sale completions rejected for insufficient stock',
    registry=_metric_registry
)

sale_conflicts_total = Counter(
    'pos_sale_conflicts_total',
    'Sale operations rejected by the optimistic version check',
    registry=_metric_registry
)


def setup_metrics_instrumentation(app):
    """Time every request and count it by endpoint and status code."""

    @app.before_request
    def _start_timer():
        g._metrics_started = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def _record_request(response):
        started = g.pop('_metrics_started', None)
        if started is None:
            return response
        try:
            endpoint = request.endpoint or 'unknown'  # e.g. 'pos.complete_sale'
            http_request_duration_seconds.labels(request.method, endpoint).observe(time.perf_counter() - started)
            http_requests_total.labels(request.method, endpoint, response.status_code).inc()
            http_requests_in_flight.dec()
        except Exception as e:
            app.logger.warning(f"Failed to record metrics: {e}")
        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus text exposition of the active registry."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
