# -*- coding: utf-8 -*-
"""
Service for managing Prometheus metrics.

Provides a centralized service for creating, registering, and collecting metrics.
Also includes middleware for automatically recording HTTP request metrics and
the domain counters for webhooks, payments, gateway calls and shipping quotes.
"""

import os
import time
import uuid
from typing import Optional
from flask import Flask, request, g, current_app, has_app_context
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram
from prometheus_client.exposition import generate_latest


def init_metrics(app: Flask) -> None:
    """Initialize metrics service and endpoints."""
    service = MetricsService()
    app.extensions['metrics'] = service

    if service.enabled:
        @app.before_request
        def before_request():
            g.start_time = time.time()

        @app.after_request
        def after_request(response):
            duration = time.time() - g.get('start_time', time.time())
            service.record_http_request(
                route=request.path,
                method=request.method,
                status_code=response.status_code,
                duration_seconds=duration
            )
            return response

        @app.route("/metrics")
        def metrics():
            return generate_latest(service.registry), 200, {
                'Content-Type': 'text/plain; version=0.0.4; charset=utf-8'}


def get_metrics_service() -> Optional['MetricsService']:
    """Get the metrics service instance from the current app context."""
    if has_app_context():
        return current_app.extensions.get('metrics')
    return None


class MetricsService:
    """Service for managing Prometheus metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize the metrics service."""
        self.enabled = os.environ.get(
            "HEADSHOP_METRICS_ENABLED",
            "true").lower() == "true"
        self.registry = registry if registry is not None else REGISTRY

        if self.enabled:
            self.http_requests_total = Counter(
                "headshop_http_requests_total",
                "Total number of HTTP requests.",
                ["route", "method", "status"],
                registry=self.registry
            )
            self.http_request_duration_seconds = Histogram(
                "headshop_http_request_duration_seconds",
                "Duration of HTTP requests in seconds.",
                ["route", "method"],
                registry=self.registry
            )
            self.webhook_events_total = Counter(
                "headshop_webhook_events_total",
                "Webhook deliveries by topic and processing result.",
                ["topic", "result"],
                registry=self.registry
            )
            self.webhook_signature_total = Counter(
                "headshop_webhook_signature_total",
                "Webhook signature checks by outcome.",
                ["outcome"],
                registry=self.registry
            )
            self.webhook_unverified_total = Counter(
                "headshop_webhook_unverified_total",
                "Webhooks processed without a verified signature.",
                ["reason"],
                registry=self.registry
            )
            self.payment_transitions_total = Counter(
                "headshop_payment_transitions_total",
                "Payment status transitions applied.",
                ["from_status", "to_status"],
                registry=self.registry
            )
            self.subscription_transitions_total = Counter(
                "headshop_subscription_transitions_total",
                "Subscription status transitions applied.",
                ["from_status", "to_status", "source"],
                registry=self.registry
            )
            self.gateway_requests_total = Counter(
                "headshop_gateway_requests_total",
                "Payment gateway calls by operation and outcome.",
                ["operation", "outcome"],
                registry=self.registry
            )
            self.gateway_request_duration_seconds = Histogram(
                "headshop_gateway_request_duration_seconds",
                "Duration of payment gateway calls in seconds.",
                ["operation"],
                registry=self.registry
            )
            self.shipping_quotes_total = Counter(
                "headshop_shipping_quotes_total",
                "Shipping quotes by source.",
                ["source"],
                registry=self.registry
            )
            self.checkouts_total = Counter(
                "headshop_checkouts_total",
                "Checkout attempts by payment method and outcome.",
                ["method", "outcome"],
                registry=self.registry
            )

    def record_http_request(
            self,
            route: str,
            method: str,
            status_code: int,
            duration_seconds: float):
        """Record an HTTP request."""
        if self.enabled:
            normalized_route = self._normalize_route(route)
            self.http_requests_total.labels(
                route=normalized_route,
                method=method,
                status=status_code).inc()
            self.http_request_duration_seconds.labels(
                route=normalized_route, method=method).observe(duration_seconds)

    def record_webhook_event(self, topic: str, result: str):
        if self.enabled:
            self.webhook_events_total.labels(topic=topic or 'unknown', result=result).inc()

    def record_webhook_signature(self, outcome: str):
        if self.enabled:
            self.webhook_signature_total.labels(outcome=outcome).inc()

    def record_unverified_webhook(self, reason: str):
        """Count a webhook accepted without a verified signature."""
        if self.enabled:
            self.webhook_unverified_total.labels(reason=reason).inc()

    def record_payment_transition(self, from_status: str, to_status: str):
        if self.enabled:
            self.payment_transitions_total.labels(
                from_status=from_status, to_status=to_status).inc()

    def record_subscription_transition(self, from_status: str, to_status: str, source: str):
        if self.enabled:
            self.subscription_transitions_total.labels(
                from_status=from_status, to_status=to_status, source=source).inc()

    def record_gateway_request(self, operation: str, outcome: str, duration_seconds: float):
        if self.enabled:
            self.gateway_requests_total.labels(operation=operation, outcome=outcome).inc()
            self.gateway_request_duration_seconds.labels(operation=operation).observe(duration_seconds)

    def record_shipping_quote(self, source: str):
        if self.enabled:
            self.shipping_quotes_total.labels(source=source).inc()

    def record_checkout(self, method: str, outcome: str):
        if self.enabled:
            self.checkouts_total.labels(method=method, outcome=outcome).inc()

    def get_metrics(self) -> str:
        """Get metrics data as text."""
        if self.enabled:
            return generate_latest(self.registry).decode('utf-8')
        return ""

    def _normalize_route(self, route: str) -> str:
        parts = route.split('/')
        for i, part in enumerate(parts):
            if part.isdigit():
                parts[i] = '{id}'
            try:
                uuid.UUID(part)
                parts[i] = '{uuid}'
            except (ValueError, AttributeError):
                pass
        return '/'.join(parts)
