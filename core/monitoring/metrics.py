"""
Prometheus metrics for signal processing and order fan-out
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram


class RelayMetricsCollector:
    """Signal, order and notification metrics on one registry"""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        # Throughput
        self.signals_processed = Counter(
            'relay_signals_processed_total',
            'Signals processed to completion',
            ['kind'],
            registry=self.registry
        )
        self.signals_rejected = Counter(
            'relay_signals_rejected_total',
            'Signals rejected before a trade was opened',
            ['reason'],
            registry=self.registry
        )

        # Latency
        self.processing_latency = Histogram(
            'relay_signal_processing_seconds',
            'End-to-end signal processing latency',
            ['kind'],
            buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
            registry=self.registry
        )

        # Broker outcomes
        self.order_attempts = Counter(
            'relay_order_attempts_total',
            'Leg placement attempts by broker and outcome',
            ['broker', 'outcome'],
            registry=self.registry
        )
        self.square_offs = Counter(
            'relay_square_offs_total',
            'Square-off protocol executions',
            ['trigger'],
            registry=self.registry
        )

        # Persistence and notifications
        self.non_durable_writes = Counter(
            'relay_ledger_non_durable_total',
            'Trades returned without being stored in any ledger store',
            registry=self.registry
        )
        self.notifications = Counter(
            'relay_notifications_total',
            'Notification attempts by outcome',
            ['outcome'],
            registry=self.registry
        )

    def record_order_attempts(self, broker_by_account: dict, results) -> None:
        for result in results:
            broker = broker_by_account.get(result.account_id, "unknown")
            self.order_attempts.labels(broker=broker,
                                       outcome="success" if result.success else "failure").inc()
