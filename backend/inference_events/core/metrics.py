# inference_events/core/metrics.py

import logging

from prometheus_client import Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

# Outbox Metrics
OUTBOX_EVENTS_APPENDED = Counter(
    "inference_outbox_events_appended_total",
    "Total number of outbox events appended by business transactions",
    ["event_type"]
)

OUTBOX_PUBLISH_RESULTS = Counter(
    "inference_outbox_publish_results_total",
    "Outcome of outbox publish attempts",
    ["topic", "status"]  # status: sent, failed
)

OUTBOX_BATCH_SIZE = Histogram(
    "inference_outbox_claimed_batch_size",
    "Number of outbox events claimed per publisher tick",
    buckets=(0, 1, 5, 10, 20, 50, 100, 200)
)

OUTBOX_TICK_DURATION = Histogram(
    "inference_outbox_tick_duration_seconds",
    "Duration of an outbox publisher tick in seconds"
)

OUTBOX_TICKS_SKIPPED = Counter(
    "inference_outbox_ticks_skipped_total",
    "Publisher ticks skipped because the previous tick was still running"
)

OUTBOX_TICK_ERRORS = Counter(
    "inference_outbox_tick_errors_total",
    "Publisher ticks rolled back because of an unexpected error"
)

# Kafka Metrics
KAFKA_MESSAGES = Counter(
    "inference_kafka_messages_total",
    "Total number of Kafka messages",
    ["operation", "topic"]  # operation: produce, consume
)

KAFKA_ERRORS = Counter(
    "inference_kafka_errors_total",
    "Total number of Kafka errors",
    ["operation", "topic"]  # operation: produce, consume, commit
)

# Consumer Metrics
CONSUMER_EVENTS = Counter(
    "inference_consumer_events_total",
    "Outcome of consumed events",
    ["outcome"]  # processed, failed, duplicate, duplicate_failed, poison, poison_unkeyed
)

CONSUMER_PROCESSING_DURATION = Histogram(
    "inference_consumer_processing_duration_seconds",
    "Time spent handling one consumed message, dedup write included"
)


def start_metrics_server(port: int = 8001):
    """
    Start a metrics server for Prometheus.
    """
    try:
        start_http_server(port)
        logger.info(f"Started metrics server on port {port}")
    except Exception as e:
        logger.error(f"Failed to start metrics server: {e}")
