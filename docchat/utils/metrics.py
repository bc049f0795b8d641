"""Prometheus metrics for ingestion, chat, and notifications."""

from prometheus_client import Counter, Gauge, Histogram

ingestion_total = Counter(
    "docchat_ingestion_total",
    "Document ingestion runs by terminal outcome",
    ["outcome"],
)

ingestion_latency_ms = Histogram(
    "docchat_ingestion_latency_ms",
    "Document ingestion latency in milliseconds",
    ["outcome"],
    buckets=[100, 500, 1000, 2000, 5000, 10000, 30000, 60000, 120000],
)

chunker_fallback_total = Counter(
    "docchat_chunker_fallback_total",
    "Document parts chunked with the sliding-window fallback",
)

chat_messages_total = Counter(
    "docchat_chat_messages_total",
    "Chat messages handled by outcome",
    ["outcome"],
)

sse_subscribers = Gauge(
    "docchat_sse_subscribers",
    "Connected document-status subscribers",
)
