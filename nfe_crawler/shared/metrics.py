"""Prometheus metrics for the extraction pipeline.

Exposes key metrics for monitoring:
- Cache hit/miss/eviction counts
- AI token usage and estimated cost
- Pipeline outcomes and durations

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram

# Cache metrics
cache_operations_total = Counter(
    "invoice_cache_operations_total",
    "Total cache operations",
    ["operation"],  # hit, miss, set, clear, evict
)

# AI provider metrics
ai_requests_total = Counter(
    "ai_requests_total",
    "Total AI provider calls",
    ["provider", "status"],  # success, overloaded, failed
)

ai_tokens_total = Counter(
    "ai_tokens_total",
    "AI tokens consumed",
    ["model", "kind"],  # input, output, cached
)

ai_estimated_cost_usd_total = Counter(
    "ai_estimated_cost_usd_total",
    "Estimated AI spend in USD",
    ["model"],
)

# Pipeline metrics
invoice_parse_requests_total = Counter(
    "invoice_parse_requests_total",
    "Total invoice parse requests",
    ["status"],  # success, cache_hit, or error code
)

invoice_parse_duration_seconds = Histogram(
    "invoice_parse_duration_seconds",
    "End-to-end invoice parse duration in seconds",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)
