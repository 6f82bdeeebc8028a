from prometheus_client import Counter, Histogram
# Prometheus metrics definitions

# Total number of skin detection requests that passed input validation
detect_requests_total = Counter(
    "detect_requests_total", "Total skin detection requests"
)

# latency buckets cover upload + completion; model calls dominate
_detect_latency_buckets = (
    0.5,
    1.0,
    2.0,
    4.0,
    8.0,
    16.0,
    32.0,
)

# Histogram for overall detection latency, upload to database write
detect_latency_seconds = Histogram(
    "detect_latency_seconds", "Skin detection latency", buckets=_detect_latency_buckets
)

# Incremented when the call to GPT API times out
gpt_timeout_total = Counter(
    "gpt_timeout_total", "Number of GPT timeouts"
)

# Model output that could not be parsed into a JSON object
parse_failures_total = Counter(
    "parse_failures_total", "Number of model responses without structured result"
)

# Failed uploads to object storage
storage_errors_total = Counter(
    "storage_errors_total", "Number of failed image uploads"
)

__all__ = [
    "detect_requests_total",
    "detect_latency_seconds",
    "gpt_timeout_total",
    "parse_failures_total",
    "storage_errors_total",
]
