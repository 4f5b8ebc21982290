from prometheus_client import Counter, Histogram
# Prometheus metrics definitions

# Background removal jobs, counted once per accepted request
job_requests_total = Counter(
    "job_requests_total", "Total background removal requests"
)

# Prediction jobs usually finish within a few seconds; the long tail is
# bounded by the poll deadline
_job_latency_buckets = (
    1.0,
    2.0,
    4.0,
    8.0,
    16.0,
    32.0,
    64.0,
)

job_latency_seconds = Histogram(
    "job_latency_seconds", "Background removal latency", buckets=_job_latency_buckets
)

# Poll round trips per job
poll_iterations = Histogram(
    "poll_iterations",
    "Prediction status polls per job",
    buckets=(1, 2, 4, 8, 16, 32, 64, 128),
)

# Quota rejects when a tier allowance is exhausted
quota_reject_total = Counter(
    "quota_reject_total", "Number of quota rejected requests"
)

# Classified failures of the external prediction service
upstream_error_total = Counter(
    "upstream_error_total", "Upstream prediction failures", ["kind"]
)

# Session lookups that failed on storage errors (treated as logged out)
session_lookup_errors_total = Counter(
    "session_lookup_errors_total", "Session lookups failed on storage errors"
)

# Verification emails the provider did not accept
email_fail_total = Counter(
    "email_fail_total", "Total verification email delivery failures"
)

__all__ = [
    "job_requests_total",
    "job_latency_seconds",
    "poll_iterations",
    "quota_reject_total",
    "upstream_error_total",
    "session_lookup_errors_total",
    "email_fail_total",
]
