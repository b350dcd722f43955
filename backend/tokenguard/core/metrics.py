"""Prometheus metrics for the application"""
from prometheus_client import Counter, Histogram, REGISTRY


def _counter(name, documentation, labelnames=()):
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        # Already registered (module reloaded in tests)
        return REGISTRY._names_to_collectors.get(name)


def _histogram(name, documentation, labelnames=(), buckets=Histogram.DEFAULT_BUCKETS):
    try:
        return Histogram(name, documentation, labelnames, buckets=buckets)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Proxy metrics
proxy_requests_counter = _counter(
    'tokenguard_proxy_requests_total',
    'Total number of proxy requests by outcome',
    ['outcome']
)

upstream_latency_histogram = _histogram(
    'tokenguard_upstream_latency_seconds',
    'Latency of proxied calls to AI providers',
    ['host'],
    buckets=(0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120)
)

# Ledger metrics
tokens_committed_counter = _counter(
    'tokenguard_tokens_committed_total',
    'Total number of tokens committed to monthly usage'
)

quota_rejections_counter = _counter(
    'tokenguard_quota_rejections_total',
    'Total number of calls refused by admission control',
    ['reason', 'stage']
)

commit_anomalies_counter = _counter(
    'tokenguard_commit_anomalies_total',
    'Proxied calls whose usage could not be committed after the response'
)

# Alert metrics
alerts_counter = _counter(
    'tokenguard_usage_alerts_total',
    'Usage threshold alerts by threshold and result',
    ['threshold', 'result']
)
