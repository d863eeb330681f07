"""
Prometheus metrics configuration
"""
import os

from prometheus_client import (CONTENT_TYPE_LATEST, Counter, Gauge, Histogram,
                               generate_latest)
from prometheus_client.multiprocess import MultiProcessCollector
from prometheus_client.registry import REGISTRY

# Check if we're in multiprocess mode
if os.environ.get('PROMETHEUS_MULTIPROC_DIR'):
    REGISTRY = MultiProcessCollector(REGISTRY)

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

service_errors_total = Counter(
    'service_errors_total',
    'Service errors surfaced to callers',
    ['code']
)

# ============================================================================
# Database Metrics
# ============================================================================

db_queries_total = Counter(
    'db_queries_total',
    'Total number of database queries',
    ['operation']
)

db_query_duration_seconds = Histogram(
    'db_query_duration_seconds',
    'Database query duration in seconds',
    ['operation'],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
)

# ============================================================================
# Parameter & Governance Metrics
# ============================================================================

parameter_updates_total = Counter(
    'parameter_updates_total',
    'Committed parameter value changes',
    ['category', 'source']  # source: 'direct', 'governance', 'decay'
)

governance_transitions_total = Counter(
    'governance_transitions_total',
    'Approval transaction state transitions',
    ['status']
)

governance_open_transactions = Gauge(
    'governance_open_transactions',
    'Approval transactions awaiting approval or execution'
)

# ============================================================================
# Ranking & Decay Metrics
# ============================================================================

ranking_queries_total = Counter(
    'ranking_queries_total',
    'Ranking computations served',
    ['kind']
)

ranking_computation_duration_seconds = Histogram(
    'ranking_computation_duration_seconds',
    'Time spent computing a ranking snapshot',
    ['kind'],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0)
)

decay_pool_changes_total = Counter(
    'decay_pool_changes_total',
    'Pool rate reductions applied by the decay pass',
    ['pool_id']
)

daily_job_runs_total = Counter(
    'daily_job_runs_total',
    'Daily job executions',
    ['job', 'status']  # status: 'success', 'failed'
)


def get_metrics_response() -> tuple:
    """Render the registry in Prometheus text format"""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
