"""
Prometheus metrics configuration
"""
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from prometheus_client.registry import REGISTRY

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    'bankguard_http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'bankguard_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

# ============================================================================
# Pipeline Metrics
# ============================================================================

pipeline_invocations_total = Counter(
    'bankguard_pipeline_invocations_total',
    'Pipeline invocations by terminal outcome',
    ['outcome']  # outcome: 'denied', 'violation', 'success', 'error'
)

pipeline_duration_seconds = Histogram(
    'bankguard_pipeline_duration_seconds',
    'End-to-end pipeline duration in seconds',
    ['outcome'],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
)

compliance_verdicts_total = Counter(
    'bankguard_compliance_verdicts_total',
    'Compliance verdicts',
    ['verdict', 'source']  # source: 'model', 'cache', 'no_rules', 'fallback'
)

decisions_total = Counter(
    'bankguard_decisions_total',
    'Decisions produced by the decision engine',
    ['flagged', 'fallback']
)

# ============================================================================
# LLM / Resilience Metrics
# ============================================================================

llm_requests_total = Counter(
    'bankguard_llm_requests_total',
    'Total number of reasoning model requests',
    ['model', 'status']
)

llm_request_duration_seconds = Histogram(
    'bankguard_llm_request_duration_seconds',
    'Reasoning model request duration in seconds',
    ['model'],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0)
)

circuit_breaker_state = Gauge(
    'bankguard_circuit_breaker_state',
    'Circuit breaker state (0=closed, 1=half_open, 2=open)',
    ['breaker']
)

circuit_breaker_fallbacks_total = Counter(
    'bankguard_circuit_breaker_fallbacks_total',
    'Calls answered by the fallback',
    ['breaker', 'reason']  # reason: 'open', 'failure', 'malformed'
)

retries_total = Counter(
    'bankguard_retries_total',
    'Retried attempts',
    ['operation']
)

# ============================================================================
# Memory / Session / Audit Metrics
# ============================================================================

similarity_searches_total = Counter(
    'bankguard_similarity_searches_total',
    'Similarity searches',
    ['kind']
)

similarity_search_duration_seconds = Histogram(
    'bankguard_similarity_search_duration_seconds',
    'Similarity search duration in seconds',
    ['kind'],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0)
)

sessions_created_total = Counter(
    'bankguard_sessions_created_total',
    'Conversation sessions created',
    ['session_type']
)

audit_writes_total = Counter(
    'bankguard_audit_writes_total',
    'Audit record writes',
    ['status']  # status: 'success', 'failed'
)

sweep_deleted_total = Counter(
    'bankguard_sweep_deleted_total',
    'Rows removed by periodic sweeps',
    ['sweeper']
)

# ============================================================================
# Database Metrics
# ============================================================================

db_queries_total = Counter(
    'bankguard_db_queries_total',
    'Total number of database queries',
    ['operation', 'table']
)

db_query_duration_seconds = Histogram(
    'bankguard_db_query_duration_seconds',
    'Database query duration in seconds',
    ['operation', 'table'],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
)


def get_metrics():
    """
    Get Prometheus metrics in text format

    Returns:
        bytes: Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def get_metrics_content_type():
    return CONTENT_TYPE_LATEST
