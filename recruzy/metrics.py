# recruzy/metrics.py
from prometheus_client import Counter, Gauge, Histogram

# --- Counters ---
# Записанные результаты с меткой итога (сдал/не сдал)
RESULTS_RECORDED_TOTAL = Counter(
    "recruzy_results_recorded_total",
    "Total number of recorded test results",
    ["result"],
)

# Созданные назначения; trigger = registration | admin | repair | publish | assign | cli
ASSIGNMENTS_CREATED_TOTAL = Counter(
    "recruzy_assignments_created_total",
    "Total number of test assignments created",
    ["trigger"],
)

# Автоматические отправки теста по нарушениям прокторинга
AUTO_SUBMISSIONS_TOTAL = Counter(
    "recruzy_proctoring_auto_submissions_total",
    "Total number of tests auto-submitted by the proctoring monitor",
    ["violation"],
)

# --- Histograms ---
SCORING_DURATION_SECONDS = Histogram(
    "recruzy_scoring_duration_seconds", "Time spent scoring a submission"
)

# --- Gauges ---
ACTIVE_WEBSOCKET_CONNECTIONS = Gauge(
    "recruzy_active_websocket_connections", "Number of active WebSocket connections"
)
