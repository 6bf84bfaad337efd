"""Production monitoring for PaperSmith.

Collects request metrics via FastAPI middleware and exposes them
in Prometheus text format at /api/metrics. Dependency checks feed both
/api/health and the system health panel of the admin analytics.
"""

import logging
import re
from collections import defaultdict
from datetime import datetime
from threading import Lock

from sqlalchemy import text

logger = logging.getLogger(__name__)

_UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"
)


def normalize_path(path: str) -> str:
    """Replace UUIDs in paths with :id to avoid high-cardinality metrics."""
    return _UUID_PATTERN.sub(":id", path)


class MetricsCollector:
    """Thread-safe metrics collection for HTTP requests."""

    def __init__(self):
        self.request_count: dict[str, int] = defaultdict(int)
        self.error_count: dict[str, int] = defaultdict(int)
        self.latency_sum: dict[str, float] = defaultdict(float)
        self.latency_count: dict[str, int] = defaultdict(int)
        self.active_requests: int = 0
        self._lock = Lock()

    def record_request(self, method: str, path: str, status: int, duration: float):
        """Record a completed HTTP request."""
        with self._lock:
            key = f"{method}:{path}"
            self.request_count[key] += 1
            self.latency_sum[key] += duration
            self.latency_count[key] += 1
            if status >= 400:
                self.error_count[f"{key}:{status}"] += 1

    def increment_active(self):
        with self._lock:
            self.active_requests += 1

    def decrement_active(self):
        with self._lock:
            self.active_requests -= 1

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = [
            "# HELP papersmith_requests_total Total HTTP requests",
            "# TYPE papersmith_requests_total counter",
        ]
        with self._lock:
            for key, count in sorted(self.request_count.items()):
                method, path = key.split(":", 1)
                lines.append(
                    f'papersmith_requests_total{{method="{method}",path="{path}"}} {count}'
                )

            lines.append("")
            lines.append("# HELP papersmith_request_duration_avg_seconds Average request latency")
            lines.append("# TYPE papersmith_request_duration_avg_seconds gauge")
            for key in sorted(self.latency_sum.keys()):
                method, path = key.split(":", 1)
                avg = self.latency_sum[key] / max(self.latency_count[key], 1)
                lines.append(
                    f'papersmith_request_duration_avg_seconds{{method="{method}",path="{path}"}} {avg:.4f}'
                )

            lines.append("")
            lines.append("# HELP papersmith_errors_total Total HTTP errors (4xx/5xx)")
            lines.append("# TYPE papersmith_errors_total counter")
            for key, count in sorted(self.error_count.items()):
                lines.append(f'papersmith_errors_total{{endpoint="{key}"}} {count}')

            lines.append("")
            lines.append("# HELP papersmith_active_requests Current active requests")
            lines.append("# TYPE papersmith_active_requests gauge")
            lines.append(f"papersmith_active_requests {self.active_requests}")

        return "\n".join(lines) + "\n"


def check_dependencies() -> dict[str, str]:
    """Probe the database and Qdrant.

    Returns a mapping of dependency name to "healthy" or
    "unhealthy: <reason>". Qdrant reports "disabled" when vector
    indexing is switched off.
    """
    from ..database.connection import engine
    from .retrieval import get_qdrant_client, is_qdrant_enabled

    checks = {"api": "healthy"}

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        checks["database"] = f"unhealthy: {e}"

    if not is_qdrant_enabled():
        checks["qdrant"] = "disabled"
    else:
        try:
            get_qdrant_client().get_collections()
            checks["qdrant"] = "healthy"
        except Exception as e:
            logger.error("Qdrant health check failed: %s", e)
            checks["qdrant"] = f"unhealthy: {e}"

    return checks


def overall_status(checks: dict[str, str]) -> str:
    unhealthy = [v for v in checks.values() if v.startswith("unhealthy")]
    return "degraded" if unhealthy else "healthy"


def health_events(checks: dict[str, str]) -> list[dict]:
    """Render dependency checks as timestamped status events."""
    now = datetime.utcnow().isoformat()
    events = []
    for name, status in checks.items():
        if status == "healthy":
            events.append({"status": "healthy", "message": f"{name} responding normally", "timestamp": now})
        elif status == "disabled":
            events.append({"status": "warning", "message": f"{name} is disabled", "timestamp": now})
        else:
            events.append({"status": "error", "message": f"{name} {status}", "timestamp": now})
    return events


# Global metrics instance
metrics = MetricsCollector()
