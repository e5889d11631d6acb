"""
Simple in-memory metrics for Prometheus exposition.
Thread-safe counters.
"""
import threading
from typing import Dict


# (counter name, exposed metric name, help text)
COUNTERS = (
    ("builds_started_total", "site_builds_started_total", "Build pipelines started"),
    ("builds_succeeded_total", "site_builds_succeeded_total", "Build pipelines that published"),
    ("builds_failed_total", "site_builds_failed_total", "Build pipelines that failed"),
    ("build_steps_failed_total", "site_build_steps_failed_total", "Build steps with non-zero exit"),
    ("scaffolds_started_total", "site_scaffolds_started_total", "Project scaffolds started"),
    ("scaffolds_succeeded_total", "site_scaffolds_succeeded_total", "Project scaffolds uploaded"),
    ("scaffolds_failed_total", "site_scaffolds_failed_total", "Project scaffolds that failed"),
    ("objects_fetched_total", "site_objects_fetched_total", "Objects written to workspaces"),
    ("objects_published_total", "site_objects_published_total", "Objects uploaded to the bucket"),
    ("workspace_cleanup_failed_total", "site_workspace_cleanup_failed_total",
     "Workspaces that could not be removed"),
    ("site_requests_total", "site_tenant_requests_total", "Tenant site requests served"),
    ("site_not_found_total", "site_tenant_not_found_total", "Tenant site requests answered 404"),
)


class Metrics:
    """Thread-safe metrics collection."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {
            "requests_total": 0,
            "requests_2xx": 0,
            "requests_4xx": 0,
            "requests_5xx": 0,
        }
        for name, _, _ in COUNTERS:
            self._counters[name] = 0

    def inc(self, name: str, value: int = 1) -> None:
        """Increment a counter."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = 0
            self._counters[name] += value

    def get(self, name: str) -> int:
        """Get a counter value."""
        with self._lock:
            return self._counters.get(name, 0)

    def get_all(self) -> Dict[str, int]:
        """Get all counter values."""
        with self._lock:
            return self._counters.copy()

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []
        counters = self.get_all()

        lines.append("# HELP site_requests_total Total HTTP requests")
        lines.append("# TYPE site_requests_total counter")
        lines.append(f"site_requests_total {counters['requests_total']}")

        lines.append("# HELP site_requests_by_status HTTP requests by status class")
        lines.append("# TYPE site_requests_by_status counter")
        lines.append(f'site_requests_by_status{{status="2xx"}} {counters["requests_2xx"]}')
        lines.append(f'site_requests_by_status{{status="4xx"}} {counters["requests_4xx"]}')
        lines.append(f'site_requests_by_status{{status="5xx"}} {counters["requests_5xx"]}')

        for name, exposed, help_text in COUNTERS:
            lines.append(f"# HELP {exposed} {help_text}")
            lines.append(f"# TYPE {exposed} counter")
            lines.append(f"{exposed} {counters.get(name, 0)}")

        return "\n".join(lines) + "\n"


# Global metrics instance
metrics = Metrics()
