"""
Metrics for the ingestion pipeline.

Counters and histograms live in a per-instance registry. Recording never
raises: a broken metric must not fail the job it describes.
"""

import logging
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram

logger = logging.getLogger(__name__)


def _labels(labels: Dict[str, Any]) -> Dict[str, str]:
    return {str(key): str(value) for key, value in labels.items()}


class MetricsService:
    """AI call, geocoding and job metrics"""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.ai_calls = Counter(
            "ai_calls_total",
            "AI extraction requests, cached or sent to a provider",
            ["provider", "model", "cached"],
            registry=self.registry,
        )
        self.ai_cost = Counter(
            "ai_cost_usd_total",
            "AI spend in USD",
            ["provider", "model"],
            registry=self.registry,
        )
        self.geocode_requests = Counter(
            "geocode_requests_total",
            "Geocoding lookups by cache usage and outcome",
            ["cached", "found", "reason"],
            registry=self.registry,
        )
        self.jobs = Counter(
            "jobs_total",
            "Settled parse jobs by type and resulting status",
            ["job_type", "status"],
            registry=self.registry,
        )
        self.job_duration = Histogram(
            "job_duration_seconds",
            "Time spent running one job attempt",
            ["job_type"],
            registry=self.registry,
        )

    def record_ai_call(self, provider: str, model: str, cached: bool, cost_usd: float = 0.0) -> None:
        try:
            self.ai_calls.labels(provider=provider, model=model, cached=cached).inc()
            if cost_usd:
                self.ai_cost.labels(provider=provider, model=model).inc(cost_usd)
        except Exception as e:
            logger.debug("Failed to record AI call metric: %s", e)

    def record_geocode(self, cached: bool, found: bool, reason: str = "") -> None:
        try:
            self.geocode_requests.labels(cached=cached, found=found, reason=reason).inc()
        except Exception as e:
            logger.debug("Failed to record geocoding metric: %s", e)

    def record_job(self, job_type: str, status: str, duration_seconds: float) -> None:
        try:
            self.jobs.labels(job_type=job_type, status=status).inc()
            self.job_duration.labels(job_type=job_type).observe(duration_seconds)
        except Exception as e:
            logger.debug("Failed to record job metric: %s", e)

    def get_counter(self, name: str, **labels: Any) -> float:
        """Current value of a counter series, 0.0 when it was never recorded"""
        value = self.registry.get_sample_value(name, _labels(labels))
        return value or 0.0

    def get_histogram(self, name: str, **labels: Any) -> Dict[str, float]:
        label_values = _labels(labels)
        return {
            "count": self.registry.get_sample_value(f"{name}_count", label_values) or 0.0,
            "sum": self.registry.get_sample_value(f"{name}_sum", label_values) or 0.0,
        }

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        """Plain dict view of every series, used for stats logging"""
        result: Dict[str, Dict[str, float]] = {}
        for metric in self.registry.collect():
            for sample in metric.samples:
                if sample.name.endswith(("_created", "_bucket")):
                    continue
                key = ",".join(f"{k}={v}" for k, v in sorted(sample.labels.items()))
                result.setdefault(sample.name, {})[key] = sample.value
        return result
