"""
Prometheus metrics for the FHIR profile validator.

Tracks validation outcomes, issue counts by code, call latency and the
health of the terminology collaborator.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Generator, Iterable, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from .errors import Issue


class ValidatorMetrics:
    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.validations_total = Counter(
            "fhir_validations_total",
            "FHIR resource validations performed",
            labelnames=["resource_type", "result"],
            registry=self.registry
        )

        self.issues_total = Counter(
            "fhir_validation_issues_total",
            "Validation issues reported, by code and severity",
            labelnames=["code", "severity"],
            registry=self.registry
        )

        self.validation_duration = Histogram(
            "fhir_validation_duration_seconds",
            "Time spent validating one resource",
            labelnames=["resource_type"],
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
            registry=self.registry
        )

        self.terminology_lookups = Counter(
            "fhir_terminology_lookups_total",
            "Value-set lookups against the terminology collaborator",
            labelnames=["status"],
            registry=self.registry
        )

        self.terminology_cache_hits = Counter(
            "fhir_terminology_cache_hits_total",
            "Value-set lookups answered from cache",
            registry=self.registry
        )

    def record_validation(self, resource_type: str, valid: bool, issues: Iterable[Issue]) -> None:
        self.validations_total.labels(
            resource_type=resource_type or "unknown",
            result="valid" if valid else "invalid"
        ).inc()
        for issue in issues:
            self.issues_total.labels(code=issue.code.value, severity=issue.severity.value).inc()

    def record_terminology_lookup(self, status: str) -> None:
        self.terminology_lookups.labels(status=status).inc()

    def record_terminology_cache_hit(self) -> None:
        self.terminology_cache_hits.inc()

    @contextmanager
    def time_validation(self, resource_type: str) -> Generator[None, None, None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.validation_duration.labels(resource_type=resource_type or "unknown").observe(
                time.perf_counter() - start
            )

    def export(self) -> bytes:
        return generate_latest(self.registry)


metrics = ValidatorMetrics()
