"""Prometheus metrics for screening requests and API calls.

Every ``ScreeningMetrics`` registers its collectors on its own
``CollectorRegistry`` unless one is passed in, so several clients can live in
one process without clashing on metric names.
"""

from prometheus_client import CollectorRegistry, Counter, Histogram


class ScreeningMetrics:
    """Request, response and API call metrics for one screening client."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = CollectorRegistry() if registry is None else registry

        # API call metrics
        self.api_requests_total = Counter(
            "pep_screening_api_requests_total",
            "Total screening API calls",
            ["endpoint", "status"],
            registry=self.registry,
        )
        self.api_request_duration_histogram = Histogram(
            "pep_screening_api_request_duration_seconds",
            "Screening API call duration in seconds",
            ["endpoint", "status"],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=self.registry,
        )
        self.api_response_size_histogram = Histogram(
            "pep_screening_api_response_size_bytes",
            "Screening API response body size in bytes",
            ["endpoint"],
            buckets=[256, 1024, 4096, 16384, 65536, 262144, 1048576],
            registry=self.registry,
        )

        # Screening metrics
        self.screening_requests_total = Counter(
            "pep_screening_requests_total",
            "Total screenings started",
            ["screening_type"],
            registry=self.registry,
        )
        self.screening_responses_total = Counter(
            "pep_screening_responses_total",
            "Total screenings completed",
            ["screening_type", "records_found"],
            registry=self.registry,
        )
        self.screening_duration_histogram = Histogram(
            "pep_screening_duration_seconds",
            "Screening duration in seconds, retries included",
            ["screening_type"],
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
            registry=self.registry,
        )
        self.screening_results_histogram = Histogram(
            "pep_screening_results_count",
            "Distinct matches returned per screening",
            ["screening_type"],
            buckets=[0, 1, 2, 5, 10, 25, 50, 100],
            registry=self.registry,
        )
        self.potential_matches_total = Counter(
            "pep_screening_potential_matches_total",
            "Total match records reported by the API",
            ["screening_type"],
            registry=self.registry,
        )

    def record_api_call(
        self,
        endpoint: str,
        *,
        status: str,
        duration_seconds: float,
        response_size: int | None = None,
    ) -> None:
        """Record one HTTP attempt against the screening API.

        Args:
            endpoint: API path, for example ``/v1/checkIndividual``.
            status: HTTP status code, or the error code when no response
                arrived.
            duration_seconds: Wall time of the attempt.
            response_size: Body size in bytes when a response arrived.
        """
        self.api_requests_total.labels(endpoint=endpoint, status=status).inc()
        self.api_request_duration_histogram.labels(
            endpoint=endpoint, status=status
        ).observe(duration_seconds)
        if response_size is not None:
            self.api_response_size_histogram.labels(endpoint=endpoint).observe(
                response_size
            )

    def record_screening_request(self, screening_type: str) -> None:
        self.screening_requests_total.labels(screening_type=screening_type).inc()

    def record_screening_response(
        self,
        screening_type: str,
        *,
        total_hits: int,
        results_count: int,
        duration_seconds: float,
    ) -> None:
        """Record a completed screening and the size of its result."""
        records_found = "found" if total_hits > 0 else "none"
        self.screening_responses_total.labels(
            screening_type=screening_type, records_found=records_found
        ).inc()
        self.screening_duration_histogram.labels(
            screening_type=screening_type
        ).observe(duration_seconds)
        self.screening_results_histogram.labels(
            screening_type=screening_type
        ).observe(results_count)
        if total_hits > 0:
            self.potential_matches_total.labels(screening_type=screening_type).inc(
                total_hits
            )
