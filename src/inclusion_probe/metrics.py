"""
inclusion_probe/metrics.py

Prometheus metrics for inclusion verification runs.

Tracks submissions, run verdicts and how long each endpoint took to show a
receipt. Output is Prometheus text exposition, suitable for a node_exporter
textfile collector.
"""

import logging
import threading
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional

logger = logging.getLogger("inclusion_probe.metrics")


LATENCY_BUCKETS = [0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0, 10.0, 30.0]


class ProbeMetrics:
    """
    Metrics collector for inclusion_probe.

    Usage:
        metrics = ProbeMetrics()
        verifier = InclusionVerifier(config, metrics=metrics)

        await verifier.run()

        prometheus_output = metrics.collect()
    """

    METRICS = {
        "inclusion_probe_submissions_total": {
            "type": "counter",
            "help": "Transactions submitted through the ingress endpoint",
        },
        "inclusion_probe_submission_failures_total": {
            "type": "counter",
            "help": "Submissions rejected or not answered by the ingress endpoint",
        },
        "inclusion_probe_runs_total": {
            "type": "counter",
            "help": "Completed verification runs by verdict",
        },
        "inclusion_probe_receipt_polls_total": {
            "type": "counter",
            "help": "Receipt lookups issued per endpoint",
        },
        "inclusion_probe_receipt_latency_seconds": {
            "type": "histogram",
            "help": "Time from submission until a receipt was visible",
        },
        "inclusion_probe_block_lag": {
            "type": "gauge",
            "help": "Blocks the builder is behind the sequencer",
        },
    }

    def __init__(self, buckets: Optional[List[float]] = None):
        self._lock = threading.Lock()
        self._start_time = time.time()
        self._buckets = sorted(buckets or LATENCY_BUCKETS)
        self.reset_counters()

    def record_submission(self, success: bool) -> None:
        with self._lock:
            self._submissions += 1
            if not success:
                self._submission_failures += 1

    def record_verdict(self, verdict: str) -> None:
        with self._lock:
            self._verdicts[verdict] += 1

    def record_polls(self, endpoint: str, polls: int) -> None:
        with self._lock:
            self._polls[endpoint] += polls

    def record_receipt_latency(self, endpoint: str, seconds: float) -> None:
        """Record how long an endpoint took to return a receipt."""
        with self._lock:
            counts = self._latency_counts.setdefault(
                endpoint, {b: 0 for b in self._buckets + [float("inf")]}
            )
            for bucket in self._buckets:
                if seconds <= bucket:
                    counts[bucket] += 1
                    break
            else:
                counts[float("inf")] += 1
            self._latency_sum[endpoint] += seconds
            self._latency_count[endpoint] += 1

    def record_block_lag(self, lag: int) -> None:
        with self._lock:
            self._block_lag = lag

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines: List[str] = []

        def header(name: str) -> None:
            metric_def = self.METRICS[name]
            lines.append(f"# HELP {name} {metric_def['help']}")
            lines.append(f"# TYPE {name} {metric_def['type']}")

        with self._lock:
            header("inclusion_probe_submissions_total")
            lines.append(f"inclusion_probe_submissions_total {self._submissions}")

            header("inclusion_probe_submission_failures_total")
            lines.append(f"inclusion_probe_submission_failures_total {self._submission_failures}")

            header("inclusion_probe_runs_total")
            for verdict in sorted(self._verdicts):
                lines.append(
                    f'inclusion_probe_runs_total{{verdict="{verdict}"}} {self._verdicts[verdict]}'
                )

            header("inclusion_probe_receipt_polls_total")
            for endpoint in sorted(self._polls):
                lines.append(
                    f'inclusion_probe_receipt_polls_total{{endpoint="{endpoint}"}} '
                    f"{self._polls[endpoint]}"
                )

            if self._latency_counts:
                name = "inclusion_probe_receipt_latency_seconds"
                header(name)
                for endpoint in sorted(self._latency_counts):
                    counts = self._latency_counts[endpoint]
                    cumulative = 0
                    for bucket in self._buckets:
                        cumulative += counts[bucket]
                        lines.append(f'{name}_bucket{{endpoint="{endpoint}",le="{bucket}"}} {cumulative}')
                    cumulative += counts[float("inf")]
                    lines.append(f'{name}_bucket{{endpoint="{endpoint}",le="+Inf"}} {cumulative}')
                    lines.append(f'{name}_sum{{endpoint="{endpoint}"}} {self._latency_sum[endpoint]}')
                    lines.append(f'{name}_count{{endpoint="{endpoint}"}} {self._latency_count[endpoint]}')

            if self._block_lag is not None:
                header("inclusion_probe_block_lag")
                lines.append(f"inclusion_probe_block_lag {self._block_lag}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """Metrics as a plain dictionary."""
        with self._lock:
            return {
                "submissions": self._submissions,
                "submission_failures": self._submission_failures,
                "verdicts": dict(self._verdicts),
                "polls": dict(self._polls),
                "receipts_observed": dict(self._latency_count),
                "block_lag": self._block_lag,
                "uptime_seconds": time.time() - self._start_time,
            }

    def write_textfile(self, path: str) -> None:
        """Write collect() output to path (node_exporter textfile format)."""
        with open(path, "w") as f:
            f.write(self.collect())
        logger.debug(f"Wrote metrics to {path}")

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        self._submissions = 0
        self._submission_failures = 0
        self._verdicts: Dict[str, int] = defaultdict(int)
        self._polls: Dict[str, int] = defaultdict(int)
        self._latency_counts: Dict[str, Dict[float, int]] = {}
        self._latency_sum: Dict[str, float] = defaultdict(float)
        self._latency_count: Dict[str, int] = defaultdict(int)
        self._block_lag: Optional[int] = None
