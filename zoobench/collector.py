from __future__ import annotations

import collections
import dataclasses
import threading
from dataclasses import dataclass, field

import pandas as pd

SAMPLE_COLUMNS = [
    "worker_index",
    "iteration_index",
    "path",
    "started_ns",
    "finished_ns",
    "duration_ns",
    "error",
]

PERCENTILES = (0.5, 0.9, 0.95, 0.99)


@dataclass(frozen=True)
class OperationResult:
    worker_index: int
    iteration_index: int
    path: str
    started_ns: int
    finished_ns: int
    error: str | None = None

    @property
    def duration_ns(self) -> int:
        return max(self.finished_ns - self.started_ns, 0)

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class LatencySummary:
    count: int = 0
    min_ms: float = 0.0
    mean_ms: float = 0.0
    p50_ms: float = 0.0
    p90_ms: float = 0.0
    p95_ms: float = 0.0
    p99_ms: float = 0.0
    max_ms: float = 0.0

    @classmethod
    def from_durations(cls, durations_ns: pd.Series) -> "LatencySummary":
        if durations_ns.empty:
            return cls()
        millis = durations_ns.astype("float64") / 1e6
        quantiles = millis.quantile(list(PERCENTILES))
        return cls(
            count=int(millis.count()),
            min_ms=float(millis.min()),
            mean_ms=float(millis.mean()),
            p50_ms=float(quantiles.loc[0.5]),
            p90_ms=float(quantiles.loc[0.9]),
            p95_ms=float(quantiles.loc[0.95]),
            p99_ms=float(quantiles.loc[0.99]),
            max_ms=float(millis.max()),
        )


@dataclass(frozen=True)
class AggregateStats:
    """Final, read-only statistics of one benchmark phase."""

    phase: str
    total_attempted: int
    total_succeeded: int
    total_failed: int
    wall_clock_s: float
    latency: LatencySummary
    failure_reasons: dict[str, int] = field(default_factory=dict)
    stopped_early: bool = False
    samples: pd.DataFrame = field(
        default_factory=lambda: pd.DataFrame(columns=SAMPLE_COLUMNS),
        repr=False,
        compare=False,
    )

    @property
    def throughput(self) -> float:
        if self.wall_clock_s <= 0:
            return 0.0
        return self.total_succeeded / self.wall_clock_s

    @property
    def failure_rate(self) -> float:
        if self.total_attempted == 0:
            return 0.0
        return self.total_failed / self.total_attempted

    def to_dict(self) -> dict[str, object]:
        return {
            "phase": self.phase,
            "total_attempted": self.total_attempted,
            "total_succeeded": self.total_succeeded,
            "total_failed": self.total_failed,
            "wall_clock_s": self.wall_clock_s,
            "throughput_per_s": self.throughput,
            "failure_rate": self.failure_rate,
            "stopped_early": self.stopped_early,
            "failure_reasons": dict(self.failure_reasons),
            "latency_ms": dataclasses.asdict(self.latency),
        }


class ResultAggregator:
    """Collects operation results from concurrently running workers.

    Every ``record`` call is serialised by a lock. ``finalize`` refuses to run
    until each of the ``worker_count`` workers has called ``mark_done``.
    """

    def __init__(
        self,
        phase: str,
        worker_count: int,
        max_failures: int | None = None,
        expected_operations: int | None = None,
    ) -> None:
        if worker_count <= 0:
            raise ValueError("worker_count must be > 0")
        self._phase = phase
        self._worker_count = worker_count
        self._max_failures = max_failures
        self._expected_operations = expected_operations

        self._lock = threading.Lock()
        self._results: list[OperationResult] = []
        self._failures = 0
        self._done: set[int] = set()
        self._failure_limit = threading.Event()
        self._final: AggregateStats | None = None

    @property
    def failure_limit_reached(self) -> bool:
        return self._failure_limit.is_set()

    def record(self, result: OperationResult) -> None:
        with self._lock:
            if self._final is not None:
                raise RuntimeError("aggregator already finalized")
            self._results.append(result)
            if not result.succeeded:
                self._failures += 1
                if self._max_failures is not None and self._failures >= self._max_failures:
                    self._failure_limit.set()

    def mark_done(self, worker_index: int) -> None:
        with self._lock:
            if worker_index in self._done:
                raise RuntimeError(f"worker {worker_index} already reported completion")
            self._done.add(worker_index)

    def pending_workers(self) -> int:
        with self._lock:
            return self._worker_count - len(self._done)

    def finalize(self) -> AggregateStats:
        with self._lock:
            if self._final is not None:
                return self._final
            missing = self._worker_count - len(self._done)
            if missing:
                raise RuntimeError(f"{missing} worker(s) have not completed")
            results = list(self._results)
            stats = self._build_stats(results)
            self._final = stats
        return stats

    def _build_stats(self, results: list[OperationResult]) -> AggregateStats:
        samples = build_dataframe(results)
        failed = samples[samples["error"].notna()]
        reasons = collections.Counter(failed["error"])

        if samples.empty:
            wall_clock_s = 0.0
        else:
            wall_clock_s = (samples["finished_ns"].max() - samples["started_ns"].min()) / 1e9

        return AggregateStats(
            phase=self._phase,
            total_attempted=len(samples),
            total_succeeded=len(samples) - len(failed),
            total_failed=len(failed),
            wall_clock_s=float(max(wall_clock_s, 0.0)),
            latency=LatencySummary.from_durations(samples["duration_ns"]),
            failure_reasons=dict(reasons),
            stopped_early=self._stopped_early(len(samples)),
            samples=samples,
        )

    def _stopped_early(self, attempted: int) -> bool:
        # the limit only matters if it actually cut work short
        if not self._failure_limit.is_set() or self._expected_operations is None:
            return False
        return attempted < self._expected_operations


def build_dataframe(results: list[OperationResult]) -> pd.DataFrame:
    if not results:
        return pd.DataFrame(columns=SAMPLE_COLUMNS)

    rows = [
        {
            "worker_index": result.worker_index,
            "iteration_index": result.iteration_index,
            "path": result.path,
            "started_ns": result.started_ns,
            "finished_ns": result.finished_ns,
            "duration_ns": result.duration_ns,
            "error": result.error,
        }
        for result in results
    ]
    frame = pd.DataFrame(rows, columns=SAMPLE_COLUMNS)
    return frame.sort_values("iteration_index", ignore_index=True)
