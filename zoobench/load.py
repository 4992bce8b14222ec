from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Protocol

from tqdm import tqdm

from .collector import AggregateStats, OperationResult, ResultAggregator
from .config import NODE_NAME, BenchmarkConfig
from .session import OpError

LOGGER = logging.getLogger("zoobench.load")


class Session(Protocol):
    def create(self, path: str, payload: bytes, ephemeral: bool = False) -> None: ...

    def get(self, path: str) -> bytes: ...


@dataclass(frozen=True)
class WorkSlice:
    """Half-open range ``[start, end)`` of global iteration indices."""

    worker_index: int
    start: int
    end: int

    def __len__(self) -> int:
        return max(self.end - self.start, 0)

    def indices(self) -> range:
        return range(self.start, self.end)


def generate_payload(size: int) -> bytes:
    if size < 0:
        raise ValueError("payload size must be >= 0")
    return os.urandom(size)


def partition(iterations: int, threads: int) -> list[WorkSlice]:
    """Split ``iterations`` into ``threads`` contiguous slices.

    Slice sizes differ by at most one; the first ``iterations % threads``
    slices take one extra index. With more threads than iterations the
    trailing slices are empty.
    """
    if iterations <= 0:
        raise ValueError("iterations must be > 0")
    if threads <= 0:
        raise ValueError("threads must be > 0")

    base, remainder = divmod(iterations, threads)
    slices: list[WorkSlice] = []
    start = 0
    for worker_index in range(threads):
        size = base + (1 if worker_index < remainder else 0)
        slices.append(WorkSlice(worker_index=worker_index, start=start, end=start + size))
        start += size
    return slices


def node_path(prefix: str, index: int) -> str:
    return f"{prefix.rstrip('/')}/{NODE_NAME}{index}"


class BenchmarkWorker:
    """Runs one work slice sequentially against the shared session."""

    def __init__(
        self,
        work_slice: WorkSlice,
        session: Session,
        payload: bytes,
        config: BenchmarkConfig,
        aggregator: ResultAggregator,
        phase: str = "create",
        progress: tqdm | None = None,
    ) -> None:
        if phase not in ("create", "read"):
            raise ValueError(f"Unknown phase: {phase}")
        self._slice = work_slice
        self._session = session
        self._payload = payload
        self._config = config
        self._aggregator = aggregator
        self._phase = phase
        self._progress = progress

    @property
    def worker_index(self) -> int:
        return self._slice.worker_index

    def run(self) -> int:
        attempted = 0
        try:
            for index in self._slice.indices():
                if self._aggregator.failure_limit_reached:
                    break
                self._aggregator.record(self._execute(index))
                attempted += 1
                if self._progress is not None:
                    self._progress.update(1)
        finally:
            self._aggregator.mark_done(self.worker_index)
            if self._progress is not None:
                self._progress.close()
        return attempted

    def _execute(self, index: int) -> OperationResult:
        path = node_path(self._config.namespace, index)
        error = None
        started_ns = time.perf_counter_ns()
        try:
            self._perform(path)
        except OpError as exc:
            error = exc.reason
        finished_ns = time.perf_counter_ns()
        return OperationResult(
            worker_index=self.worker_index,
            iteration_index=index,
            path=path,
            started_ns=started_ns,
            finished_ns=finished_ns,
            error=error,
        )

    def _perform(self, path: str) -> None:
        if self._phase == "create":
            self._session.create(path, self._payload, ephemeral=self._config.ephemeral)
        else:
            self._session.get(path)


class BenchmarkRunner:
    """Fans a phase out over a fixed thread pool and aggregates the results."""

    def __init__(
        self,
        config: BenchmarkConfig,
        session: Session,
        payload: bytes | None = None,
        show_progress: bool = False,
    ) -> None:
        self._config = config
        self._session = session
        self._payload = payload if payload is not None else generate_payload(config.node_size)
        self._show_progress = show_progress

    @property
    def payload(self) -> bytes:
        return self._payload

    def run(self) -> dict[str, AggregateStats]:
        results: dict[str, AggregateStats] = {}
        for phase in self._config.phases:
            results[phase] = self.run_phase(phase)
        return results

    def run_phase(self, phase: str) -> AggregateStats:
        slices = partition(self._config.iterations, self._config.threads)
        aggregator = ResultAggregator(
            phase=phase,
            worker_count=len(slices),
            max_failures=self._config.max_failures,
            expected_operations=self._config.iterations,
        )
        workers = [
            BenchmarkWorker(
                work_slice=work_slice,
                session=self._session,
                payload=self._payload,
                config=self._config,
                aggregator=aggregator,
                phase=phase,
                progress=self._progress_bar(work_slice, phase),
            )
            for work_slice in slices
        ]

        LOGGER.info(
            "Running %s phase: %d operation(s) across %d worker(s)",
            phase,
            self._config.iterations,
            len(workers),
        )
        with ThreadPoolExecutor(
            max_workers=self._config.threads, thread_name_prefix=f"zoobench-{phase}"
        ) as executor:
            futures = [executor.submit(worker.run) for worker in workers]
            # join barrier: every worker must finish before finalize
            for future in futures:
                future.result()

        stats = aggregator.finalize()
        if stats.stopped_early:
            LOGGER.warning(
                "%s phase stopped after %d failure(s); %d of %d operation(s) attempted",
                phase,
                stats.total_failed,
                stats.total_attempted,
                self._config.iterations,
            )
        return stats

    def _progress_bar(self, work_slice: WorkSlice, phase: str) -> tqdm | None:
        if not self._show_progress:
            return None
        return tqdm(
            total=len(work_slice),
            desc=f"{phase} worker #{work_slice.worker_index}",
            position=work_slice.worker_index,
            leave=True,
            unit="op",
        )
