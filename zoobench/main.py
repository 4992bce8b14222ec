from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from .charts import render_charts
from .collector import AggregateStats
from .config import (
    DEFAULT_ITERATIONS,
    DEFAULT_NODE_SIZE,
    DEFAULT_PREFIX,
    DEFAULT_THREADS,
    DEFAULT_TIMEOUT_S,
    PHASES,
    BenchmarkConfig,
    parse_phases,
    parse_size,
)
from .load import BenchmarkRunner, generate_payload
from .session import ConnectError, SessionManager, ZooBenchError

LOGGER = logging.getLogger("zoobench")

MANIFEST_NAME = "benchmark_manifest.json"


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zoobench",
        description="Concurrent znode create/read benchmark for ZooKeeper",
    )
    parser.add_argument(
        "hosts",
        nargs="?",
        default=os.environ.get("ZOOBENCH_HOSTS"),
        help="ZooKeeper hosts, e.g. 127.0.0.1:2181,127.0.0.2:2181",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        type=float,
        default=os.environ.get("ZOOBENCH_TIMEOUT", str(DEFAULT_TIMEOUT_S)),
        help="Connection timeout in seconds",
    )
    parser.add_argument(
        "-n",
        "--iteration",
        type=int,
        default=os.environ.get("ZOOBENCH_ITERATION", str(DEFAULT_ITERATIONS)),
        help="Number of total znodes",
    )
    parser.add_argument(
        "-j",
        "--threads",
        type=int,
        default=os.environ.get("ZOOBENCH_THREADS", str(DEFAULT_THREADS)),
        help="Number of worker threads",
    )
    parser.add_argument(
        "-s",
        "--node-size",
        type=parse_size,
        default=os.environ.get("ZOOBENCH_NODE_SIZE", DEFAULT_NODE_SIZE),
        help="Znode value size, accepts suffixes such as 4K or 1M",
    )
    parser.add_argument(
        "-e",
        "--ephemeral",
        action="store_true",
        default=_env_flag("ZOOBENCH_EPHEMERAL"),
        help="Create ephemeral znodes",
    )
    parser.add_argument(
        "-p",
        "--prefix",
        default=os.environ.get("ZOOBENCH_PREFIX", DEFAULT_PREFIX),
        help="Namespace root for the benchmark znodes",
    )
    parser.add_argument(
        "--digest",
        default=os.environ.get("ZOOBENCH_DIGEST"),
        help="Digest credentials as user:password",
    )
    parser.add_argument(
        "--phases",
        default=os.environ.get("ZOOBENCH_PHASES", ",".join(PHASES)),
        help="Comma-separated phases to run (create, read)",
    )
    parser.add_argument(
        "--max-failures",
        type=int,
        default=os.environ.get("ZOOBENCH_MAX_FAILURES"),
        help="Stop a phase once this many operations have failed",
    )
    parser.add_argument(
        "--output-dir",
        default=os.environ.get("ZOOBENCH_OUTPUT_DIR"),
        help="Directory to store CSV samples, the JSON manifest and charts",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        default=_env_flag("ZOOBENCH_NO_PROGRESS"),
        help="Disable per-worker progress bars",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("ZOOBENCH_LOG_LEVEL", "INFO"),
        help="Logging level",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def config_from_args(args: argparse.Namespace) -> BenchmarkConfig:
    return BenchmarkConfig(
        hosts=args.hosts or "",
        timeout_s=args.timeout,
        iterations=args.iteration,
        threads=args.threads,
        node_size=args.node_size,
        ephemeral=args.ephemeral,
        prefix=args.prefix,
        digest=args.digest or None,
        phases=parse_phases(args.phases),
        max_failures=args.max_failures,
    )


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def format_stats(stats: AggregateStats) -> list[str]:
    latency = stats.latency
    lines = [
        f"{stats.phase}: {stats.total_succeeded}/{stats.total_attempted} succeeded, "
        f"{stats.total_failed} failed ({stats.failure_rate:.2%}) in {stats.wall_clock_s:.3f}s",
        f"{stats.phase}: throughput {stats.throughput:.2f} ops/s",
        f"{stats.phase}: latency ms min={latency.min_ms:.2f} mean={latency.mean_ms:.2f} "
        f"p50={latency.p50_ms:.2f} p90={latency.p90_ms:.2f} p95={latency.p95_ms:.2f} "
        f"p99={latency.p99_ms:.2f} max={latency.max_ms:.2f}",
    ]
    for reason, count in sorted(stats.failure_reasons.items(), key=lambda item: -item[1]):
        lines.append(f"{stats.phase}: failure {reason} x{count}")
    return lines


def write_outputs(
    config: BenchmarkConfig,
    results: dict[str, AggregateStats],
    output_dir: Path,
) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    for phase, stats in results.items():
        csv_path = output_dir / f"{phase}.csv"
        stats.samples.to_csv(csv_path, index=False)
        LOGGER.info("Saved %s samples to %s (%d rows)", phase, csv_path, len(stats.samples))

    charts = render_charts(results, output_dir)

    manifest = {
        "config": {
            "hosts": config.hosts,
            "timeout_s": config.timeout_s,
            "iterations": config.iterations,
            "threads": config.threads,
            "node_size": config.node_size,
            "ephemeral": config.ephemeral,
            "prefix": config.prefix,
            "phases": list(config.phases),
            "max_failures": config.max_failures,
        },
        "phases": {phase: stats.to_dict() for phase, stats in results.items()},
        "charts": [str(chart) for chart in charts],
    }
    manifest_path = output_dir / MANIFEST_NAME
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)
    LOGGER.info("Benchmark manifest written to %s", manifest_path)
    return manifest_path


def run_benchmark(
    config: BenchmarkConfig,
    session: SessionManager,
    show_progress: bool = False,
) -> dict[str, AggregateStats]:
    """Connect, prepare the namespace and run every configured phase.

    Raises :class:`ConnectError` before any worker starts when the session
    cannot be established. The session is closed once all phases finished.
    """
    payload = generate_payload(config.node_size)
    with session:
        if "create" in config.phases:
            session.prepare_namespace(config.namespace)
        runner = BenchmarkRunner(config, session, payload=payload, show_progress=show_progress)
        return runner.run()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = config_from_args(args)
    except ValueError as exc:
        parser.error(str(exc))

    LOGGER.info(
        "Benchmark: hosts=%s iterations=%d threads=%d node_size=%d ephemeral=%s prefix=%s phases=%s",
        config.hosts,
        config.iterations,
        config.threads,
        config.node_size,
        config.ephemeral,
        config.prefix,
        ",".join(config.phases),
    )

    session = SessionManager(config.hosts, config.timeout_s, digest=config.digest)
    show_progress = not args.no_progress and sys.stderr.isatty()
    try:
        results = run_benchmark(config, session, show_progress=show_progress)
    except ConnectError as exc:
        LOGGER.error("%s", exc)
        return 1
    except ZooBenchError as exc:
        LOGGER.error("Benchmark aborted: %s", exc)
        return 1

    for stats in results.values():
        for line in format_stats(stats):
            LOGGER.info("%s", line)

    if args.output_dir:
        write_outputs(config, results, Path(args.output_dir))
    return 0


if __name__ == "__main__":
    sys.exit(main())
