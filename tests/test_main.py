"""Tests for the command line entry point."""

import importlib
import json
from unittest.mock import MagicMock, patch

import pytest

from conftest import FakeSession
from zoobench.config import BenchmarkConfig
from zoobench.main import config_from_args, format_stats, main, parse_args, run_benchmark
from zoobench.session import ConnectError

main_module = importlib.import_module("zoobench.main")


class _FakeSessionManager(FakeSession):
    """FakeSession with the SessionManager lifecycle."""

    def __init__(self, *args, **kwargs):
        super().__init__()
        self.prepared = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True

    def prepare_namespace(self, prefix):
        self.prepared.append(prefix)


class TestArguments:
    """Tests for argument parsing."""

    def test_defaults(self):
        config = config_from_args(parse_args(["127.0.0.1:2181"]))

        assert config == BenchmarkConfig(hosts="127.0.0.1:2181")

    def test_options(self):
        args = parse_args(
            [
                "zk:2181",
                "-t", "3",
                "-n", "50",
                "-j", "2",
                "-s", "4K",
                "-e",
                "-p", "/bench",
                "--phases", "create",
                "--max-failures", "5",
            ]
        )
        config = config_from_args(args)

        assert config.timeout_s == 3.0
        assert config.iterations == 50
        assert config.threads == 2
        assert config.node_size == 4096
        assert config.ephemeral is True
        assert config.prefix == "/bench"
        assert config.phases == ("create",)
        assert config.max_failures == 5

    def test_environment_defaults(self, monkeypatch):
        monkeypatch.setenv("ZOOBENCH_HOSTS", "env-zk:2181")
        monkeypatch.setenv("ZOOBENCH_THREADS", "3")
        monkeypatch.setenv("ZOOBENCH_EPHEMERAL", "true")

        config = config_from_args(parse_args([]))

        assert config.hosts == "env-zk:2181"
        assert config.threads == 3
        assert config.ephemeral is True

    def test_invalid_configuration_exits(self, monkeypatch):
        monkeypatch.delenv("ZOOBENCH_HOSTS", raising=False)

        with pytest.raises(SystemExit) as exc_info:
            main(["--no-progress"])

        assert exc_info.value.code == 2


class TestRunBenchmark:
    """Tests for run_benchmark()."""

    def test_prepares_namespace_and_closes_session(self):
        config = BenchmarkConfig(hosts="zk", iterations=10, threads=3, node_size=8, prefix="/bench/")
        session = _FakeSessionManager()

        results = run_benchmark(config, session)

        assert session.prepared == ["/bench"]
        assert session.closed is True
        assert results["create"].total_succeeded == 10
        assert results["read"].total_succeeded == 10

    def test_read_only_run_does_not_touch_namespace(self):
        config = BenchmarkConfig(hosts="zk", iterations=4, threads=2, phases=("read",))
        session = _FakeSessionManager()

        results = run_benchmark(config, session)

        assert session.prepared == []
        assert results["read"].total_failed == 4


class TestMain:
    """Tests for main()."""

    def test_connect_error_produces_no_results(self):
        session = MagicMock()
        session.__enter__.side_effect = ConnectError("zk:2181", "timed out after 1.0s", timed_out=True)

        with patch.object(main_module, "SessionManager", return_value=session), patch.object(
            main_module, "BenchmarkRunner"
        ) as runner_cls:
            exit_code = main(["zk:2181", "--no-progress", "-t", "1"])

        assert exit_code == 1
        runner_cls.assert_not_called()

    def test_invalid_hosts_exits_with_connect_failure(self):
        with patch.object(main_module, "BenchmarkRunner") as runner_cls:
            exit_code = main(["localhost:notaport", "--no-progress", "-s", "16"])

        assert exit_code == 1
        runner_cls.assert_not_called()

    def test_writes_outputs(self, tmp_path):
        with patch.object(main_module, "SessionManager", _FakeSessionManager):
            exit_code = main(
                [
                    "zk:2181",
                    "--no-progress",
                    "-n", "20",
                    "-j", "4",
                    "-s", "16",
                    "--output-dir", str(tmp_path),
                ]
            )

        assert exit_code == 0
        assert (tmp_path / "create.csv").exists()
        assert (tmp_path / "read.csv").exists()
        assert (tmp_path / "throughput.png").exists()
        assert (tmp_path / "latency_distribution.png").exists()

        manifest = json.loads((tmp_path / "benchmark_manifest.json").read_text())
        assert manifest["config"]["iterations"] == 20
        assert manifest["phases"]["create"]["total_attempted"] == 20
        assert manifest["phases"]["read"]["total_failed"] == 0

    def test_format_stats(self):
        config = BenchmarkConfig(hosts="zk", iterations=5, threads=2, phases=("read",))
        results = run_benchmark(config, _FakeSessionManager())

        lines = format_stats(results["read"])

        assert lines[0].startswith("read: 0/5 succeeded, 5 failed")
        assert lines[-1] == "read: failure NoNodeError x5"
