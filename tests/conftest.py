"""Pytest configuration and shared fixtures."""

import os
import threading
from typing import Iterable, Optional

os.environ.setdefault("MPLBACKEND", "Agg")

import pytest

from zoobench.config import BenchmarkConfig
from zoobench.session import OpError


class FakeSession:
    """In-memory, thread-safe stand-in for the shared ZooKeeper session."""

    def __init__(self, failing_paths: Optional[Iterable[str]] = None, reason: str = "NodeExistsError"):
        self.failing_paths = set(failing_paths or ())
        self.reason = reason
        self.nodes: dict[str, bytes] = {}
        self.ephemeral: set[str] = set()
        self.calls: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def create(self, path: str, payload: bytes, ephemeral: bool = False) -> None:
        thread_name = threading.current_thread().name
        with self._lock:
            self.calls.append(("create", path, thread_name))
            if path in self.failing_paths:
                raise OpError(path, self.reason)
            if path in self.nodes:
                raise OpError(path, "NodeExistsError")
            self.nodes[path] = payload
            if ephemeral:
                self.ephemeral.add(path)

    def get(self, path: str) -> bytes:
        with self._lock:
            self.calls.append(("get", path, threading.current_thread().name))
            if path not in self.nodes:
                raise OpError(path, "NoNodeError")
            return self.nodes[path]


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def base_config() -> BenchmarkConfig:
    return BenchmarkConfig(
        hosts="127.0.0.1:2181",
        iterations=100,
        threads=4,
        node_size=64,
        phases=("create",),
    )
