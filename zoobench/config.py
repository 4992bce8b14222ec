from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

PHASES: tuple[str, ...] = ("create", "read")

DEFAULT_TIMEOUT_S = 10.0
DEFAULT_ITERATIONS = 1000
DEFAULT_THREADS = 8
DEFAULT_NODE_SIZE = "128K"
DEFAULT_PREFIX = "/zoobench"

NODE_NAME = "test-node"

_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(?:([KMG])(?:I?B)?|B)?$")
_SIZE_SHIFT = {"K": 10, "M": 20, "G": 30}


@dataclass(frozen=True)
class BenchmarkConfig:
    """Process-wide benchmark settings, shared read-only by every worker."""

    hosts: str
    timeout_s: float = DEFAULT_TIMEOUT_S
    iterations: int = DEFAULT_ITERATIONS
    threads: int = DEFAULT_THREADS
    node_size: int = 128 * 1024
    ephemeral: bool = False
    prefix: str = DEFAULT_PREFIX
    digest: str | None = None
    phases: tuple[str, ...] = PHASES
    max_failures: int | None = None

    def __post_init__(self) -> None:
        if not self.hosts:
            raise ValueError("hosts must not be empty")
        if self.timeout_s <= 0:
            raise ValueError("timeout must be > 0")
        if self.iterations <= 0:
            raise ValueError("iteration count must be > 0")
        if self.threads <= 0:
            raise ValueError("thread count must be > 0")
        if self.node_size < 0:
            raise ValueError("node size must be >= 0")
        if not self.prefix.startswith("/") or self.prefix.rstrip("/") == "":
            raise ValueError(f"prefix must be an absolute, non-root path: {self.prefix!r}")
        if self.digest is not None and ":" not in self.digest:
            raise ValueError("digest must have the form user:password")
        if not self.phases:
            raise ValueError("at least one phase is required")
        unknown = [phase for phase in self.phases if phase not in PHASES]
        if unknown:
            raise ValueError(f"unknown phase(s): {', '.join(unknown)}")
        if self.max_failures is not None and self.max_failures <= 0:
            raise ValueError("max failures must be > 0")

    @property
    def namespace(self) -> str:
        return self.prefix.rstrip("/")


def parse_size(size_str: str) -> int:
    """Parse '512', '4k', '128K', '1MB' or '2KiB' to bytes (powers of 1024)."""
    match = _SIZE_RE.match(size_str.strip().upper())
    if match is None:
        raise ValueError(f"Invalid size: {size_str!r}")

    number, unit = match.groups()
    return int(float(number) * (1 << _SIZE_SHIFT.get(unit, 0)))


def parse_phases(value: str | Sequence[str]) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    phases = tuple(item.strip().lower() for item in items if item.strip())
    # keep execution order stable: create always runs before read
    return tuple(phase for phase in PHASES if phase in phases) + tuple(
        phase for phase in phases if phase not in PHASES
    )
