from __future__ import annotations

import contextlib
import logging
import threading
from typing import Callable

from kazoo.client import KazooClient
from kazoo.protocol.states import KazooState
from kazoo.exceptions import AuthFailedError, KazooException, NoNodeError
from kazoo.handlers.threading import KazooTimeoutError

LOGGER = logging.getLogger("zoobench.session")


class ZooBenchError(Exception):
    """Base class for benchmark errors."""


class ConnectError(ZooBenchError):
    """Raised when the session cannot be established; fatal for the run."""

    def __init__(self, hosts: str, reason: str, timed_out: bool = False) -> None:
        super().__init__(f"failed to connect to {hosts}: {reason}")
        self.hosts = hosts
        self.reason = reason
        self.timed_out = timed_out


class OpError(ZooBenchError):
    """A single znode operation failed. Never fatal."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


def describe_error(exc: BaseException) -> str:
    # kazoo errors often carry no message, the class name is the useful part
    message = str(exc)
    name = type(exc).__name__
    return f"{name}: {message}" if message else name


class SessionManager:
    """Owns the single ZooKeeper session shared by all benchmark workers.

    ``KazooClient`` multiplexes requests from any thread over one connection,
    so workers call :meth:`create` and :meth:`get` concurrently without any
    locking at the call site.
    """

    def __init__(
        self,
        hosts: str,
        timeout_s: float,
        digest: str | None = None,
        client_factory: Callable[..., KazooClient] = KazooClient,
    ) -> None:
        self._hosts = hosts
        self._timeout_s = timeout_s
        self._digest = digest
        self._client_factory = client_factory
        self._client: KazooClient | None = None
        self._close_lock = threading.Lock()

    @property
    def hosts(self) -> str:
        return self._hosts

    @property
    def connected(self) -> bool:
        return self._client is not None

    def connect(self) -> "SessionManager":
        if self._client is not None:
            return self

        LOGGER.info("Connecting to %s (timeout %.1fs)", self._hosts, self._timeout_s)
        try:
            # kazoo parses the hosts string here
            client = self._client_factory(hosts=self._hosts, timeout=self._timeout_s)
        except ValueError as exc:
            raise ConnectError(self._hosts, describe_error(exc)) from exc

        client.add_listener(self._on_state_change)
        try:
            client.start(timeout=self._timeout_s)
        except KazooTimeoutError as exc:
            _discard(client)
            raise ConnectError(
                self._hosts,
                f"timed out after {self._timeout_s:.1f}s",
                timed_out=True,
            ) from exc
        except (KazooException, OSError) as exc:
            _discard(client)
            raise ConnectError(self._hosts, describe_error(exc)) from exc

        if self._digest:
            try:
                client.add_auth("digest", self._digest)
            except (AuthFailedError, KazooException, KazooTimeoutError) as exc:
                _discard(client)
                raise ConnectError(self._hosts, f"authentication failed ({describe_error(exc)})") from exc

        self._client = client
        LOGGER.info("Connected to %s", self._hosts)
        return self

    def create(self, path: str, payload: bytes, ephemeral: bool = False) -> None:
        client = self._require_client()
        try:
            client.create(path, payload, ephemeral=ephemeral)
        except (KazooException, KazooTimeoutError) as exc:
            raise OpError(path, describe_error(exc)) from exc

    def get(self, path: str) -> bytes:
        client = self._require_client()
        try:
            data, _stat = client.get(path)
        except (KazooException, KazooTimeoutError) as exc:
            raise OpError(path, describe_error(exc)) from exc
        return data

    def prepare_namespace(self, prefix: str) -> None:
        """Drop nodes left over from a previous run and recreate ``prefix``."""
        client = self._require_client()
        try:
            client.delete(prefix, recursive=True)
            LOGGER.info("Removed previous benchmark nodes under %s", prefix)
        except NoNodeError:
            pass
        except (KazooException, KazooTimeoutError) as exc:
            raise ZooBenchError(f"failed to clean up {prefix}: {describe_error(exc)}") from exc

        try:
            client.ensure_path(prefix)
        except (KazooException, KazooTimeoutError) as exc:
            raise ZooBenchError(f"failed to create {prefix}: {describe_error(exc)}") from exc

    def close(self) -> None:
        with self._close_lock:
            client, self._client = self._client, None
        if client is None:
            return
        LOGGER.info("Closing session to %s", self._hosts)
        try:
            client.stop()
        finally:
            client.close()

    def __enter__(self) -> "SessionManager":
        return self.connect()

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
            return
        # keep the in-flight exception, not a secondary shutdown error
        with contextlib.suppress(Exception):
            self.close()

    def _require_client(self) -> KazooClient:
        client = self._client
        if client is None:
            raise RuntimeError("session is not connected")
        return client

    def _on_state_change(self, state: str) -> None:
        if state == KazooState.LOST:
            LOGGER.warning("Session to %s lost", self._hosts)
        elif state == KazooState.SUSPENDED:
            LOGGER.warning("Connection to %s suspended", self._hosts)
        else:
            LOGGER.info("Session state changed: %s", state)


def _discard(client: KazooClient) -> None:
    with contextlib.suppress(Exception):
        client.stop()
    with contextlib.suppress(Exception):
        client.close()
