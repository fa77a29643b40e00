"""Reverse SSH tunnel from the VM back to the local registry server.

The tunnel is maintained by a background thread. ``start()`` returns at
once; connection failures are retried and logged, and never raised into
the deploy sequence.
"""

from __future__ import annotations

import select
import socket
import threading
from collections.abc import Callable
from dataclasses import dataclass
from types import TracebackType

import paramiko

from microdeploy.config.defaults import (
    SSH_TUNNEL_CONNECT_TIMEOUT,
    SSH_TUNNEL_MAX_ATTEMPTS,
    SSH_TUNNEL_RETRY_DELAY,
)
from microdeploy.lib.errors import SSHTunnelError
from microdeploy.lib.logging_config import get_logger

logger = get_logger(__name__)

_BUFFER_SIZE = 32 * 1024


@dataclass(frozen=True)
class SSHTunnelOptions:
    """Where to connect and which ports to forward.

    Connections to ``remote_forward_port`` on the VM are forwarded to
    ``local_forward_port`` on this machine.
    """

    host: str
    user: str
    local_forward_port: int
    remote_forward_port: int
    port: int = 22
    private_key: str | None = None
    password: str | None = None


class SSHTunnel:
    """Background-maintained reverse port forward over SSH."""

    def __init__(
        self,
        options: SSHTunnelOptions,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        connect_timeout: float = SSH_TUNNEL_CONNECT_TIMEOUT,
        retry_delay: float = SSH_TUNNEL_RETRY_DELAY,
        max_attempts: int = SSH_TUNNEL_MAX_ATTEMPTS,
    ) -> None:
        self.options = options
        self.connect_timeout = connect_timeout
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self.error: SSHTunnelError | None = None
        self._client_factory = client_factory
        self._client: paramiko.SSHClient | None = None
        self._thread: threading.Thread | None = None
        self._stopped = threading.Event()
        self._connected = threading.Event()
        self._lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    def start(self) -> None:
        """Start connecting in the background and return immediately."""
        if self._thread is not None:
            return
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, name="ssh-tunnel", daemon=True)
        self._thread.start()

    def wait_connected(self, timeout: float | None = None) -> bool:
        """Block until connected or ``timeout`` passes; return whether connected."""
        return self._connected.wait(timeout)

    def stop(self) -> None:
        self._stopped.set()
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            client.close()
        if self._thread is not None:
            self._thread.join(timeout=self.connect_timeout)
            self._thread = None
        self._connected.clear()
        logger.debug("SSH tunnel stopped")

    def _run(self) -> None:
        target = f"{self.options.user}@{self.options.host}:{self.options.port}"
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            if self._stopped.is_set():
                return
            try:
                client = self._connect()
            except (paramiko.SSHException, OSError) as exc:
                last_error = exc
                logger.debug(f"SSH tunnel attempt {attempt} to {target} failed: {exc}")
                if self._stopped.wait(self.retry_delay):
                    return
                continue
            with self._lock:
                if self._stopped.is_set():
                    client.close()
                    return
                self._client = client
            self._connected.set()
            logger.info(
                f"SSH tunnel to {target} forwarding remote port "
                f"{self.options.remote_forward_port} to local port "
                f"{self.options.local_forward_port}"
            )
            return

        self.error = SSHTunnelError(
            f"Could not open SSH tunnel to {target} after {self.max_attempts} attempts: "
            f"{last_error}"
        )
        logger.warning(str(self.error))

    def _connect(self) -> paramiko.SSHClient:
        """Open a connection with the reverse forward in place; close it on failure."""
        client = self._client_factory()
        try:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            client.connect(
                hostname=self.options.host,
                port=self.options.port,
                username=self.options.user,
                password=self.options.password,
                key_filename=self.options.private_key,
                look_for_keys=False,
                allow_agent=False,
                timeout=self.connect_timeout,
            )
            transport = client.get_transport()
            if transport is None:
                raise paramiko.SSHException("SSH transport is not available")
            transport.request_port_forward(
                "", self.options.remote_forward_port, handler=self._handle_channel
            )
        except (paramiko.SSHException, OSError):
            client.close()
            raise
        return client

    def _handle_channel(
        self,
        channel: paramiko.Channel,
        origin: tuple[str, int],
        server: tuple[str, int],
    ) -> None:
        try:
            sock = socket.create_connection(
                ("127.0.0.1", self.options.local_forward_port),
                timeout=self.connect_timeout,
            )
        except OSError as exc:
            logger.warning(f"SSH tunnel could not reach local port: {exc}")
            channel.close()
            return
        logger.debug(f"SSH tunnel forwarding connection from {origin[0]}:{origin[1]}")
        threading.Thread(
            target=self._pipe, args=(channel, sock), name="ssh-tunnel-pipe", daemon=True
        ).start()

    def _pipe(self, channel: paramiko.Channel, sock: socket.socket) -> None:
        try:
            while not self._stopped.is_set():
                readable, _, _ = select.select([sock, channel], [], [], 1.0)
                if sock in readable:
                    data = sock.recv(_BUFFER_SIZE)
                    if not data:
                        break
                    channel.sendall(data)
                if channel in readable:
                    data = channel.recv(_BUFFER_SIZE)
                    if not data:
                        break
                    sock.sendall(data)
        except OSError as exc:
            logger.debug(f"SSH tunnel connection closed: {exc}")
        finally:
            channel.close()
            sock.close()

    def __enter__(self) -> SSHTunnel:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.stop()


class SSHTunnelFactory:
    def new_ssh_tunnel(self, options: SSHTunnelOptions) -> SSHTunnel:
        return SSHTunnel(options)
