"""SSH forward tunnel to a database host behind a bastion.

A single SSH session is shared by every forwarded connection. Each client
that connects to the loopback listener gets its own ``direct-tcpip``
channel, so a failure on one channel never affects the others. Everything
runs on the event loop; asyncssh channels are plain asyncio streams.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import asyncssh

from .constants import (
    DEFAULT_SSH_PORT,
    SSH_KNOWN_HOSTS,
    TUNNEL_BUFFER_SIZE,
    TUNNEL_CHANNEL_TIMEOUT,
    TUNNEL_CONNECT_TIMEOUT,
    TUNNEL_LOCAL_HOST,
)
from .database.logging import log_tunnel_event
from .errors import ConfigurationError, TunnelAuthFailed, TunnelError, TunnelUnreachable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TunnelOptions:
    """Bastion settings plus the database endpoint reached through it.

    ``target_host`` and ``target_port`` are filled in once the connection
    has been resolved.
    """

    ssh_host: str
    ssh_user: Optional[str] = None
    ssh_port: int = DEFAULT_SSH_PORT
    ssh_key: Optional[str] = None
    ssh_password: Optional[str] = None
    target_host: Optional[str] = None
    target_port: Optional[int] = None

    def validate(self) -> None:
        """Check settings before any network I/O.

        Raises:
            ConfigurationError: If a required setting is missing or invalid
        """
        if not self.ssh_host:
            raise ConfigurationError("--ssh-host must not be empty")
        if not self.ssh_user:
            raise ConfigurationError("--ssh-user is required when --ssh-host is set")
        if not self.ssh_key and not self.ssh_password:
            raise ConfigurationError("--ssh-key or --ssh-password is required when --ssh-host is set")
        if not 1 <= self.ssh_port <= 65535:
            raise ConfigurationError(f"--ssh-port must be between 1 and 65535, got {self.ssh_port}")


def load_private_key(path: str) -> asyncssh.SSHKey:
    """Load an unencrypted private key (OpenSSH, PKCS#1, PKCS#8 or SEC1).

    Raises:
        ConfigurationError: If the file is unreadable, encrypted or holds no usable key
    """
    try:
        return asyncssh.read_private_key(path)
    except OSError as e:
        raise ConfigurationError(f"Cannot read SSH private key {path}: {e}") from e
    except asyncssh.KeyImportError as e:
        raise ConfigurationError(f"Unsupported SSH private key {path}: {e}") from e


def known_hosts_path(path: str = SSH_KNOWN_HOSTS) -> Optional[str]:
    """Return the known_hosts file to verify against, or None if there is none."""
    expanded = os.path.expanduser(path)
    return expanded if os.path.isfile(expanded) else None


class ChannelStream:
    """Byte stream over one ``direct-tcpip`` channel."""

    def __init__(self, reader: asyncssh.SSHReader, writer: asyncssh.SSHWriter):
        self._reader = reader
        self._writer = writer

    async def read(self, size: int = TUNNEL_BUFFER_SIZE) -> bytes:
        """Return the next chunk of data, or b"" at end of stream."""
        return await self._reader.read(size)

    async def write(self, data: bytes) -> None:
        self._writer.write(data)
        # Waits while the remote window is full
        await self._writer.drain()

    def shutdown_write(self) -> None:
        if self._writer.can_write_eof():
            self._writer.write_eof()

    def close(self) -> None:
        self._writer.close()


class SSHSession:
    """Authenticated SSH session to the bastion."""

    def __init__(self, conn: asyncssh.SSHClientConnection):
        self._conn = conn

    @classmethod
    async def connect(cls, options: TunnelOptions) -> "SSHSession":
        """Connect and authenticate to the bastion.

        Host keys are checked against ``~/.ssh/known_hosts`` when that file
        exists. Without it any host key is accepted and a warning is logged.

        Raises:
            ConfigurationError: If the private key cannot be loaded
            TunnelAuthFailed: If the bastion rejects the credentials
            TunnelUnreachable: If the bastion cannot be reached
        """
        client_keys = [load_private_key(options.ssh_key)] if options.ssh_key else None

        known_hosts = known_hosts_path()
        if known_hosts is None:
            logger.warning(
                f"No known_hosts file at {SSH_KNOWN_HOSTS}; "
                f"host key of {options.ssh_host} will not be verified"
            )

        endpoint = f"{options.ssh_user}@{options.ssh_host}:{options.ssh_port}"
        try:
            conn = await asyncssh.connect(
                options.ssh_host,
                port=options.ssh_port,
                username=options.ssh_user,
                password=options.ssh_password,
                client_keys=client_keys,
                known_hosts=known_hosts,
                agent_path=None,
                config=None,
                connect_timeout=TUNNEL_CONNECT_TIMEOUT,
                login_timeout=TUNNEL_CONNECT_TIMEOUT,
            )
        except asyncssh.PermissionDenied as e:
            raise TunnelAuthFailed(f"SSH authentication failed for {endpoint}: {e.reason}") from e
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as e:
            raise TunnelUnreachable(f"Cannot reach SSH host {endpoint}: {e}") from e

        return cls(conn)

    async def open_channel(self, host: str, port: int, origin: tuple[str, int]) -> ChannelStream:
        """Open a ``direct-tcpip`` channel to ``host:port``.

        Raises:
            TunnelError: If the session is gone or the bastion refuses the channel
        """
        try:
            reader, writer = await asyncio.wait_for(
                self._conn.open_connection(host, port, orig_host=origin[0], orig_port=origin[1]),
                TUNNEL_CHANNEL_TIMEOUT,
            )
        except asyncssh.ChannelOpenError as e:
            raise TunnelError(f"Cannot open channel to {host}:{port}: {e.reason}") from e
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as e:
            raise TunnelUnreachable(f"SSH session unusable for {host}:{port}: {e}") from e
        return ChannelStream(reader, writer)

    async def close(self) -> None:
        self._conn.close()
        await self._conn.wait_closed()


class Tunnel:
    """Loopback listener forwarding each connection over its own SSH channel."""

    def __init__(self, session: SSHSession, target_host: str, target_port: int):
        self.local_host = TUNNEL_LOCAL_HOST
        self.local_port = 0
        self.target_host = target_host
        self.target_port = target_port
        self._session = session
        self._server: Optional[asyncio.AbstractServer] = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def active_channels(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        """Bind the listener on an ephemeral loopback port."""
        self._server = await asyncio.start_server(self._handle_client, self.local_host, 0)
        self.local_port = self._server.sockets[0].getsockname()[1]
        log_tunnel_event(
            "open",
            local=f"{self.local_host}:{self.local_port}",
            target=f"{self.target_host}:{self.target_port}",
        )

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if self._closed:
            writer.close()
            return
        task = asyncio.current_task()
        self._tasks.add(task)
        try:
            await self._forward(reader, writer)
        finally:
            self._tasks.discard(task)

    async def _forward(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        origin = (peer[0], peer[1]) if peer else (self.local_host, 0)

        try:
            channel = await self._session.open_channel(self.target_host, self.target_port, origin)
        except TunnelError as e:
            log_tunnel_event("channel_open_failed", level=logging.WARNING, peer=origin, error=str(e))
            writer.close()
            return

        log_tunnel_event("channel_open", level=logging.DEBUG, peer=origin)
        upstream = asyncio.ensure_future(_pump_to_channel(reader, channel))
        downstream = asyncio.ensure_future(_pump_to_client(channel, writer))
        try:
            done, _ = await asyncio.wait({upstream, downstream}, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    log_tunnel_event(
                        "channel_error", level=logging.WARNING, peer=origin, error=str(task.exception())
                    )
        finally:
            for task in (upstream, downstream):
                task.cancel()
            await asyncio.gather(upstream, downstream, return_exceptions=True)
            channel.close()
            writer.close()
            log_tunnel_event("channel_closed", level=logging.DEBUG, peer=origin)

    async def close(self) -> None:
        """Stop listening, abandon in-flight channels and end the SSH session.

        Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True

        if self._server is not None:
            self._server.close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._server is not None:
            await self._server.wait_closed()

        await self._session.close()
        log_tunnel_event("close", local=f"{self.local_host}:{self.local_port}", abandoned_channels=len(tasks))


async def _pump_to_channel(reader: asyncio.StreamReader, channel: ChannelStream) -> None:
    while True:
        data = await reader.read(TUNNEL_BUFFER_SIZE)
        if not data:
            channel.shutdown_write()
            return
        await channel.write(data)


async def _pump_to_client(channel: ChannelStream, writer: asyncio.StreamWriter) -> None:
    while True:
        data = await channel.read()
        if not data:
            if writer.can_write_eof():
                writer.write_eof()
            return
        writer.write(data)
        await writer.drain()


async def open_tunnel(
    options: TunnelOptions,
    connect: Callable[[TunnelOptions], Awaitable[SSHSession]] = SSHSession.connect,
) -> Tunnel:
    """Validate options, connect to the bastion and start forwarding.

    Args:
        options: Bastion settings with the target endpoint filled in
        connect: Session factory (replaced in tests)

    Returns:
        Running Tunnel; point the database connection at its local endpoint

    Raises:
        ConfigurationError: If options are invalid
        TunnelError: If the bastion cannot be used
    """
    options.validate()
    if not options.target_host or options.target_port is None:
        raise ConfigurationError("Tunnel target host and port must be resolved before opening the tunnel")

    log_tunnel_event("connect", ssh=f"{options.ssh_user}@{options.ssh_host}:{options.ssh_port}")
    session = await connect(options)

    tunnel = Tunnel(session, options.target_host, options.target_port)
    try:
        await tunnel.start()
    except OSError as e:
        await session.close()
        raise TunnelError(f"Cannot bind local tunnel listener: {e}") from e
    return tunnel
