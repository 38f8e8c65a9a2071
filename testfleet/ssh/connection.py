"""SSH session to a single node: commands, uploads and port forwarding."""

import asyncio
import logging
import posixpath
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

import asyncssh

from testfleet.utils.errors import SSHConnectionError

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 30
DEFAULT_COMMAND_TIMEOUT = 60
DEFAULT_UPLOAD_TIMEOUT = 600


@dataclass
class CommandResult:
    """Result of SSH command execution."""

    stdout: str
    stderr: str
    exit_code: int  # -1 when the command died without an exit status

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class SSHSession:
    """One SSH connection to one node.

    The session must be closed exactly once; further close() calls do
    nothing. Forwarded ports stay open until the session is closed.

    Usage:
        async with SSHSession("pixel-rack", host, 22, "ci", "~/.ssh/id_ed25519") as ssh:
            home = await ssh.run_for_stdout("echo $HOME")
            port = await ssh.forward_local_port(9760, 9759)
    """

    def __init__(
        self,
        name: str,
        host: str,
        port: int,
        user: str,
        key_path: Union[str, Path],
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: int = DEFAULT_COMMAND_TIMEOUT,
        upload_timeout: int = DEFAULT_UPLOAD_TIMEOUT,
    ):
        """Initialize SSH session parameters.

        Args:
            name: Node name, attached to every error
            host: SSH hostname or IP
            port: SSH port
            user: SSH username
            key_path: Path to the private key file
            connect_timeout: Connection timeout in seconds
            command_timeout: Command execution timeout in seconds
            upload_timeout: Timeout for one upload batch in seconds
        """
        self.name = name
        self.host = host
        self.port = port
        self.user = user
        self.key_path = str(key_path)
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.upload_timeout = upload_timeout
        self._conn: Optional[asyncssh.SSHClientConnection] = None
        self._listeners: List[asyncssh.SSHListener] = []
        self._closed = False

    async def __aenter__(self) -> "SSHSession":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._conn is not None and not self._closed

    def _error(self, message: str, stage: str) -> SSHConnectionError:
        return SSHConnectionError(
            message,
            host=self.host,
            port=self.port,
            node=self.name,
            stage=stage,
        )

    def _require_conn(self, stage: str) -> asyncssh.SSHClientConnection:
        if not self.is_open:
            raise self._error("Not connected", stage)
        return self._conn

    async def connect(self) -> None:
        """Establish the SSH connection."""
        if self._closed:
            raise self._error("Session already closed", "connect")

        try:
            key = asyncssh.read_private_key(self.key_path)
        except (OSError, asyncssh.KeyImportError) as e:
            raise self._error(f"Failed to read private key {self.key_path}: {e}", "connect")

        try:
            self._conn = await asyncio.wait_for(
                asyncssh.connect(
                    self.host,
                    port=self.port,
                    username=self.user,
                    client_keys=[key],
                    known_hosts=None,
                ),
                timeout=self.connect_timeout,
            )
            logger.info(f"SSH connected to {self.user}@{self.host}:{self.port}")
        except asyncio.TimeoutError:
            raise self._error(
                f"SSH connection timeout ({self.connect_timeout}s)", "connect"
            )
        except (asyncssh.Error, OSError) as e:
            raise self._error(f"SSH connection failed: {e}", "connect")

    async def close(self) -> None:
        """Close forwarded ports and the connection."""
        if self._closed:
            return
        self._closed = True

        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener.close()

        if self._conn:
            conn, self._conn = self._conn, None
            conn.close()
            await conn.wait_closed()
            logger.info(f"SSH session to {self.name} closed")

    async def run(
        self,
        command: str,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        """Execute a command over SSH.

        Args:
            command: Command to execute
            timeout: Command timeout (default: self.command_timeout)

        Returns:
            CommandResult with stdout, stderr, exit_code
        """
        conn = self._require_conn("command")
        timeout = timeout or self.command_timeout

        try:
            result = await asyncio.wait_for(
                conn.run(command, check=False),
                timeout=timeout,
            )
            return CommandResult(
                stdout=result.stdout or "",
                stderr=result.stderr or "",
                exit_code=result.exit_status if result.exit_status is not None else -1,
            )
        except asyncio.TimeoutError:
            raise self._error(f"Command timeout ({timeout}s): {command[:50]}...", "command")
        except asyncssh.Error as e:
            raise self._error(f"Command failed: {e}", "command")

    async def run_checked(
        self,
        command: str,
        timeout: Optional[int] = None,
    ) -> str:
        """Execute a command and raise on non-zero exit.

        Returns:
            Command stdout

        Raises:
            SSHConnectionError: On non-zero exit code
        """
        result = await self.run(command, timeout)
        if not result.success:
            raise self._error(
                f"Command failed (exit {result.exit_code}): {result.stderr.strip()}",
                "command",
            )
        return result.stdout

    async def run_for_stdout(self, command: str) -> str:
        """Execute a command and return its trimmed stdout."""
        return (await self.run_checked(command)).strip()

    async def run_background(
        self,
        command: str,
        log_path: Optional[str] = None,
    ) -> None:
        """Start a detached process that outlives the command channel.

        Raises:
            SSHConnectionError: If the launching shell fails
        """
        target = shlex.quote(log_path) if log_path else "/dev/null"
        wrapped = f"nohup sh -c {shlex.quote(command)} > {target} 2>&1 < /dev/null &"
        result = await self.run(wrapped)
        if not result.success:
            raise self._error(
                f"Background command failed (exit {result.exit_code}): "
                f"{result.stderr.strip()}",
                "start",
            )
        logger.debug(f"Started background command on {self.name}: {command}")

    async def upload_files(self, files: Iterable[Tuple[Path, str]]) -> None:
        """Upload local files to remote paths, creating parent directories."""
        conn = self._require_conn("upload")
        files = list(files)

        async def _upload() -> None:
            async with conn.start_sftp_client() as sftp:
                for local, remote in files:
                    await sftp.makedirs(posixpath.dirname(remote), exist_ok=True)
                    logger.debug(f"Uploading {local} to {self.name}:{remote}")
                    await sftp.put(str(local), remote)

        try:
            await asyncio.wait_for(_upload(), timeout=self.upload_timeout)
        except asyncio.TimeoutError:
            raise self._error(f"Upload timeout ({self.upload_timeout}s)", "upload")
        except (asyncssh.Error, OSError) as e:
            raise self._error(f"Upload failed: {e}", "upload")

    async def upload_content(self, content: bytes, remote_path: str) -> None:
        """Write bytes to a remote file, creating parent directories."""
        conn = self._require_conn("upload")

        async def _upload() -> None:
            async with conn.start_sftp_client() as sftp:
                await sftp.makedirs(posixpath.dirname(remote_path), exist_ok=True)
                async with sftp.open(remote_path, "wb") as f:
                    await f.write(content)

        try:
            await asyncio.wait_for(_upload(), timeout=self.upload_timeout)
        except asyncio.TimeoutError:
            raise self._error(f"Upload timeout ({self.upload_timeout}s)", "upload")
        except (asyncssh.Error, OSError) as e:
            raise self._error(f"Upload of {remote_path} failed: {e}", "upload")

    async def forward_local_port(self, local_port: int, remote_port: int) -> int:
        """Tunnel 127.0.0.1:local_port to port remote_port on the node.

        Returns:
            The local port actually listening
        """
        conn = self._require_conn("forward")
        try:
            listener = await conn.forward_local_port(
                "127.0.0.1", local_port, "127.0.0.1", remote_port
            )
        except (asyncssh.Error, OSError) as e:
            raise self._error(
                f"Failed to forward local port {local_port} to {remote_port}: {e}",
                "forward",
            )
        self._listeners.append(listener)
        logger.info(
            f"Forwarding 127.0.0.1:{listener.get_port()} to {self.name}:{remote_port}"
        )
        return listener.get_port()
