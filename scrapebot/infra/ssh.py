"""SSH access to launched EC2 instances (paramiko).

Usage:
    with SshSession(host, "ubuntu", key_file).connect(attempts=5) as ssh:
        status, stdout, stderr = ssh.exec("sudo apt-get update")
        ssh.upload(config_text.encode("utf-8"), "ScrapeBot/config.ini")

Freshly booted instances refuse connections for a while, so ``connect``
retries with a fixed backoff. Remote paths are relative to the login user's
home directory.
"""

from __future__ import annotations

import io
import time
from pathlib import Path
from typing import Any, Optional, Union

import paramiko
import structlog

from scrapebot.config import constants
from scrapebot.domain.exceptions import InfrastructureError

DEFAULT_CONNECT_TIMEOUT_SECONDS: float = 30.0
READ_CHUNK_BYTES: int = 32768
READ_POLL_SECONDS: float = 0.1


class SshSession:
    """One SSH connection, authenticated with a private key file."""

    def __init__(
        self,
        host: str,
        username: str,
        key_file: Union[str, Path],
        *,
        port: int = 22,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    ) -> None:
        self.host = host
        self.username = username
        self.key_file = Path(key_file)
        self.port = port
        self.connect_timeout = connect_timeout
        self._client: Optional[paramiko.SSHClient] = None
        self._log = structlog.get_logger(__name__).bind(
            service=constants.SERVICE_NAME,
            host=host,
            username=username,
        )

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def connect(self, attempts: int = 1, backoff: float = 0.0) -> SshSession:
        """Open the connection, trying up to ``attempts`` times.

        Args:
            attempts: Maximum number of connection attempts.
            backoff:  Seconds to wait after a failed attempt.

        Returns:
            self, for chaining into a ``with`` block.

        Raises:
            InfrastructureError: Every attempt failed.
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            client = paramiko.SSHClient()
            # Instances are brand new; there is no known host key to check.
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            try:
                client.connect(
                    hostname=self.host,
                    port=self.port,
                    username=self.username,
                    key_filename=str(self.key_file),
                    timeout=self.connect_timeout,
                    allow_agent=False,
                    look_for_keys=False,
                )
            except (paramiko.SSHException, OSError) as exc:
                client.close()
                last_error = exc
                self._log.info(
                    "ssh.connect.retrying",
                    attempt=attempt,
                    attempts=attempts,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                if attempt < attempts and backoff > 0:
                    time.sleep(backoff)
                continue

            self._client = client
            self._log.info("ssh.connected", attempt=attempt)
            return self

        raise InfrastructureError(
            f"SSH connection to {self.username}@{self.host} failed after {attempts} attempts: {last_error}"
        )

    def _require_client(self) -> paramiko.SSHClient:
        if self._client is None:
            raise InfrastructureError(f"SSH session to {self.host} is not connected.")
        return self._client

    def exec(self, command: str) -> tuple[int, str, str]:
        """Run ``command`` and wait for it to finish.

        stdout and stderr are drained side by side while the command runs, so
        a command that fills one stream never blocks on the other.

        Returns:
            (exit status, stdout, stderr). A non-zero exit status is returned,
            not raised; the caller decides whether it is fatal.

        Raises:
            paramiko.SSHException: The channel broke down.
        """
        _, stdout, _ = self._require_client().exec_command(command)
        channel = stdout.channel
        out = bytearray()
        err = bytearray()
        while True:
            received = False
            if channel.recv_ready():
                out += channel.recv(READ_CHUNK_BYTES)
                received = True
            if channel.recv_stderr_ready():
                err += channel.recv_stderr(READ_CHUNK_BYTES)
                received = True
            if received:
                continue
            # The exit status arrives after all output, so nothing is left to read.
            if channel.exit_status_ready():
                break
            time.sleep(READ_POLL_SECONDS)

        status = channel.recv_exit_status()
        self._log.debug("ssh.exec.completed", command=command, exit_status=status)
        return status, out.decode("utf-8", errors="replace"), err.decode("utf-8", errors="replace")

    def upload(self, data: bytes, remote_path: str) -> None:
        """Write ``data`` to ``remote_path`` over SFTP.

        Raises:
            paramiko.SSHException, OSError: The transfer failed.
        """
        with self._require_client().open_sftp() as sftp:
            sftp.putfo(io.BytesIO(data), remote_path)
        self._log.debug("ssh.upload.completed", remote_path=remote_path, bytes=len(data))

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> SshSession:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
