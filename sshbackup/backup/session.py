"""
SSH transport session.

Wraps a single authenticated paramiko connection. Every remote command runs
on its own short-lived channel opened from the session's transport, and the
session itself is closed by whoever opened it.
"""

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

import paramiko
from paramiko import SSHClient, AutoAddPolicy, RejectPolicy, WarningPolicy

from sshbackup.config import Config, HOST_KEY_POLICIES
from sshbackup.errors import SSHConnectionError, ValidationError
from sshbackup.models import ConnectionTarget


logger = logging.getLogger(__name__)


READ_SIZE = 32768
POLL_INTERVAL = 0.05


def _collect_output(channel):
    """Read stdout and stderr of a running command until it exits."""
    stdout = []
    stderr = []
    while True:
        received = False
        if channel.recv_ready():
            stdout.append(channel.recv(READ_SIZE))
            received = True
        if channel.recv_stderr_ready():
            stderr.append(channel.recv_stderr(READ_SIZE))
            received = True
        if received:
            continue
        if channel.exit_status_ready():
            break
        time.sleep(POLL_INTERVAL)

    # Output sent before the exit status may still be buffered
    while channel.recv_ready():
        stdout.append(channel.recv(READ_SIZE))
    while channel.recv_stderr_ready():
        stderr.append(channel.recv_stderr(READ_SIZE))

    return b''.join(stdout), b''.join(stderr)


@dataclass
class CommandResult:
    """Result of a remote command run to completion."""

    command: str
    exit_status: int
    stdout: bytes
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class SSHSession:
    """
    One authenticated connection to a remote host.

    Channels are opened on demand and must be closed by the caller right
    after their single command. The session must be closed on every exit
    path; close() is idempotent and the session works as a context manager.
    """

    def __init__(self, client: SSHClient, target: ConnectionTarget):
        self._client = client
        self.target = target
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def open_channel(self) -> paramiko.Channel:
        """
        Open a new command channel on the session transport.

        Raises:
            paramiko.SSHException: If the session is closed or the channel is refused
        """
        if self._closed:
            raise paramiko.SSHException("SSH session is closed")

        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise paramiko.SSHException("SSH transport is not active")

        return transport.open_session()

    def run(self, command: str) -> CommandResult:
        """
        Run a command on a fresh channel and wait for it to exit.

        Output is kept in memory, so this is only meant for commands with
        small output (tar writing to a file, rm). Use open_channel() for
        streams. stdout and stderr are drained together so a command that
        writes a lot of warnings cannot stall on a full channel window.

        Raises:
            paramiko.SSHException: If the channel cannot be opened
            OSError: If the channel breaks while reading
        """
        channel = self.open_channel()
        try:
            channel.exec_command(command)
            stdout, stderr = _collect_output(channel)
            exit_status = channel.recv_exit_status()
        finally:
            channel.close()

        return CommandResult(
            command=command,
            exit_status=exit_status,
            stdout=stdout,
            stderr=stderr.decode('utf-8', errors='replace').strip(),
        )

    def close(self):
        """Close the underlying connection."""
        if self._closed:
            return
        self._closed = True
        try:
            self._client.close()
        except Exception as e:
            logger.warning(f"Error while closing SSH session to {self.target.host}: {e}")
        logger.debug(f"SSH session to {self.target.host} closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False


def _apply_host_key_policy(client: SSHClient, cfg):
    """
    Configure host key verification on a client.

    - tofu: keys are pinned to KNOWN_HOSTS_FILE on first connect, changed keys are rejected
    - strict: only keys already pinned or in the system known_hosts are accepted
    - insecure: any key is accepted and nothing is recorded
    """
    policy = cfg.HOST_KEY_POLICY
    known_hosts = Path(cfg.KNOWN_HOSTS_FILE).expanduser()

    if policy == 'tofu':
        known_hosts.parent.mkdir(parents=True, exist_ok=True)
        if not known_hosts.exists():
            known_hosts.touch(mode=0o600)
        # AutoAddPolicy saves new keys back to the loaded file
        client.load_host_keys(str(known_hosts))
        client.set_missing_host_key_policy(AutoAddPolicy())
    elif policy == 'strict':
        client.load_system_host_keys()
        if known_hosts.exists():
            client.load_host_keys(str(known_hosts))
        client.set_missing_host_key_policy(RejectPolicy())
    elif policy == 'insecure':
        logger.warning("Host key verification is disabled (HOST_KEY_POLICY=insecure)")
        client.set_missing_host_key_policy(WarningPolicy())
    else:
        raise ValidationError(
            f"Invalid host key policy: {policy}. Valid options: {list(HOST_KEY_POLICIES)}"
        )


def open_session(target: ConnectionTarget, cfg=Config) -> SSHSession:
    """
    Connect and authenticate to the remote host.

    Args:
        target: Host, port and credentials
        cfg: Configuration class (host key policy, connect timeout)

    Returns:
        Open SSHSession owned by the caller

    Raises:
        SSHConnectionError: If the host cannot be reached, rejects the
            credentials or presents an untrusted host key
        ValidationError: If cfg.HOST_KEY_POLICY is not a known policy
    """
    address = f"{target.username}@{target.host}:{target.port}"
    client = SSHClient()

    try:
        _apply_host_key_policy(client, cfg)
    except ValidationError:
        client.close()
        raise
    except OSError as e:
        client.close()
        raise SSHConnectionError(f"Failed to prepare known hosts file: {e}", cause=e) from e

    connect_kwargs = {
        'hostname': target.host,
        'port': target.port,
        'username': target.username,
        'timeout': cfg.CONNECT_TIMEOUT,
        'look_for_keys': False,
        'allow_agent': False,
    }

    if target.password:
        connect_kwargs['password'] = target.password
    if target.key_filename:
        key_path = os.path.expanduser(target.key_filename)
        if not os.path.exists(key_path):
            client.close()
            raise SSHConnectionError(f"Private key not found: {target.key_filename}")
        connect_kwargs['key_filename'] = key_path

    logger.info(f"Connecting to {address}")

    try:
        client.connect(**connect_kwargs)
    except paramiko.AuthenticationException as e:
        client.close()
        raise SSHConnectionError(f"SSH authentication failed for {address}: {e}", cause=e) from e
    except paramiko.BadHostKeyException as e:
        client.close()
        raise SSHConnectionError(f"Host key for {target.host} does not match the pinned key: {e}", cause=e) from e
    except paramiko.SSHException as e:
        client.close()
        raise SSHConnectionError(f"SSH connection to {address} failed: {e}", cause=e) from e
    except OSError as e:
        client.close()
        raise SSHConnectionError(f"Failed to connect to {address}: {e}", cause=e) from e

    logger.info(f"Connected to {address}")
    return SSHSession(client, target)
