"""
Streaming download of the remote archive.

The archive is read with `cat` on a dedicated channel and copied to the
local file in fixed-size chunks, so memory use does not depend on the
archive size. A transfer only counts as complete once the local copy has
finished and the remote command has exited with status 0.

A partially written local file is left on disk when the transfer fails.
"""

import logging
from typing import Callable, Optional

import paramiko

from sshbackup.config import Config
from sshbackup.errors import TransferError
from .commands import read_command
from .session import SSHSession


logger = logging.getLogger(__name__)


def _read_stderr(channel) -> str:
    try:
        data = channel.makefile_stderr('rb').read()
    except (paramiko.SSHException, OSError):
        return ''
    return data.decode('utf-8', errors='replace').strip()


def _copy_stream(stream, local_file, chunk_size: int,
                 cancellation_check: Optional[Callable[[], None]]) -> int:
    copied = 0
    while True:
        # Raises BackupCancelled to abort between chunks
        if cancellation_check:
            cancellation_check()

        data = stream.read(chunk_size)
        if not data:
            break
        local_file.write(data)
        copied += len(data)
    return copied


def download(
    session: SSHSession,
    remote_path: str,
    local_path: str,
    chunk_size: int = Config.DOWNLOAD_CHUNK_SIZE,
    cancellation_check: Optional[Callable[[], None]] = None
) -> int:
    """
    Copy a remote file to a new local file.

    Args:
        session: Open SSH session
        remote_path: Path of the archive on the remote host
        local_path: Local file to create (truncated if it exists)
        chunk_size: Bytes read per iteration
        cancellation_check: Optional function called between chunks; it
            aborts the transfer by raising BackupCancelled

    Returns:
        Number of bytes written to local_path

    Raises:
        TransferError: If chunk_size is not positive, the channel cannot be
            opened, the local file cannot be created, the stream breaks, or
            the remote command fails
        BackupCancelled: If cancellation_check requested an abort
    """
    # read(0) returns b'' and read(-1) buffers the whole stream
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
        raise TransferError(f"Invalid download chunk size: {chunk_size!r}")

    command = read_command(remote_path)

    try:
        channel = session.open_channel()
    except (paramiko.SSHException, OSError) as e:
        raise TransferError(f"Failed to open download channel: {e}", cause=e) from e

    try:
        try:
            stream = channel.makefile('rb')
            channel.exec_command(command)
        except (paramiko.SSHException, OSError) as e:
            raise TransferError(f"Failed to start remote command '{command}': {e}", cause=e) from e

        logger.info(f"Downloading {remote_path} to {local_path}")

        try:
            local_file = open(local_path, 'wb')
        except OSError as e:
            raise TransferError(f"Failed to create local file {local_path}: {e}", cause=e) from e

        try:
            with local_file:
                bytes_written = _copy_stream(stream, local_file, chunk_size, cancellation_check)
        except (paramiko.SSHException, OSError) as e:
            raise TransferError(f"Download of {remote_path} interrupted: {e}", cause=e) from e

        try:
            exit_status = channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            raise TransferError(f"Lost connection waiting for '{command}' to exit: {e}", cause=e) from e

        if exit_status != 0:
            stderr = _read_stderr(channel)
            detail = f": {stderr}" if stderr else ''
            raise TransferError(
                f"Remote command '{command}' exited with status {exit_status}{detail}"
            )
    finally:
        channel.close()

    logger.info(f"Downloaded {bytes_written} bytes to {local_path}")
    return bytes_written
