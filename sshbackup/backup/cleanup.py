"""
Removal of the temporary remote archive.
"""

import logging

import paramiko

from sshbackup.errors import RemoteCommandError
from .commands import remove_command
from .session import SSHSession


logger = logging.getLogger(__name__)


def remove(session: SSHSession, remote_path: str):
    """
    Delete the remote archive.

    A failure is reported but never retried; the remote file is left in
    place.

    Raises:
        RemoteCommandError: If the channel cannot be opened or rm exits non-zero
    """
    command = remove_command(remote_path)
    logger.info(f"Removing remote archive: {command}")

    try:
        result = session.run(command)
    except (paramiko.SSHException, OSError) as e:
        raise RemoteCommandError(
            f"Failed to run remote cleanup command: {e}",
            command=command,
            cause=e
        ) from e

    if not result.ok:
        detail = f": {result.stderr}" if result.stderr else ''
        raise RemoteCommandError(
            f"Failed to remove remote archive {remote_path} (exit status {result.exit_status}){detail}",
            command=command,
            exit_status=result.exit_status,
            stderr=result.stderr
        )
