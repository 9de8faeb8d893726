"""
Remote archive creation.
"""

import logging

import paramiko

from sshbackup.config import Config
from sshbackup.errors import RemoteCommandError
from sshbackup.models import BackupJob, RemoteArchiveHandle
from .commands import archive_command
from .session import SSHSession


logger = logging.getLogger(__name__)


def archive(session: SSHSession, job: BackupJob, cfg=Config) -> RemoteArchiveHandle:
    """
    Compress the job's remote directory into a temporary tarball.

    Runs a single tar command on its own channel and waits for it to exit.
    The archive contents are not verified.

    Args:
        session: Open SSH session
        job: Backup job (remote_source_dir and backup_name are used)
        cfg: Configuration class supplying REMOTE_TMP_DIR

    Returns:
        Handle to the archive on the remote host

    Raises:
        RemoteCommandError: If the channel cannot be opened or tar exits non-zero
    """
    remote_path = job.remote_archive_path(cfg.REMOTE_TMP_DIR)
    command = archive_command(remote_path, job.remote_source_dir)

    logger.info(f"Creating remote archive: {command}")

    try:
        result = session.run(command)
    except (paramiko.SSHException, OSError) as e:
        raise RemoteCommandError(
            f"Failed to run remote archive command: {e}",
            command=command,
            cause=e
        ) from e

    if not result.ok:
        detail = f": {result.stderr}" if result.stderr else ''
        raise RemoteCommandError(
            f"Remote archive command exited with status {result.exit_status}{detail}",
            command=command,
            exit_status=result.exit_status,
            stderr=result.stderr
        )

    logger.info(f"Remote archive created: {remote_path}")
    return RemoteArchiveHandle(remote_path)
