"""
Data model for backup runs.

ConnectionTarget and BackupJob describe what to back up and from where,
RemoteArchiveHandle names the temporary archive on the remote host, and
BackupOutcome is the terminal result handed to whatever front end started
the run.
"""

import os
import posixpath
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sshbackup.config import Config
from sshbackup.errors import BackupError, ValidationError


class JobState(str, Enum):
    """States of a single backup run."""

    IDLE = 'idle'
    PREPARING = 'preparing'
    CONNECTING = 'connecting'
    ARCHIVING = 'archiving'
    DOWNLOADING = 'downloading'
    CLEANING_UP = 'cleaning_up'
    DONE = 'done'
    FAILED = 'failed'


@dataclass
class ConnectionTarget:
    """Remote host and credentials for one SSH session."""

    host: str
    username: str
    port: int = 22
    password: Optional[str] = None
    key_filename: Optional[str] = None

    def validate(self):
        """
        Check that every field needed to open a session is present.

        Raises:
            ValidationError: If host, port, username or credential is missing
        """
        if not self.host:
            raise ValidationError("Remote host is required")
        if not self.username:
            raise ValidationError("Username is required")
        if not isinstance(self.port, int) or not 0 < self.port < 65536:
            raise ValidationError(f"Invalid remote port: {self.port!r}")
        if not self.password and not self.key_filename:
            raise ValidationError("Either password or key_filename must be provided")

    def __repr__(self):
        # Never leak the password into logs
        return (
            f'ConnectionTarget(host={self.host!r}, port={self.port!r}, '
            f'username={self.username!r}, key_filename={self.key_filename!r})'
        )


@dataclass
class BackupJob:
    """One request to back up a remote directory under a given name."""

    remote_source_dir: str
    backup_name: str
    local_destination_dir: str
    archive_extension: str = 'tar.gz'

    def validate(self):
        """
        Check the job fields.

        Raises:
            ValidationError: If a field is empty or the name is not a plain file name
        """
        if not self.remote_source_dir:
            raise ValidationError("Remote directory is required")
        if not self.backup_name:
            raise ValidationError("Backup name is required")
        if '/' in self.backup_name or self.backup_name in ('.', '..'):
            raise ValidationError(f"Invalid backup name: {self.backup_name!r}")
        if not self.local_destination_dir:
            raise ValidationError("Local backup directory is required")

    @property
    def archive_filename(self) -> str:
        return f"{self.backup_name}.{self.archive_extension}"

    @property
    def local_archive_path(self) -> str:
        return os.path.join(self.local_destination_dir, self.archive_filename)

    def remote_archive_path(self, remote_tmp_dir: str = '/tmp') -> str:
        return posixpath.join(remote_tmp_dir, self.archive_filename)


@dataclass(frozen=True)
class RemoteArchiveHandle:
    """Path of the archive created on the remote host."""

    path: str


@dataclass
class BackupOutcome:
    """Terminal result of a backup run."""

    job_name: str
    success: bool
    state: JobState
    started_at: datetime
    completed_at: datetime
    failed_state: Optional[JobState] = None
    error_kind: Optional[str] = None
    message: str = ''
    cause: Optional[BaseException] = None
    error: Optional[BackupError] = None
    local_path: Optional[str] = None
    bytes_transferred: int = 0
    logs: List[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """
        Serializable view for front ends and log sinks.

        command, exit_status and stderr are filled in when the failure came
        from a remote command.
        """
        return {
            'job_name': self.job_name,
            'success': self.success,
            'state': self.state.value,
            'failed_state': self.failed_state.value if self.failed_state else None,
            'error_kind': self.error_kind,
            'message': self.message,
            'cause': repr(self.cause) if self.cause is not None else None,
            'command': getattr(self.error, 'command', None),
            'exit_status': getattr(self.error, 'exit_status', None),
            'stderr': getattr(self.error, 'stderr', None) or None,
            'local_path': self.local_path,
            'bytes_transferred': self.bytes_transferred,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat(),
            'duration_seconds': self.duration_seconds,
        }


_TRUTHY = ('1', 'true', 'yes', 'on')


def _setting(settings: Mapping[str, Any], key: str) -> str:
    value = settings.get(key)
    if value is None:
        return ''
    return str(value).strip()


def build_from_settings(settings: Mapping[str, Any], cfg=Config, cipher=None,
                        today: datetime = None) -> Tuple[ConnectionTarget, BackupJob]:
    """
    Build a ConnectionTarget and BackupJob from a settings mapping.

    Expected keys: remote_ip, remote_port, remote_dir, username, password,
    local_dir, backup_name. Optional keys: key_filename, password_encrypted,
    date_suffix.

    Blank port, username and local_dir fall back to the configured defaults.
    Other blank values are kept so the executor reports them during
    validation.

    Args:
        settings: Inbound settings mapping
        cfg: Configuration class supplying defaults
        cipher: CredentialCipher used to decrypt password_encrypted
        today: Date used for the date suffix (defaults to now)

    Returns:
        Tuple of (ConnectionTarget, BackupJob)

    Raises:
        ValidationError: If the port is not a number or the password cannot be decrypted
    """
    port_text = _setting(settings, 'remote_port')
    if port_text:
        try:
            port = int(port_text)
        except ValueError as e:
            raise ValidationError(f"Invalid remote port: {port_text!r}", cause=e) from e
    else:
        port = cfg.DEFAULT_PORT

    password = _setting(settings, 'password') or None
    encrypted = _setting(settings, 'password_encrypted')
    if encrypted and not password:
        if cipher is None:
            raise ValidationError("Encrypted password given but no master passphrase configured")
        password = cipher.decrypt(encrypted)

    target = ConnectionTarget(
        host=_setting(settings, 'remote_ip'),
        username=_setting(settings, 'username') or cfg.DEFAULT_USERNAME,
        port=port,
        password=password,
        key_filename=_setting(settings, 'key_filename') or None,
    )

    backup_name = _setting(settings, 'backup_name')
    if backup_name and _setting(settings, 'date_suffix').lower() in _TRUTHY:
        today = today or datetime.now()
        backup_name = f"{backup_name}-{today.strftime('%d-%m-%Y')}"

    local_dir = _setting(settings, 'local_dir') or cfg.LOCAL_BACKUP_DIR

    job = BackupJob(
        remote_source_dir=_setting(settings, 'remote_dir'),
        backup_name=backup_name,
        local_destination_dir=os.path.expanduser(local_dir),
        archive_extension=cfg.ARCHIVE_EXTENSION,
    )
    return target, job
