"""
Backup executor - orchestrates the complete backup workflow.

Workflow (one JobState per step):
1. preparing:   validate target and job, create the local backup directory
2. connecting:  open the SSH session
3. archiving:   tar the remote directory into <tmp>/<name>.tar.gz
4. downloading: stream the archive to <local_dir>/<name>.tar.gz
5. cleaning_up: remove the remote archive
6. done

Any step failure moves the run to 'failed' and skips the remaining steps.
The SSH session is closed exactly once whatever state the run ends in.
A failed download leaves the remote archive in place, and a failed cleanup
fails the run even though the local copy is complete.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from sshbackup.config import Config, validate_config
from sshbackup.errors import BackupError, BackupCancelled, LocalIOError, ValidationError
from sshbackup.models import (
    BackupJob,
    BackupOutcome,
    ConnectionTarget,
    JobState,
    build_from_settings,
)
from .archiver import archive
from .cleanup import remove
from .downloader import download
from .session import open_session


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cancellation_from_event(event) -> Callable[[], None]:
    """
    Build a cancellation check from a threading.Event-like object.

    The returned function raises BackupCancelled once the event is set.
    """
    def check():
        if event.is_set():
            raise BackupCancelled("Backup cancelled by user")
    return check


class BackupExecutor:
    """
    Runs one backup job against one remote target.

    An executor runs exactly once; create a new one for every run.
    """

    def __init__(
        self,
        target: ConnectionTarget,
        job: BackupJob,
        cfg=Config,
        session_opener=open_session,
        cancellation_check: Optional[Callable[[], None]] = None
    ):
        """
        Initialize backup executor.

        Args:
            target: Remote host and credentials
            job: What to back up and where to put it
            cfg: Configuration class
            session_opener: Callable(target, cfg) returning an SSHSession
            cancellation_check: Optional function raising BackupCancelled to abort
        """
        self.target = target
        self.job = job
        self.cfg = cfg
        self.session_opener = session_opener
        self.cancellation_check = cancellation_check

        self.state = JobState.IDLE
        self.session = None
        self.archive_handle = None
        self.local_path = None
        self.bytes_transferred = 0
        self.logs = []

    def execute(self) -> BackupOutcome:
        """
        Execute the backup job.

        Returns:
            BackupOutcome describing success or the failure kind and cause

        Raises:
            RuntimeError: If this executor has already run
        """
        if self.state != JobState.IDLE:
            raise RuntimeError("BackupExecutor can only execute once")

        started_at = _utcnow()
        self._log(f"Starting backup job: {self.job.backup_name}")

        error = None
        failed_state = None

        try:
            self._execute_workflow()
        except BackupError as e:
            error = e
            failed_state = self.state
        except Exception as e:
            self._log(f"Backup aborted by unexpected error in state {self.state.value}: {e!r}", logging.ERROR)
            self.state = JobState.FAILED
            raise
        finally:
            self._close_session()

        if error is None:
            self._transition(JobState.DONE)
            self._log(f"Backup completed successfully: {self.local_path} ({self.bytes_transferred} bytes)")
        else:
            self.state = JobState.FAILED
            self._log(f"Backup failed while {failed_state.value} ({error.kind}): {error.message}", logging.ERROR)

        return BackupOutcome(
            job_name=self.job.backup_name,
            success=error is None,
            state=self.state,
            failed_state=failed_state,
            error_kind=error.kind if error else None,
            message=error.message if error else 'Backup completed successfully',
            cause=_cause_of(error),
            error=error,
            local_path=self.local_path,
            bytes_transferred=self.bytes_transferred,
            started_at=started_at,
            completed_at=_utcnow(),
            logs=list(self.logs),
        )

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        # Step 1: Validate and prepare local directory
        self._transition(JobState.PREPARING)
        self._prepare()

        # Step 2: Connect
        self._check_cancelled()
        self._transition(JobState.CONNECTING)
        self._log(f"Connecting to {self.target.username}@{self.target.host}:{self.target.port}")
        self.session = self.session_opener(self.target, self.cfg)

        # Step 3: Archive on the remote host
        self._check_cancelled()
        self._transition(JobState.ARCHIVING)
        self._log(f"Archiving remote directory {self.job.remote_source_dir}")
        self.archive_handle = archive(self.session, self.job, self.cfg)
        self._log(f"Remote archive created: {self.archive_handle.path}")

        # Step 4: Download
        self._check_cancelled()
        self._transition(JobState.DOWNLOADING)
        local_path = self.job.local_archive_path
        self._log(f"Downloading {self.archive_handle.path} to {local_path}")
        self.bytes_transferred = download(
            self.session,
            self.archive_handle.path,
            local_path,
            chunk_size=self.cfg.DOWNLOAD_CHUNK_SIZE,
            cancellation_check=self.cancellation_check
        )
        self.local_path = local_path
        self._log(f"Downloaded {self.bytes_transferred / 1024 / 1024:.2f} MB")

        # Step 5: Remove the remote archive
        self._transition(JobState.CLEANING_UP)
        self._log(f"Removing remote archive {self.archive_handle.path}")
        remove(self.session, self.archive_handle.path)

    def _prepare(self):
        """
        Validate inputs and make sure the local directory exists.

        Raises:
            ValidationError: If target or job fields are missing or the
                configuration is unusable
            LocalIOError: If the local directory cannot be created
        """
        validate_config(self.cfg)
        self.target.validate()
        self.job.validate()

        local_dir = self.job.local_destination_dir
        try:
            os.makedirs(local_dir, exist_ok=True)
        except OSError as e:
            raise LocalIOError(f"Failed to create local backup directory {local_dir}: {e}", cause=e) from e

    def _check_cancelled(self):
        if self.cancellation_check:
            self.cancellation_check()

    def _transition(self, new_state: JobState):
        logger.debug(f"{self.job.backup_name}: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _close_session(self):
        """Release the SSH session, if one was opened."""
        if self.session is not None:
            self.session.close()
            self._log("SSH session closed")
            self.session = None

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Level used for the module logger
        """
        timestamp = _utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def _cause_of(error: Optional[BackupError]) -> Optional[BaseException]:
    """Underlying exception of a failure, or the failure itself when it originated here."""
    if error is None:
        return None
    return error.cause if error.cause is not None else error


def _failed_outcome(job_name: str, error: BackupError) -> BackupOutcome:
    now = _utcnow()
    timestamp = now.strftime('%Y-%m-%d %H:%M:%S UTC')
    return BackupOutcome(
        job_name=job_name,
        success=False,
        state=JobState.FAILED,
        failed_state=JobState.PREPARING,
        error_kind=error.kind,
        message=error.message,
        cause=_cause_of(error),
        error=error,
        started_at=now,
        completed_at=now,
        logs=[f"[{timestamp}] Invalid backup settings: {error.message}"],
    )


def run_backup(
    settings: Mapping[str, Any],
    cfg=Config,
    cipher=None,
    history=None,
    session_opener=open_session,
    cancellation_check: Optional[Callable[[], None]] = None
) -> BackupOutcome:
    """
    Execute a backup described by a settings mapping.

    Args:
        settings: Mapping with remote_ip, remote_port, remote_dir, username,
            password, local_dir and backup_name
        cfg: Configuration class
        cipher: CredentialCipher for password_encrypted settings
        history: Optional HistoryStore the outcome is recorded in
        session_opener: Callable(target, cfg) returning an SSHSession
        cancellation_check: Optional function raising BackupCancelled to abort

    Returns:
        BackupOutcome of the run
    """
    try:
        target, job = build_from_settings(settings, cfg, cipher)
    except ValidationError as e:
        logger.error(f"Invalid backup settings: {e.message}")
        outcome = _failed_outcome(str(settings.get('backup_name') or ''), e)
    else:
        executor = BackupExecutor(
            target,
            job,
            cfg=cfg,
            session_opener=session_opener,
            cancellation_check=cancellation_check
        )
        outcome = executor.execute()

    if history is not None:
        history.record(outcome)

    return outcome
