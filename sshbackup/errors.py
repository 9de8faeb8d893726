"""
Error taxonomy for backup runs.

Every step of a backup raises one of these. The executor turns them into a
failed BackupOutcome, so front ends only ever see:

- kind: short machine-readable category ('validation', 'connection', ...)
- message: human-readable description
- cause: the underlying exception, if any
"""


class BackupError(Exception):
    """Base exception for all backup failures."""

    kind = 'backup'

    def __init__(self, message: str, cause: Exception = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class ValidationError(BackupError):
    """Raised when connection or job fields are missing or malformed."""

    kind = 'validation'


class LocalIOError(BackupError):
    """Raised when the local backup directory cannot be created."""

    kind = 'local_io'


class SSHConnectionError(BackupError):
    """Raised when the SSH connection cannot be established or authenticated."""

    kind = 'connection'


class RemoteCommandError(BackupError):
    """
    Raised when a remote command fails or cannot be started.

    Attributes:
        command: The command line sent to the remote shell
        exit_status: Remote exit status (None if the command never ran)
        stderr: Decoded remote standard error, if any was captured
    """

    kind = 'remote_command'

    def __init__(self, message: str, command: str, exit_status: int = None,
                 stderr: str = '', cause: Exception = None):
        self.command = command
        self.exit_status = exit_status
        self.stderr = stderr
        super().__init__(message, cause)


class TransferError(BackupError):
    """Raised when streaming the remote archive to the local file fails."""

    kind = 'transfer'


class BackupCancelled(BackupError):
    """Raised by a cancellation check to abort a running backup."""

    kind = 'cancelled'

    def __init__(self, message: str = 'Backup cancelled', cause: Exception = None):
        super().__init__(message, cause)
