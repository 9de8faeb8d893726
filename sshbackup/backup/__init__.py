"""
Backup module for sshbackup.

This module handles the remote backup sequence:
- SSH session management
- Remote archive creation
- Streaming download
- Remote cleanup
- Execution orchestration
"""

from .session import SSHSession, open_session
from .archiver import archive
from .downloader import download
from .cleanup import remove
from .executor import BackupExecutor, run_backup, cancellation_from_event

__all__ = [
    'SSHSession',
    'open_session',
    'archive',
    'download',
    'remove',
    'BackupExecutor',
    'run_backup',
    'cancellation_from_event'
]
