"""
Unit tests for remote command construction (sshbackup/backup/commands.py).
"""

import shlex

from sshbackup.backup.commands import (
    archive_command,
    read_command,
    remove_command,
)
from sshbackup.models import BackupJob


def test_literal_command_shapes():
    job = BackupJob('/srv/data', 'nightly', '/home/u/backup')
    path = job.remote_archive_path()

    assert path == '/tmp/nightly.tar.gz'
    assert archive_command(path, job.remote_source_dir) == 'tar -czf /tmp/nightly.tar.gz -C /srv/data .'
    assert read_command(path) == 'cat /tmp/nightly.tar.gz'
    assert remove_command(path) == 'rm /tmp/nightly.tar.gz'


def test_metacharacters_stay_single_arguments():
    path = "/tmp/my backup; rm -rf ~.tar.gz"
    source = "/srv/$(whoami)/data's"

    assert shlex.split(archive_command(path, source)) == ['tar', '-czf', path, '-C', source, '.']
    assert shlex.split(read_command(path)) == ['cat', path]
    assert shlex.split(remove_command(path)) == ['rm', path]
