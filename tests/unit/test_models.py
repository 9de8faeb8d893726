"""
Unit tests for the data model (sshbackup/models.py).

Tests validation, derived paths, outcomes and settings mapping.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

from sshbackup.errors import RemoteCommandError, ValidationError
from sshbackup.models import (
    BackupJob,
    BackupOutcome,
    ConnectionTarget,
    JobState,
    build_from_settings,
)
from sshbackup.utils.crypto import CredentialCipher


class TestConnectionTarget:
    """Test ConnectionTarget validation."""

    def test_valid_target_with_password(self, target):
        target.validate()

    def test_valid_target_with_key_only(self):
        ConnectionTarget(host='h', username='u', key_filename='~/.ssh/id_rsa').validate()

    @pytest.mark.parametrize('field,value,message', [
        ('host', '', 'host'),
        ('username', '', 'Username'),
        ('port', 0, 'port'),
        ('port', 70000, 'port'),
    ])
    def test_missing_fields_rejected(self, target, field, value, message):
        setattr(target, field, value)
        with pytest.raises(ValidationError, match=message):
            target.validate()

    def test_missing_credential_rejected(self):
        target = ConnectionTarget(host='h', username='u')
        with pytest.raises(ValidationError, match='password or key_filename'):
            target.validate()

    def test_repr_hides_password(self, target):
        assert 'secret' not in repr(target)
        assert '10.0.0.5' in repr(target)


class TestBackupJob:
    """Test BackupJob validation and derived paths."""

    def test_local_archive_path(self):
        job = BackupJob('/srv/data', 'nightly', '/home/u/backup')
        assert job.local_archive_path == os.path.join('/home/u/backup', 'nightly.tar.gz')

    def test_remote_archive_path(self):
        job = BackupJob('/srv/data', 'nightly', '/home/u/backup')
        assert job.remote_archive_path() == '/tmp/nightly.tar.gz'
        assert job.remote_archive_path('/var/tmp') == '/var/tmp/nightly.tar.gz'

    @pytest.mark.parametrize('kwargs', [
        {'remote_source_dir': ''},
        {'backup_name': ''},
        {'backup_name': '../escape'},
        {'backup_name': '..'},
        {'local_destination_dir': ''},
    ])
    def test_invalid_jobs_rejected(self, kwargs):
        fields = {
            'remote_source_dir': '/srv/data',
            'backup_name': 'nightly',
            'local_destination_dir': '/home/u/backup',
        }
        fields.update(kwargs)
        with pytest.raises(ValidationError):
            BackupJob(**fields).validate()


class TestBackupOutcome:
    """Test BackupOutcome reporting helpers."""

    def test_duration_and_dict(self):
        started = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
        outcome = BackupOutcome(
            job_name='nightly',
            success=False,
            state=JobState.FAILED,
            failed_state=JobState.ARCHIVING,
            error_kind='remote_command',
            message='tar failed',
            cause=OSError('boom'),
            started_at=started,
            completed_at=started + timedelta(seconds=3),
        )

        data = outcome.to_dict()

        assert outcome.duration_seconds == 3.0
        assert data['state'] == 'failed'
        assert data['failed_state'] == 'archiving'
        assert data['error_kind'] == 'remote_command'
        assert 'boom' in data['cause']
        assert data['command'] is None
        assert data['exit_status'] is None
        assert data['started_at'] == '2024-01-15T12:00:00+00:00'

    def test_dict_includes_remote_command_detail(self):
        started = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
        error = RemoteCommandError(
            'Remote archive command exited with status 2: boom',
            command='tar -czf /tmp/nightly.tar.gz -C /srv/data .',
            exit_status=2,
            stderr='boom',
        )
        outcome = BackupOutcome(
            job_name='nightly',
            success=False,
            state=JobState.FAILED,
            failed_state=JobState.ARCHIVING,
            error_kind=error.kind,
            message=error.message,
            cause=error,
            error=error,
            started_at=started,
            completed_at=started,
        )

        data = outcome.to_dict()

        assert data['command'] == 'tar -czf /tmp/nightly.tar.gz -C /srv/data .'
        assert data['exit_status'] == 2
        assert data['stderr'] == 'boom'
        assert 'RemoteCommandError' in data['cause']


class TestBuildFromSettings:
    """Test mapping the inbound settings onto target and job."""

    def test_full_settings(self, test_config):
        settings = {
            'remote_ip': ' 10.0.0.5 ',
            'remote_port': '2222',
            'remote_dir': '/srv/data',
            'username': 'backup',
            'password': 'secret',
            'local_dir': '/home/u/backup',
            'backup_name': 'nightly',
        }

        target, job = build_from_settings(settings, test_config)

        assert target.host == '10.0.0.5'
        assert target.port == 2222
        assert target.username == 'backup'
        assert target.password == 'secret'
        assert job.remote_source_dir == '/srv/data'
        assert job.backup_name == 'nightly'
        assert job.local_destination_dir == '/home/u/backup'

    def test_defaults_applied(self, test_config):
        settings = {
            'remote_ip': '10.0.0.5',
            'remote_dir': '/srv/data',
            'password': 'secret',
            'backup_name': 'nightly',
        }

        target, job = build_from_settings(settings, test_config)

        assert target.port == 22
        assert target.username == 'root'
        assert job.local_destination_dir == test_config.LOCAL_BACKUP_DIR

    def test_missing_values_left_for_validation(self, test_config):
        target, job = build_from_settings({}, test_config)

        with pytest.raises(ValidationError):
            target.validate()
        with pytest.raises(ValidationError):
            job.validate()

    def test_invalid_port(self, test_config):
        with pytest.raises(ValidationError, match='Invalid remote port'):
            build_from_settings({'remote_port': 'ssh'}, test_config)

    def test_date_suffix(self, test_config):
        settings = {'backup_name': 'nightly', 'date_suffix': 'true'}

        _, job = build_from_settings(settings, test_config, today=datetime(2024, 10, 17))

        assert job.backup_name == 'nightly-17-10-2024'
        assert job.archive_filename == 'nightly-17-10-2024.tar.gz'

    def test_date_suffix_disabled(self, test_config):
        _, job = build_from_settings({'backup_name': 'nightly', 'date_suffix': 'no'}, test_config)
        assert job.backup_name == 'nightly'

    def test_encrypted_password(self, test_config):
        cipher = CredentialCipher('master-pass')
        settings = {'password_encrypted': cipher.encrypt('secret')}

        target, _ = build_from_settings(settings, test_config, cipher=cipher)

        assert target.password == 'secret'

    def test_encrypted_password_without_cipher(self, test_config):
        with pytest.raises(ValidationError, match='passphrase'):
            build_from_settings({'password_encrypted': 'token'}, test_config)

    def test_key_filename(self, test_config):
        target, _ = build_from_settings({'key_filename': '~/.ssh/id_ed25519'}, test_config)
        assert target.key_filename == '~/.ssh/id_ed25519'
        assert target.password is None
