"""
Shared pytest fixtures for sshbackup tests.

This module provides fixtures for:
- A scripted fake remote host (channels, commands, exit statuses)
- SSHSession instances backed by a mocked paramiko client
- Connection targets, backup jobs and test configuration
- Real tar.gz archives to serve as remote content
"""

import io
import tarfile
from unittest.mock import MagicMock

import pytest

from sshbackup.backup.session import SSHSession
from sshbackup.config import Config
from sshbackup.models import BackupJob, ConnectionTarget


class FakeResponse:
    """What the fake remote does for one command."""

    def __init__(self, stdout=b'', stderr=b'', exit_status=0, stream=None, exec_error=None):
        self.stdout = stdout
        self.stderr = stderr
        self.exit_status = exit_status
        self.stream = stream
        self.exec_error = exec_error


class BrokenStream:
    """Byte stream that fails with OSError after fail_after bytes."""

    def __init__(self, data: bytes, fail_after: int):
        self._data = data
        self._fail_after = fail_after
        self._pos = 0

    def read(self, size=-1):
        if self._pos >= self._fail_after:
            raise OSError("Connection reset by peer")
        end = self._fail_after if size < 0 else min(self._pos + size, self._fail_after)
        chunk = self._data[self._pos:end]
        self._pos += len(chunk)
        return chunk


class _ChannelStream:
    """File-like view bound to a channel before its command starts."""

    def __init__(self, channel, attr):
        self._channel = channel
        self._attr = attr

    def read(self, size=-1):
        return getattr(self._channel, self._attr).read(size)


class FakeChannel:
    """Minimal stand-in for paramiko.Channel."""

    def __init__(self, remote):
        self.remote = remote
        self.command = None
        self.closed = False
        self._stdout = io.BytesIO()
        self._stderr = io.BytesIO()
        self._exit_status = -1

    def exec_command(self, command):
        self.command = command
        response = self.remote.respond(command)
        if response.exec_error is not None:
            raise response.exec_error
        self._stdout = response.stream if response.stream is not None else io.BytesIO(response.stdout)
        self._stderr = io.BytesIO(response.stderr)
        self._exit_status = response.exit_status

    def makefile(self, *args):
        return _ChannelStream(self, '_stdout')

    def makefile_stderr(self, *args):
        return _ChannelStream(self, '_stderr')

    @staticmethod
    def _has_pending(stream):
        return isinstance(stream, io.BytesIO) and stream.tell() < len(stream.getbuffer())

    def recv_ready(self):
        return self._has_pending(self._stdout)

    def recv_stderr_ready(self):
        return self._has_pending(self._stderr)

    def recv(self, nbytes):
        return self._stdout.read(nbytes)

    def recv_stderr(self, nbytes):
        return self._stderr.read(nbytes)

    def exit_status_ready(self):
        return self.command is not None

    def recv_exit_status(self):
        return self._exit_status

    def close(self):
        self.closed = True


class FakeRemote:
    """
    Scripted remote host.

    Responses are matched by command prefix ('tar', 'cat', 'rm'); unmatched
    commands succeed with no output.
    """

    def __init__(self):
        self.responses = {}
        self.commands = []
        self.channels = []
        self.open_error = None

    def on(self, prefix, **kwargs):
        self.responses[prefix] = FakeResponse(**kwargs)

    def respond(self, command):
        self.commands.append(command)
        for prefix, response in self.responses.items():
            if command.startswith(prefix):
                return response
        return FakeResponse()

    def open_session(self):
        if self.open_error is not None:
            raise self.open_error
        channel = FakeChannel(self)
        self.channels.append(channel)
        return channel


def make_session(remote, target):
    """Build a real SSHSession whose paramiko client is mocked onto remote."""
    client = MagicMock()
    transport = client.get_transport.return_value
    transport.is_active.return_value = True
    transport.open_session.side_effect = remote.open_session
    return SSHSession(client, target)


@pytest.fixture
def test_config(tmp_path):
    """Configuration pointing every local path into tmp_path."""

    class TestConfig(Config):
        DEBUG = True
        REMOTE_TMP_DIR = '/tmp'
        LOCAL_BACKUP_DIR = str(tmp_path / 'default_backup')
        CONNECT_TIMEOUT = None
        DOWNLOAD_CHUNK_SIZE = 16
        HOST_KEY_POLICY = 'tofu'
        KNOWN_HOSTS_FILE = str(tmp_path / 'pinned' / 'known_hosts')
        LOG_DIR = str(tmp_path / 'logs')
        LOG_LEVEL = None
        HISTORY_DATABASE_URL = 'sqlite://'

    return TestConfig


@pytest.fixture
def target():
    """Connection target used across tests."""
    return ConnectionTarget(host='10.0.0.5', username='root', port=22, password='secret')


@pytest.fixture
def backup_job(tmp_path):
    """Backup job writing into a not-yet-existing local directory."""
    return BackupJob(
        remote_source_dir='/srv/data',
        backup_name='nightly',
        local_destination_dir=str(tmp_path / 'home' / 'u' / 'backup'),
    )


@pytest.fixture
def remote():
    """Fake remote host with no scripted responses."""
    return FakeRemote()


@pytest.fixture
def fake_session(remote, target):
    """SSHSession wired to the fake remote."""
    return make_session(remote, target)


@pytest.fixture
def session_factory(remote):
    """
    open_session replacement that builds a fresh SSHSession per call.

    Every session handed out is kept in session_factory.sessions.
    """
    def opener(target, cfg):
        session = make_session(remote, target)
        opener.sessions.append(session)
        return session

    opener.sessions = []
    return opener


@pytest.fixture
def session_opener(fake_session):
    """
    Replacement for open_session that hands out fake_session.

    Calls are recorded on session_opener.calls.
    """
    def opener(target, cfg):
        opener.calls.append((target, cfg))
        return fake_session

    opener.calls = []
    return opener


@pytest.fixture
def broken_stream():
    """Factory for remote streams that break part-way through."""
    return BrokenStream


@pytest.fixture
def archive_bytes(tmp_path):
    """
    A real gzip-compressed tar of a small directory tree.

    Stands in for what `tar -czf ... -C /srv/data .` produces remotely.
    """
    source = tmp_path / 'remote_data'
    source.mkdir()
    (source / 'file1.txt').write_text('Content 1')
    (source / 'nested').mkdir()
    (source / 'nested' / 'file2.txt').write_text('Content 2' * 50)

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode='w:gz') as tar:
        tar.add(source, arcname='.')
    return buffer.getvalue()
