"""
Non-interactive entry point.

Reads the backup settings from SSHBACKUP_* environment variables, runs one
backup, records it in the run history and reports the outcome through the
log. The exit code is 0 on success and 1 on failure.

    python run.py                    # run the configured backup
    python run.py encrypt-password   # turn a password on stdin into a token
"""

import argparse
import logging
import os
import sys

from sshbackup import configure_logging
from sshbackup.backup import run_backup
from sshbackup.config import get_config, load_settings_from_env
from sshbackup.errors import ValidationError
from sshbackup.history import HistoryError, HistoryStore
from sshbackup.utils.crypto import CredentialCipher


logger = logging.getLogger(__name__)


def cipher_from_env(environ=None):
    """
    Build a CredentialCipher from SSHBACKUP_MASTER_PASSPHRASE / SSHBACKUP_MASTER_SALT.

    Returns:
        CredentialCipher, or None when no passphrase is configured
    """
    if environ is None:
        environ = os.environ

    passphrase = environ.get('SSHBACKUP_MASTER_PASSPHRASE')
    if not passphrase:
        return None

    salt = environ.get('SSHBACKUP_MASTER_SALT')
    if salt:
        return CredentialCipher.from_encoded_salt(passphrase, salt)
    return CredentialCipher(passphrase)


def _encrypt_password(stdin, stdout) -> int:
    cipher = cipher_from_env()
    if cipher is None:
        logger.error("SSHBACKUP_MASTER_PASSPHRASE must be set to encrypt a password")
        return 1

    password = stdin.readline().rstrip('\n')
    if not password:
        logger.error("No password given on standard input")
        return 1

    stdout.write(f"SSHBACKUP_PASSWORD_ENCRYPTED={cipher.encrypt(password)}\n")
    stdout.write(f"SSHBACKUP_MASTER_SALT={cipher.encoded_salt}\n")
    return 0


def _run(cfg) -> int:
    settings = load_settings_from_env()

    try:
        cipher = cipher_from_env() if settings.get('password_encrypted') else None
    except ValidationError as e:
        logger.error(f"Invalid master passphrase settings: {e.message}")
        return 1

    history = None
    if cfg.HISTORY_DATABASE_URL:
        try:
            history = HistoryStore(cfg.HISTORY_DATABASE_URL)
        except HistoryError as e:
            logger.warning(f"Run history disabled: {e}")

    try:
        outcome = run_backup(settings, cfg=cfg, cipher=cipher, history=history)
    except HistoryError as e:
        logger.error(f"Backup finished but could not be recorded: {e}")
        return 1
    finally:
        if history is not None:
            history.close()

    if outcome.success:
        logger.info(
            f"Backup '{outcome.job_name}' saved to {outcome.local_path} "
            f"in {outcome.duration_seconds:.1f}s"
        )
        return 0

    logger.error(f"Backup '{outcome.job_name}' failed [{outcome.error_kind}]: {outcome.message}")
    if outcome.cause is not None:
        logger.error(f"Cause: {outcome.cause!r}")
    return 1


def main(argv=None, stdin=None, stdout=None) -> int:
    parser = argparse.ArgumentParser(description='Back up a remote directory over SSH')
    parser.add_argument(
        'command',
        nargs='?',
        default='backup',
        choices=['backup', 'encrypt-password'],
        help='backup (default) or encrypt-password'
    )
    parser.add_argument(
        '--env',
        default=None,
        choices=['development', 'production'],
        help='configuration to use (defaults to SSHBACKUP_ENV or production)'
    )
    args = parser.parse_args(argv)

    cfg = get_config(args.env)
    configure_logging(cfg)

    if args.command == 'encrypt-password':
        return _encrypt_password(stdin or sys.stdin, stdout or sys.stdout)
    return _run(cfg)
