import os

from sshbackup.errors import ValidationError


HOST_KEY_POLICIES = ('tofu', 'strict', 'insecure')


def _optional_float(value):
    if value is None or value.strip() == '':
        return None
    return float(value)


class Config:
    """Base configuration"""

    DEBUG = False

    # Remote side
    # Archives are written here before download and removed afterwards
    REMOTE_TMP_DIR = os.environ.get('SSHBACKUP_REMOTE_TMP_DIR') or '/tmp'
    ARCHIVE_EXTENSION = 'tar.gz'

    # Local side
    LOCAL_BACKUP_DIR = os.environ.get('SSHBACKUP_DEFAULT_LOCAL_DIR') or os.path.join(
        os.path.expanduser('~'), 'backup'
    )

    # Connection defaults used when the settings leave them blank
    DEFAULT_PORT = 22
    DEFAULT_USERNAME = 'root'

    # None means wait forever (no built-in timeout)
    CONNECT_TIMEOUT = _optional_float(os.environ.get('SSHBACKUP_CONNECT_TIMEOUT'))

    # Download
    DOWNLOAD_CHUNK_SIZE = int(os.environ.get('SSHBACKUP_CHUNK_SIZE') or 32768)

    # Host key verification: 'tofu', 'strict' or 'insecure'
    HOST_KEY_POLICY = os.environ.get('SSHBACKUP_HOST_KEY_POLICY') or 'tofu'
    KNOWN_HOSTS_FILE = os.environ.get('SSHBACKUP_KNOWN_HOSTS') or os.path.join(
        os.path.expanduser('~'), '.sshbackup', 'known_hosts'
    )

    # Logging
    LOG_DIR = os.environ.get('SSHBACKUP_LOG_DIR') or os.path.join(
        os.path.expanduser('~'), '.sshbackup', 'logs'
    )
    LOG_LEVEL = os.environ.get('SSHBACKUP_LOG_LEVEL')

    # Run history (empty string disables it)
    HISTORY_DATABASE_URL = os.environ.get('SSHBACKUP_HISTORY_URL')
    if HISTORY_DATABASE_URL is None:
        HISTORY_DATABASE_URL = 'sqlite:///' + os.path.join(
            os.path.expanduser('~'), '.sshbackup', 'history.db'
        )


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Keep everything inside the project tree during development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    LOCAL_BACKUP_DIR = os.path.join(DATA_DIR, 'backup')
    KNOWN_HOSTS_FILE = os.path.join(DATA_DIR, 'known_hosts')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    HISTORY_DATABASE_URL = f'sqlite:///{os.path.join(DATA_DIR, "history.db")}'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


# Environment variable for each key of the inbound settings mapping
SETTINGS_ENV_VARS = {
    'remote_ip': 'SSHBACKUP_REMOTE_IP',
    'remote_port': 'SSHBACKUP_REMOTE_PORT',
    'remote_dir': 'SSHBACKUP_REMOTE_DIR',
    'username': 'SSHBACKUP_USERNAME',
    'password': 'SSHBACKUP_PASSWORD',
    'password_encrypted': 'SSHBACKUP_PASSWORD_ENCRYPTED',
    'key_filename': 'SSHBACKUP_KEY_FILENAME',
    'local_dir': 'SSHBACKUP_LOCAL_DIR',
    'backup_name': 'SSHBACKUP_BACKUP_NAME',
    'date_suffix': 'SSHBACKUP_DATE_SUFFIX',
}


def get_config(config_name=None):
    """
    Resolve a configuration class by name.

    Args:
        config_name: 'development', 'production' or None (reads SSHBACKUP_ENV)

    Returns:
        Config class
    """
    if config_name is None:
        config_name = os.environ.get('SSHBACKUP_ENV', 'production')

    if config_name not in config:
        raise ValueError(
            f"Unknown configuration: {config_name}. "
            f"Valid options: {list(config.keys())}"
        )
    return config[config_name]


def load_settings_from_env(environ=None) -> dict:
    """
    Build the inbound settings mapping from environment variables.

    Only variables that are set end up in the mapping; defaults are applied
    later by build_from_settings().

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Dict keyed like the settings contract (remote_ip, remote_port, ...)
    """
    if environ is None:
        environ = os.environ

    settings = {}
    for key, env_var in SETTINGS_ENV_VARS.items():
        value = environ.get(env_var)
        if value is not None:
            settings[key] = value
    return settings


def validate_config(cfg):
    """
    Check the configuration values a backup run depends on.

    Raises:
        ValidationError: If DOWNLOAD_CHUNK_SIZE is not a positive integer or
            HOST_KEY_POLICY is not one of HOST_KEY_POLICIES
    """
    chunk_size = cfg.DOWNLOAD_CHUNK_SIZE
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
        raise ValidationError(f"DOWNLOAD_CHUNK_SIZE must be a positive integer, got {chunk_size!r}")

    if cfg.HOST_KEY_POLICY not in HOST_KEY_POLICIES:
        raise ValidationError(
            f"Invalid host key policy: {cfg.HOST_KEY_POLICY}. "
            f"Valid options: {list(HOST_KEY_POLICIES)}"
        )
