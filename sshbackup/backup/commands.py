"""
Remote command lines issued during a backup.

Each job sends exactly three commands to the remote shell:

    tar -czf <tmp>/<name>.tar.gz -C <remote_dir> .
    cat <tmp>/<name>.tar.gz
    rm <tmp>/<name>.tar.gz

Every interpolated field goes through shlex.quote, so names and paths with
spaces or shell metacharacters reach the remote side as single arguments.
"""

import shlex


def archive_command(remote_path: str, remote_source_dir: str) -> str:
    """Create a gzip-compressed tar of the directory contents at remote_path."""
    return f"tar -czf {shlex.quote(remote_path)} -C {shlex.quote(remote_source_dir)} ."


def read_command(remote_path: str) -> str:
    return f"cat {shlex.quote(remote_path)}"


def remove_command(remote_path: str) -> str:
    return f"rm {shlex.quote(remote_path)}"
