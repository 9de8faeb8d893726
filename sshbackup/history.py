"""
Run history persisted with SQLAlchemy.

Each finished run (successful or not) becomes one backup_history row with
its status, failure details and the per-run log lines.
"""

import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import BigInteger, Column, DateTime, Integer, String, Text, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from sshbackup.models import BackupOutcome


logger = logging.getLogger(__name__)

Base = declarative_base()


class HistoryError(Exception):
    """Raised when the run history cannot be read or written."""
    pass


class BackupHistory(Base):
    """Backup execution history and logs"""
    __tablename__ = 'backup_history'

    id = Column(Integer, primary_key=True)
    job_name = Column(String(255), nullable=False, index=True)
    status = Column(String(20), nullable=False)  # success, failed
    failed_state = Column(String(20))
    error_kind = Column(String(32))
    error_message = Column(Text)
    local_path = Column(String(1024))
    file_size_bytes = Column(BigInteger)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime)
    logs = Column(Text)

    def __repr__(self):
        return f'<BackupHistory job={self.job_name} status={self.status}>'


def _naive_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo; store everything as naive UTC
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class HistoryStore:
    """Records backup outcomes in a database."""

    def __init__(self, database_url: str):
        """
        Open (and create if needed) the history database.

        Args:
            database_url: SQLAlchemy URL, e.g. sqlite:////var/lib/sshbackup/history.db

        Raises:
            HistoryError: If the database cannot be opened
        """
        if database_url.startswith('sqlite:///') and not database_url.endswith(':memory:'):
            db_dir = os.path.dirname(database_url[len('sqlite:///'):])
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

        try:
            self.engine = create_engine(database_url)
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise HistoryError(f"Failed to open history database: {e}") from e

        self._sessionmaker = sessionmaker(bind=self.engine, expire_on_commit=False)

    def record(self, outcome: BackupOutcome) -> BackupHistory:
        """
        Store one finished run.

        Raises:
            HistoryError: If the row cannot be written
        """
        entry = BackupHistory(
            job_name=outcome.job_name,
            status='success' if outcome.success else 'failed',
            failed_state=outcome.failed_state.value if outcome.failed_state else None,
            error_kind=outcome.error_kind,
            error_message=None if outcome.success else outcome.message,
            local_path=outcome.local_path,
            file_size_bytes=outcome.bytes_transferred,
            started_at=_naive_utc(outcome.started_at),
            completed_at=_naive_utc(outcome.completed_at),
            logs='\n'.join(outcome.logs),
        )

        try:
            with self._sessionmaker() as session:
                session.add(entry)
                session.commit()
        except SQLAlchemyError as e:
            raise HistoryError(f"Failed to record backup history: {e}") from e

        logger.debug(f"Recorded history entry {entry.id} for {outcome.job_name}")
        return entry

    def recent(self, job_name: Optional[str] = None, limit: int = 20) -> List[BackupHistory]:
        """
        Return the most recent runs, newest first.

        Args:
            job_name: Only return runs of this backup name
            limit: Maximum number of rows
        """
        query = select(BackupHistory).order_by(BackupHistory.started_at.desc(), BackupHistory.id.desc())
        if job_name is not None:
            query = query.where(BackupHistory.job_name == job_name)
        query = query.limit(limit)

        try:
            with self._sessionmaker() as session:
                return list(session.scalars(query))
        except SQLAlchemyError as e:
            raise HistoryError(f"Failed to read backup history: {e}") from e

    def close(self):
        self.engine.dispose()
