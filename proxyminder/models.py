"""
Database models for proxyminder.

Uses Peewee ORM with SQLite. Stores the supervised proxy's captured
stdout/stderr so the UI can show it after the fact.
"""

import os
from datetime import datetime, timedelta
from pathlib import Path

from peewee import (
    AutoField,
    CharField,
    DatabaseProxy,
    DateTimeField,
    Model,
    SqliteDatabase,
    TextField,
)

database = DatabaseProxy()


def initialize_db(db_path: Path):
    """Initialize database connection and create tables."""
    os.makedirs(os.path.dirname(db_path), exist_ok=True)
    db = SqliteDatabase(
        str(db_path),
        pragmas={
            "journal_mode": "wal",
            "cache_size": -16 * 1000,
            "busy_timeout": 5000,
        },
    )
    database.initialize(db)
    database.create_tables([OutputLine], safe=True)


class BaseModel(Model):
    """Base model with common configuration."""

    class Meta:
        database = database


class OutputLine(BaseModel):
    """A line the proxy wrote to stdout or stderr."""

    id = AutoField()
    stream = CharField(default="stdout")  # stdout, stderr
    level = CharField(default="info")  # info, warning, error
    message = TextField()
    timestamp = DateTimeField(default=datetime.now, index=True)

    class Meta:
        table_name = "output_lines"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stream": self.stream,
            "level": self.level,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


def record_output(stream: str, level: str, message: str) -> OutputLine:
    """Persist one captured output line."""
    return OutputLine.create(stream=stream, level=level, message=message[:2000])


def recent_output(stream: str = None, limit: int = 100) -> list[OutputLine]:
    """Most recent output lines, newest first."""
    query = OutputLine.select()
    if stream:
        query = query.where(OutputLine.stream == stream)
    return list(query.order_by(OutputLine.timestamp.desc(), OutputLine.id.desc()).limit(limit))


def prune_output(retention_days: int) -> int:
    """Delete output lines older than the retention window. Returns rows removed."""
    cutoff = datetime.now() - timedelta(days=retention_days)
    return OutputLine.delete().where(OutputLine.timestamp < cutoff).execute()
