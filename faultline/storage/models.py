"""SQLAlchemy models for error groups, occurrences and their context."""

from __future__ import annotations

import json
import linecache
import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates


# Backtrace lines look like "path/to/file.py:42:in function"
FRAME_PATTERN = re.compile(r'^(?P<path>.+?):(?P<line>\d+):in (?P<function>.*)$')


class Base(DeclarativeBase):
    pass


class ErrorStatus(str, Enum):
    """Lifecycle states of an error group."""

    UNRESOLVED = 'unresolved'
    RESOLVED = 'resolved'
    IGNORED = 'ignored'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class ErrorGroup(Base):
    """One row per distinct fault signature."""

    __tablename__ = 'faultline_error_groups'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Unique constraint backs the atomic find-or-create
    fingerprint: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)

    exception_class: Mapped[str] = mapped_column(String(255), nullable=False)
    sanitized_message: Mapped[str] = mapped_column(Text, nullable=False, default='')
    file_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    line_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    method_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ErrorStatus.UNRESOLVED.value, index=True
    )
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reopened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    occurrences_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    occurrences: Mapped[list['ErrorOccurrence']] = relationship(
        back_populates='error_group',
        cascade='all, delete-orphan',
        passive_deletes=True,
        order_by='ErrorOccurrence.id',
    )

    @validates('status')
    def _validate_status(self, key: str, value: str | ErrorStatus) -> str:
        return ErrorStatus(value).value

    def resolve(self) -> None:
        self.status = ErrorStatus.RESOLVED.value
        self.resolved_at = utcnow()

    def unresolve(self) -> None:
        self.status = ErrorStatus.UNRESOLVED.value
        self.resolved_at = None

    def ignore(self) -> None:
        self.status = ErrorStatus.IGNORED.value

    @property
    def is_resolved(self) -> bool:
        return self.status == ErrorStatus.RESOLVED.value

    def recently_reopened(self, window: timedelta | float = 3600) -> bool:
        """True when an occurrence reopened this group within ``window``."""
        if self.status != ErrorStatus.UNRESOLVED.value or self.reopened_at is None:
            return False
        if not isinstance(window, timedelta):
            window = timedelta(seconds=window)
        return utcnow() - as_utc(self.reopened_at) <= window

    @property
    def location(self) -> str | None:
        if not self.file_path:
            return None
        return f'{self.file_path}:{self.line_number}' if self.line_number else self.file_path

    def url(self, base_url: str | None) -> str | None:
        """Link back to this group on the dashboard, if one is mounted."""
        if not base_url or self.id is None:
            return None
        return f"{base_url.rstrip('/')}/error_groups/{self.id}"

    def __repr__(self) -> str:
        return (
            f'<ErrorGroup(id={self.id!r}, exception_class={self.exception_class!r}, '
            f'status={self.status!r}, occurrences_count={self.occurrences_count!r})>'
        )


class ErrorOccurrence(Base):
    """One captured exception instance. Never updated after insert."""

    __tablename__ = 'faultline_error_occurrences'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    error_group_id: Mapped[int] = mapped_column(
        ForeignKey('faultline_error_groups.id', ondelete='CASCADE'), nullable=False, index=True
    )

    exception_class: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    backtrace: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    environment: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hostname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    process_id: Mapped[str | None] = mapped_column(String(32), nullable=True)

    request_method: Mapped[str | None] = mapped_column(String(16), nullable=True)
    request_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_type: Mapped[str | None] = mapped_column(String(255), nullable=True)

    local_variables: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    error_group: Mapped[ErrorGroup] = relationship(back_populates='occurrences')
    contexts: Mapped[list['ErrorContext']] = relationship(
        back_populates='error_occurrence',
        cascade='all, delete-orphan',
        passive_deletes=True,
    )

    @property
    def user_identifier(self) -> str | None:
        if not self.user_id:
            return None
        return f'{self.user_type}#{self.user_id}' if self.user_type else str(self.user_id)

    def app_backtrace_lines(self, is_app_path: Callable[[str], bool]) -> list[str]:
        """Backtrace lines whose file is application code."""
        lines = []
        for line in self.backtrace or []:
            match = FRAME_PATTERN.match(line)
            if match and is_app_path(match.group('path')):
                lines.append(line)
        return lines

    def source_context(
        self,
        is_app_path: Callable[[str], bool],
        radius: int = 5,
    ) -> dict[str, Any] | None:
        """Source lines around the innermost application frame."""
        app_lines = self.app_backtrace_lines(is_app_path)
        if not app_lines:
            return None

        match = FRAME_PATTERN.match(app_lines[0])
        path = match.group('path')
        line_number = int(match.group('line'))

        start = max(line_number - radius, 1)
        lines = {}
        for number in range(start, line_number + radius + 1):
            text = linecache.getline(path, number)
            if not text:
                break
            lines[number] = text.rstrip('\n')

        if not lines:
            return None
        return {'file_path': path, 'line_number': line_number, 'lines': lines}

    def __repr__(self) -> str:
        return f'<ErrorOccurrence(id={self.id!r}, error_group_id={self.error_group_id!r})>'


class ErrorContext(Base):
    """Free-form key/value annotation attached to one occurrence."""

    __tablename__ = 'faultline_error_contexts'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    error_occurrence_id: Mapped[int] = mapped_column(
        ForeignKey('faultline_error_occurrences.id', ondelete='CASCADE'), nullable=False, index=True
    )
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)

    error_occurrence: Mapped[ErrorOccurrence] = relationship(back_populates='contexts')

    @validates('key')
    def _validate_key(self, key: str, value: str | None) -> str:
        if value is None or not str(value).strip():
            raise ValueError("ErrorContext key can't be blank")
        return value

    def parsed_value(self) -> Any:
        """Decoded JSON when the value holds JSON, otherwise the raw string."""
        if self.value is None:
            return None
        try:
            return json.loads(self.value)
        except (TypeError, ValueError):
            return self.value

    def __repr__(self) -> str:
        return f'<ErrorContext(key={self.key!r})>'
