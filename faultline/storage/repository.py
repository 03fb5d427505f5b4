"""
Persistence operations for error groups and occurrences.

All writes happen inside the caller's transaction; the repository never
commits. Group creation relies on the unique fingerprint constraint rather
than an application-level existence check, so concurrent first occurrences
of the same fault end up on one row.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from sqlalchemy import insert, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import TrackingError
from ..fingerprint import fingerprint, sanitize_message
from .models import ErrorContext, ErrorGroup, ErrorOccurrence, ErrorStatus, utcnow

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    'sqlite': sqlite_insert,
    'postgresql': postgresql_insert,
}


class ErrorGroupRepository:
    """Find-or-create and counter updates for :class:`ErrorGroup`."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.table = ErrorGroup.__table__

    def get(self, group_id: int) -> ErrorGroup | None:
        return self.session.get(ErrorGroup, group_id)

    def find_by_fingerprint(self, key: str) -> ErrorGroup | None:
        return self.session.scalars(
            select(ErrorGroup).where(ErrorGroup.fingerprint == key)
        ).first()

    def find_or_create(
        self,
        exception_class: str,
        message: str | None,
        file_path: str | None,
        line_number: int | None,
        method_name: str | None = None,
    ) -> tuple[ErrorGroup, bool]:
        """Return the group for this fault and whether this call created it."""
        key = fingerprint(exception_class, message, file_path, line_number)

        group = self.find_by_fingerprint(key)
        if group is not None:
            return group, False

        now = utcnow()
        created = self._insert_ignoring_conflict({
            'fingerprint': key,
            'exception_class': exception_class,
            'sanitized_message': sanitize_message(message),
            'file_path': file_path,
            'line_number': line_number,
            'method_name': method_name,
            'status': ErrorStatus.UNRESOLVED.value,
            'first_seen_at': now,
            'last_seen_at': now,
            'occurrences_count': 0,
        })

        group = self.find_by_fingerprint(key)
        if group is None:
            raise TrackingError(f'Error group {key} vanished after insert')

        if not created:
            logger.debug('[Faultline] Lost group creation race for %s, reusing existing row', key)
        return group, created

    def _insert_ignoring_conflict(self, values: dict[str, Any]) -> bool:
        dialect = self.session.get_bind().dialect.name
        upsert = _UPSERT_DIALECTS.get(dialect)

        if upsert is not None:
            stmt = upsert(self.table).values(**values).on_conflict_do_nothing(
                index_elements=['fingerprint']
            )
            result = self.session.execute(stmt)
            return result.rowcount == 1

        try:
            with self.session.begin_nested():
                self.session.execute(insert(self.table).values(**values))
        except IntegrityError:
            return False
        return True

    def record_hit(self, group: ErrorGroup) -> bool:
        """Count one more occurrence; reopen the group if it was resolved.

        Returns True when this hit reopened the group.
        """
        now = utcnow()
        self.session.execute(
            update(self.table)
            .where(self.table.c.id == group.id)
            .values(
                occurrences_count=self.table.c.occurrences_count + 1,
                last_seen_at=now,
            )
        )

        result = self.session.execute(
            update(self.table)
            .where(
                self.table.c.id == group.id,
                self.table.c.status == ErrorStatus.RESOLVED.value,
            )
            .values(
                status=ErrorStatus.UNRESOLVED.value,
                resolved_at=None,
                reopened_at=now,
            )
        )
        reopened = result.rowcount == 1

        self.session.refresh(group)
        if reopened:
            logger.info('[Faultline] Reopened error group %s (%s)', group.id, group.exception_class)
        return reopened

    def create_occurrence(self, group: ErrorGroup, **fields: Any) -> ErrorOccurrence:
        occurrence = ErrorOccurrence(error_group=group, **fields)
        self.session.add(occurrence)
        self.session.flush()
        return occurrence

    def add_contexts(self, occurrence: ErrorOccurrence, entries: Mapping[str, Any]) -> list[ErrorContext]:
        contexts = []
        for key, value in entries.items():
            if value is None or not str(key).strip():
                continue
            context = ErrorContext(key=str(key)[:255], value=encode_context_value(value))
            # appending loads the collection, so it stays readable after the session closes
            occurrence.contexts.append(context)
            contexts.append(context)
        if contexts:
            self.session.flush()
        return contexts

    def set_status(self, group_id: int, status: ErrorStatus | str) -> ErrorGroup | None:
        group = self.get(group_id)
        if group is None:
            return None

        status = ErrorStatus(status)
        if status is ErrorStatus.RESOLVED:
            group.resolve()
        elif status is ErrorStatus.IGNORED:
            group.ignore()
        else:
            group.unresolve()
        self.session.flush()
        return group

    def recent_groups(self, limit: int = 50, status: ErrorStatus | str | None = None) -> list[ErrorGroup]:
        stmt = select(ErrorGroup).order_by(ErrorGroup.last_seen_at.desc(), ErrorGroup.id.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(ErrorGroup.status == ErrorStatus(status).value)
        return list(self.session.scalars(stmt))

    def latest_occurrence(self, group_id: int) -> ErrorOccurrence | None:
        return self.session.scalars(
            select(ErrorOccurrence)
            .where(ErrorOccurrence.error_group_id == group_id)
            .order_by(ErrorOccurrence.created_at.desc(), ErrorOccurrence.id.desc())
            .limit(1)
        ).first()


def encode_context_value(value: Any) -> str:
    """Context values are stored as text; anything else is JSON encoded."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)
