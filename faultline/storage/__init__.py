"""Persistence for error groups, occurrences and context."""

from .database import Storage
from .models import Base, ErrorContext, ErrorGroup, ErrorOccurrence, ErrorStatus
from .repository import ErrorGroupRepository

__all__ = [
    'Base',
    'ErrorContext',
    'ErrorGroup',
    'ErrorGroupRepository',
    'ErrorOccurrence',
    'ErrorStatus',
    'Storage',
]
