"""Redacting serializer for captured variables and request data."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sized
from datetime import date, datetime, time
from typing import Any, Iterable

from .config import DEFAULT_FILTER_KEYS

FILTERED = '[FILTERED]'
CIRCULAR = '[CIRCULAR REFERENCE]'
MAX_DEPTH = '[MAX DEPTH EXCEEDED]'


def truncate_string(value: str, max_length: int) -> str:
    """Shorten ``value`` to at most ``max_length`` characters, noting the cut.

    The result is always strictly shorter than ``value`` when ``value`` is
    longer than ``max_length``.
    """
    if len(value) <= max_length:
        return value

    suffix = f'...[truncated, original length {len(value)}]'
    keep = max(max_length - len(suffix), 0)
    result = value[:keep] + suffix
    if len(result) >= len(value):
        result = value[:max_length]
    return result


class VariableSerializer:
    """Converts arbitrary runtime values into bounded, JSON-safe data."""

    def __init__(
        self,
        filter_keys: Iterable[str] | None = None,
        max_string_length: int = 500,
        max_depth: int = 10,
        max_collection_size: int = 100,
    ) -> None:
        keys = DEFAULT_FILTER_KEYS if filter_keys is None else filter_keys
        self.filter_keys = tuple(k.lower() for k in keys)
        self.max_string_length = max_string_length
        self.max_depth = max_depth
        self.max_collection_size = max_collection_size

    @classmethod
    def from_config(cls, config: Any) -> 'VariableSerializer':
        return cls(
            filter_keys=config.filter_keys,
            max_string_length=config.max_string_length,
            max_depth=config.max_capture_depth,
            max_collection_size=config.max_collection_size,
        )

    def serialize(self, value: Any) -> dict[str, Any]:
        """Serialize ``value`` into a dict. Never raises."""
        if value is None:
            return {}

        try:
            if isinstance(value, Sized) and len(value) == 0:
                return {}
            if isinstance(value, Mapping):
                return self._serialize_mapping(value, depth=0, seen=set())
            return {'value': self._serialize_value(value, depth=0, seen=set())}
        except Exception as e:
            return {'error': f'[SERIALIZATION FAILED: {type(e).__name__}]'}

    def is_filtered(self, key: Any) -> bool:
        name = str(key).lower()
        return any(fragment in name for fragment in self.filter_keys)

    def _serialize_mapping(self, value: Mapping, depth: int, seen: set[int]) -> dict[str, Any]:
        result: dict[str, Any] = {}
        seen.add(id(value))
        try:
            for count, (k, v) in enumerate(value.items()):
                if count >= self.max_collection_size:
                    break
                key_str = str(k)[:100]
                if self.is_filtered(key_str):
                    result[key_str] = FILTERED
                else:
                    result[key_str] = self._serialize_value(v, depth + 1, seen)
        finally:
            seen.discard(id(value))
        return result

    def _serialize_sequence(self, value: Iterable, depth: int, seen: set[int]) -> list[Any]:
        elements: list[Any] = []
        seen.add(id(value))
        try:
            for i, item in enumerate(value):
                if i >= self.max_collection_size:
                    break
                elements.append(self._serialize_value(item, depth + 1, seen))
        finally:
            seen.discard(id(value))
        return elements

    def _serialize_value(self, value: Any, depth: int, seen: set[int]) -> Any:
        if value is None or isinstance(value, bool):
            return value

        if isinstance(value, int):
            return value

        if isinstance(value, float):
            return value if math.isfinite(value) else str(value)

        if isinstance(value, str):
            return truncate_string(value, self.max_string_length)

        if isinstance(value, (bytes, bytearray)):
            return truncate_string(bytes(value).decode('utf-8', errors='replace'), self.max_string_length)

        if isinstance(value, (datetime, date, time)):
            return value.isoformat()

        if isinstance(value, (Mapping, list, tuple, set, frozenset)):
            if id(value) in seen:
                return CIRCULAR
            if depth > self.max_depth:
                return MAX_DEPTH
            if isinstance(value, Mapping):
                return self._serialize_mapping(value, depth, seen)
            return self._serialize_sequence(value, depth, seen)

        try:
            text = repr(value)
        except Exception:
            return f'[UNSERIALIZABLE: {type(value).__name__}]'
        return truncate_string(text, self.max_string_length)
