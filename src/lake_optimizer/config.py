from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .errors import InvalidTableStateError
from .utils.options import get_option

ENABLED = "self-optimizing.enabled"
SMALL_FILE_SIZE_BYTES = "self-optimizing.small-file-size-bytes"
MAJOR_TRIGGER_SMALL_FILE_COUNT = "self-optimizing.major.trigger.small-file-count"
MAJOR_TRIGGER_MAX_INTERVAL_MS = "self-optimizing.major.trigger.max-interval-ms"
FULL_TRIGGER_MAX_INTERVAL_MS = "self-optimizing.full.trigger.max-interval-ms"
TARGET_SIZE_BYTES = "self-optimizing.target-size-bytes"
PRIMARY_KEYS = "table.primary-keys"
EXTERNAL_LOCATION = "warehouse.external-location"

DEFAULT_SMALL_FILE_SIZE_BYTES = 16 * 1024 * 1024
DEFAULT_MIN_SMALL_FILE_COUNT = 2
DEFAULT_MAJOR_MAX_INTERVAL_MS = 24 * 60 * 60 * 1000
DEFAULT_FULL_MAX_INTERVAL_MS = -1
DEFAULT_TARGET_SIZE_BYTES = 128 * 1024 * 1024


@dataclass(frozen=True)
class TableConfig:
    enabled: bool = True
    small_file_size_bytes: int = DEFAULT_SMALL_FILE_SIZE_BYTES
    min_small_file_count: int = DEFAULT_MIN_SMALL_FILE_COUNT
    major_max_interval_ms: int = DEFAULT_MAJOR_MAX_INTERVAL_MS
    full_max_interval_ms: int = DEFAULT_FULL_MAX_INTERVAL_MS
    target_size_bytes: int = DEFAULT_TARGET_SIZE_BYTES

    @property
    def full_optimize_enabled(self) -> bool:
        return self.full_max_interval_ms > 0

    @classmethod
    def from_properties(cls, properties: Mapping[str, Any] | None) -> "TableConfig":
        """Parse table properties, falling back to defaults for missing keys.

        Values may be strings (as stored in table metadata) or native types.
        """
        props = dict(properties or {})
        return cls(
            enabled=_as_bool(props, ENABLED, default=True),
            small_file_size_bytes=_as_int(
                props, SMALL_FILE_SIZE_BYTES, default=DEFAULT_SMALL_FILE_SIZE_BYTES, minimum=0
            ),
            min_small_file_count=_as_int(
                props, MAJOR_TRIGGER_SMALL_FILE_COUNT, default=DEFAULT_MIN_SMALL_FILE_COUNT, minimum=1
            ),
            major_max_interval_ms=_as_int(
                props, MAJOR_TRIGGER_MAX_INTERVAL_MS, default=DEFAULT_MAJOR_MAX_INTERVAL_MS, minimum=0
            ),
            full_max_interval_ms=_as_int(
                props, FULL_TRIGGER_MAX_INTERVAL_MS, default=DEFAULT_FULL_MAX_INTERVAL_MS
            ),
            target_size_bytes=_as_int(
                props, TARGET_SIZE_BYTES, default=DEFAULT_TARGET_SIZE_BYTES, minimum=1
            ),
        )


def primary_keys(properties: Mapping[str, Any] | None) -> list[str]:
    raw = get_option(properties or {}, PRIMARY_KEYS, "primary-keys", default=None)
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [str(key).strip() for key in raw if str(key).strip()]
    return [key.strip() for key in str(raw).split(",") if key.strip()]


def external_location(properties: Mapping[str, Any] | None) -> str | None:
    raw = get_option(properties or {}, EXTERNAL_LOCATION, "external-location", default=None)
    if raw is None:
        return None
    value = str(raw).strip()
    return value or None


def _as_int(props: Mapping[str, Any], key: str, *, default: int, minimum: int | None = None) -> int:
    raw = props.get(key)
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise InvalidTableStateError(f"Table property {key}={raw!r} is not an integer") from exc
    if minimum is not None and value < minimum:
        raise InvalidTableStateError(f"Table property {key}={value} must be >= {minimum}")
    return value


def _as_bool(props: Mapping[str, Any], key: str, *, default: bool) -> bool:
    raw = props.get(key)
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    normalized = str(raw).strip().lower()
    if normalized in {"true", "1", "yes"}:
        return True
    if normalized in {"false", "0", "no"}:
        return False
    raise InvalidTableStateError(f"Table property {key}={raw!r} is not a boolean")
