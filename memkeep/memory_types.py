from __future__ import annotations

from enum import StrEnum

from .errors import ValidationError


class MemoryType(StrEnum):
    # Written by automatic capture only; never accepted from callers.
    AUTO = "auto"
    MANUAL = "manual"
    PATTERN = "pattern"
    DECISION = "decision"


class MemoryStatus(StrEnum):
    ACTIVE = "active"
    COLD = "cold"


class MemoryScope(StrEnum):
    PROJECT = "project"
    GLOBAL = "global"


USER_MEMORY_TYPES: tuple[MemoryType, ...] = (
    MemoryType.MANUAL,
    MemoryType.PATTERN,
    MemoryType.DECISION,
)


def _normalize(value: object) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()


def parse_memory_type(value: object) -> MemoryType:
    normalized = _normalize(value)
    try:
        return MemoryType(normalized)
    except ValueError:
        allowed = ", ".join(t.value for t in MemoryType)
        raise ValidationError(
            f"Invalid memory type '{normalized}'. Allowed types: {allowed}"
        ) from None


def validate_user_memory_type(value: object) -> MemoryType:
    normalized = _normalize(value)
    allowed = ", ".join(t.value for t in USER_MEMORY_TYPES)
    if normalized == MemoryType.AUTO.value:
        raise ValidationError(
            f"Memory type 'auto' is reserved for automatic capture. Allowed types: {allowed}"
        )
    try:
        return MemoryType(normalized)
    except ValueError:
        raise ValidationError(
            f"Invalid memory type '{normalized}'. Allowed types: {allowed}"
        ) from None


def parse_memory_status(value: object) -> MemoryStatus:
    normalized = _normalize(value)
    try:
        return MemoryStatus(normalized)
    except ValueError:
        raise ValidationError(
            f"Invalid memory status '{normalized}'. Allowed: active, cold"
        ) from None


def parse_memory_scope(value: object) -> MemoryScope:
    normalized = _normalize(value)
    try:
        return MemoryScope(normalized)
    except ValueError:
        raise ValidationError(
            f"Invalid memory scope '{normalized}'. Allowed: project, global"
        ) from None
