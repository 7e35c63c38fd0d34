from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """Caller input rejected before it reaches storage."""


class StoreError(RuntimeError):
    """The store could not complete an operation (I/O, locking)."""


class StoreCorruptError(StoreError):
    """The store file is unreadable or malformed."""


class SchemaMigrationError(StoreError):
    pass


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Translate sqlite errors raised inside the block into store errors.

    Lock contention and I/O failures surface as ``StoreError``. Every other
    ``sqlite3.DatabaseError`` means the file cannot be trusted and is logged
    before being raised as ``StoreCorruptError``.
    """

    try:
        yield
    except sqlite3.OperationalError as exc:
        raise StoreError(f"{action} failed: {exc}") from exc
    except sqlite3.DatabaseError as exc:
        logger.error("store unreadable during %s: %s", action, exc)
        raise StoreCorruptError(f"{action} failed: store is corrupt or unreadable ({exc})") from exc
