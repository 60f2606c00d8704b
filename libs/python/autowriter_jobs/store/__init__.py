"""Job store back ends."""

from __future__ import annotations

import os

from ..exceptions import StoreConfigError
from .base import StoreSession, WritingStore
from .memory import MemoryStore

STORE_ENV_VAR = "AUTOWRITER_STORE"


def create_store(kind: str | None = None, *, database_url: str | None = None) -> WritingStore:
    """Select a back end from ``AUTOWRITER_STORE`` (``postgres`` or ``memory``).

    Postgres is the default and needs ``DATABASE_URL``.
    """

    selected = (kind or os.getenv(STORE_ENV_VAR, "postgres")).strip().lower()
    if selected == "memory":
        return MemoryStore()
    if selected == "postgres":
        url = database_url or os.getenv("DATABASE_URL")
        if not url:
            raise StoreConfigError("DATABASE_URL environment variable is required for the postgres store")
        from .postgres import PostgresStore

        return PostgresStore(url)
    raise StoreConfigError(f"Unknown store back end: {selected}")


__all__ = ["MemoryStore", "StoreSession", "WritingStore", "create_store", "STORE_ENV_VAR"]
