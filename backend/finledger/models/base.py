"""Base model utilities for the ledger service.

Provides a UUID primary-key mixin so every model automatically gets
an ``id`` column of type ``UUID``, plus the timestamp helper used for
``created_at`` / ``updated_at`` defaults.
"""
from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Uuid
from sqlalchemy.orm import Mapped, mapped_column


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp (columns are ``timestamp without time zone``)."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class UUIDPrimaryKeyMixin:
    """Mixin that adds a UUID primary key column named ``id``."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
