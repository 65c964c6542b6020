"""Ready-made id generators and callbacks."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Callable


def generate_uuid() -> uuid.UUID:
    """Random (version 4) uuid."""
    return uuid.uuid4()


def generate_time_uuid() -> uuid.UUID:
    """Time-based (version 1) uuid, usable as a timeuuid."""
    return uuid.uuid1()


def set_uuid(column: str) -> Callable[[Any], None]:
    """Callback that fills ``column`` with a random uuid when it is empty."""

    def callback(instance: Any) -> None:
        if instance.get(column) is None:
            instance.set(column, generate_uuid())

    return callback


def set_time_uuid(column: str) -> Callable[[Any], None]:
    """Callback that fills ``column`` with a time uuid when it is empty."""

    def callback(instance: Any) -> None:
        if instance.get(column) is None:
            instance.set(column, generate_time_uuid())

    return callback


def set_timestamp_to_now(column: str) -> Callable[[Any], None]:
    """Callback that sets ``column`` to the current UTC time."""

    def callback(instance: Any) -> None:
        instance.set(column, datetime.now(timezone.utc))

    return callback


callbacks = SimpleNamespace(
    set_uuid=set_uuid,
    set_time_uuid=set_time_uuid,
    set_timestamp_to_now=set_timestamp_to_now,
)
