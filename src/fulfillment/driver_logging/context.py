"""Per-thread stack of fields attached to every log record."""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any


class LogContext:
    """Stack of context frames; the innermost frame wins on key clashes."""

    _local = threading.local()

    @classmethod
    def _frames(cls) -> list[dict[str, Any]]:
        frames = getattr(cls._local, "frames", None)
        if frames is None:
            frames = cls._local.frames = [{}]
        return frames

    @classmethod
    def set(cls, **kwargs: Any) -> None:
        cls._frames()[-1].update(kwargs)

    @classmethod
    def push(cls, fields: dict[str, Any]) -> None:
        cls._frames().append(dict(fields))

    @classmethod
    def pop(cls) -> None:
        frames = cls._frames()
        if len(frames) > 1:
            frames.pop()

    @classmethod
    def get(cls) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for frame in cls._frames():
            merged.update(frame)
        return merged

    @classmethod
    def clear(cls) -> None:
        cls._local.frames = [{}]


class ContextFilter(logging.Filter):
    """Copies context fields onto records that don't already carry them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in LogContext.get().items():
            record.__dict__.setdefault(key, value)
        return True


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    LogContext.push(kwargs)
    try:
        yield
    finally:
        LogContext.pop()


@contextmanager
def log_order_context(order_id: str, **kwargs: Any) -> Iterator[None]:
    """Tag records with the order; the order id doubles as correlation id."""
    kwargs.setdefault("correlation_id", order_id)
    with log_context(order_id=order_id, **{k: v for k, v in kwargs.items() if v is not None}):
        yield
