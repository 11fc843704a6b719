"""Ambient execution context propagated through async tick streams.

Code running while a stream is drained can ask ``current_frame()`` which
strategy, exchange and frame are active, without the values being threaded
through every call. Frames form a stack: a scoped run started while
another is active becomes its child, and the previous frame is restored
when the inner run ends.

Usage::

    frame = ExecutionFrame("ema_cross", "binance", "2024-q1", backtest=True)
    async with run_scoped(ticks, frame) as stream:
        async for tick in stream:
            current_frame().strategy_name  # "ema_cross"
    current_frame()  # previous frame again, or EMPTY_FRAME

The frame lives in a ``ContextVar``, so concurrent drains in separate tasks
never see each other's frames.
"""

from __future__ import annotations

import contextvars
import logging
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Awaitable, Callable, Generic, Iterator, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class ExecutionFrame:
    """Identity of the strategy run currently executing."""

    strategy_name: str = ""
    exchange_name: str = ""
    frame_name: str = ""
    backtest: bool = False
    parent: ExecutionFrame | None = field(default=None, repr=False, compare=False)

    @property
    def mode(self) -> str:
        return "backtest" if self.backtest else "live"

    @property
    def depth(self) -> int:
        """Number of frames below this one on the stack."""
        depth = 0
        node = self.parent
        while node is not None:
            depth += 1
            node = node.parent
        return depth

    @property
    def is_empty(self) -> bool:
        return not (self.strategy_name or self.exchange_name or self.frame_name)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("parent")
        return data


# Returned by current_frame() when no scoped run is active.
EMPTY_FRAME = ExecutionFrame()

_current_frame: contextvars.ContextVar[ExecutionFrame | None] = contextvars.ContextVar(
    "admission_execution_frame", default=None
)


def current_frame() -> ExecutionFrame:
    """Return the active frame, or ``EMPTY_FRAME`` if none is active."""
    frame = _current_frame.get()
    return frame if frame is not None else EMPTY_FRAME


def has_frame() -> bool:
    """Return ``True`` if a scoped run is active in this context."""
    return _current_frame.get() is not None


def _as_frame(frame: ExecutionFrame | Mapping[str, Any]) -> ExecutionFrame:
    if isinstance(frame, ExecutionFrame):
        return frame
    return ExecutionFrame(**frame)


@contextmanager
def scoped_frame(frame: ExecutionFrame | Mapping[str, Any]) -> Iterator[ExecutionFrame]:
    """Make *frame* the active frame for the duration of the block."""
    pushed = replace(_as_frame(frame), parent=_current_frame.get())
    token = _current_frame.set(pushed)
    try:
        yield pushed
    finally:
        _current_frame.reset(token)


async def run_in_frame(
    fn: Callable[..., Awaitable[R]],
    frame: ExecutionFrame | Mapping[str, Any],
    *args: Any,
    **kwargs: Any,
) -> R:
    """Await ``fn(*args, **kwargs)`` with *frame* active."""
    with scoped_frame(frame):
        return await fn(*args, **kwargs)


class ScopedStream(Generic[T]):
    """Async iterator that keeps a frame active while it is drained.

    Must be drained inside ``async with``: the frame is pushed by
    ``__aenter__`` and popped exactly once by ``__aexit__``, whether the
    block ends by exhaustion, ``break``, an error or cancellation. Iterating
    without ``async with`` raises ``RuntimeError`` before any element is
    produced, so the frame can never outlive the drain.
    """

    def __init__(
        self,
        source: AsyncIterable[T],
        frame: ExecutionFrame | Mapping[str, Any],
    ):
        self.frame = _as_frame(frame)
        self._source = source
        self._iterator: AsyncIterator[T] | None = None
        self._token: contextvars.Token | None = None
        self._previous: ExecutionFrame | None = None
        self._finished = False

    @property
    def active(self) -> bool:
        """``True`` while the frame is pushed."""
        return self._token is not None

    def _push(self) -> None:
        if self._token is not None or self._finished:
            raise RuntimeError("ScopedStream can only be entered once")
        self._previous = _current_frame.get()
        self._token = _current_frame.set(replace(self.frame, parent=self._previous))
        self._iterator = self._source.__aiter__()
        logger.debug(
            "Entered frame %s/%s/%s (depth %d)",
            self.frame.strategy_name,
            self.frame.exchange_name,
            self.frame.frame_name,
            current_frame().depth,
        )

    def _pop(self) -> None:
        self._finished = True
        if self._token is None:
            return
        token, self._token = self._token, None
        try:
            _current_frame.reset(token)
        except ValueError:
            # Token belongs to another context (exited from a different task)
            _current_frame.set(self._previous)
        logger.debug(
            "Left frame %s/%s/%s",
            self.frame.strategy_name,
            self.frame.exchange_name,
            self.frame.frame_name,
        )

    async def __aenter__(self) -> ScopedStream[T]:
        self._push()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        try:
            if self._iterator is not None and not self._finished:
                aclose = getattr(self._iterator, "aclose", None)
                if aclose is not None:
                    await aclose()
        finally:
            self._pop()
        return False

    def __aiter__(self) -> ScopedStream[T]:
        return self

    async def __anext__(self) -> T:
        if self._finished:
            raise StopAsyncIteration
        if self._token is None:
            raise RuntimeError(
                "ScopedStream must be drained inside 'async with run_scoped(...)'"
            )
        try:
            return await self._iterator.__anext__()
        except BaseException:
            # Exhausted, failed or cancelled: nothing left to close
            self._finished = True
            raise


def run_scoped(
    source: AsyncIterable[T],
    frame: ExecutionFrame | Mapping[str, Any],
) -> ScopedStream[T]:
    """Wrap *source* so that *frame* is active for its whole drain.

    Elements and their order are unchanged. Use as::

        async with run_scoped(ticks, frame) as stream:
            async for tick in stream:
                ...
    """
    return ScopedStream(source, frame)
