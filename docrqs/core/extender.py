"""
VisibilityExtender — async context manager that keeps a received message locked.

A consumer working on a message for longer than its visibility timeout wraps
the work in VisibilityExtender, which periodically extends the lock and keeps
track of the receipt token each extension hands back.

Usage
-----
    message = await queue.receive_message()

    async with VisibilityExtender(queue, message, timedelta(seconds=30)) as ext:
        await do_long_work(message.data)

    await queue.delete_message(message.message_id, ext.receipt_token)

Each extension changes the message revision, so the token the message was
received with goes stale after the first one. Always delete with
ext.receipt_token.

The extender stops silently on any RQSError, a lost message or a store
failure alike; the caller finds out on its own delete.
An error in the extender never replaces one raised by the body.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import timedelta
from types import TracebackType
from typing import Protocol

from docrqs.domain.errors import RQSError
from docrqs.domain.models import Message

logger = logging.getLogger(__name__)


class _ChangesVisibility(Protocol):
    """Structural Protocol — any object with an async change_message_visibility."""

    async def change_message_visibility(
        self, message_id: str, receipt_token: str, extension: timedelta
    ) -> str: ...


@dataclasses.dataclass
class VisibilityExtender:
    """
    Periodically extends the visibility timeout of one held message.

    Parameters
    ----------
    queue     : any object with async change_message_visibility(...)
    message   : the received message to keep locked
    extension : added to the visibility timeout on every tick
    interval  : time between extensions (default: half of `extension`)
    """

    queue: _ChangesVisibility
    message: Message
    extension: timedelta
    interval: timedelta | None = None

    receipt_token: str = dataclasses.field(init=False)
    _task: asyncio.Task[None] | None = dataclasses.field(
        default=None, init=False, repr=False
    )
    _stop: asyncio.Event = dataclasses.field(
        default_factory=asyncio.Event, init=False, repr=False
    )

    def __post_init__(self) -> None:
        if self.extension <= timedelta(0):
            raise ValueError("extension must be positive")
        if self.interval is None:
            self.interval = self.extension / 2
        self.receipt_token = self.message.receipt_token

    async def __aenter__(self) -> VisibilityExtender:
        self._stop.clear()
        self._task = asyncio.create_task(
            self._extend(), name=f"docrqs-extend-{self.message.message_id}"
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        # Not cancelled: an extension in flight must land in receipt_token.
        if self._task is not None:
            self._stop.set()
            try:
                await self._task
            except Exception:
                if exc_type is None:
                    raise
                logger.warning(
                    f"Extender for message {self.message.message_id} failed",
                    exc_info=True,
                )
            finally:
                self._task = None

    async def _extend(self) -> None:
        assert self.interval is not None
        while True:
            try:
                await asyncio.wait_for(self._stop.wait(), self.interval.total_seconds())
                return
            except TimeoutError:
                pass
            try:
                self.receipt_token = await self.queue.change_message_visibility(
                    self.message.message_id, self.receipt_token, self.extension
                )
            except RQSError as exc:
                logger.debug(f"Stopped extending message {self.message.message_id}: {exc}")
                return
