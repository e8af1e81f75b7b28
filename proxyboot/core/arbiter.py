"""Select primitive and the wait loop that resolves a bootstrap run."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, assert_never

from proxyboot.core.errors import PayloadDecodeError
from proxyboot.core.gatt import CharacteristicControl, NotifyRequest, WriteRequest
from proxyboot.core.handler import handle_write
from proxyboot.core.model import DecodeFailure, OperatorCancelled, Outcome, ProxyName, StreamClosed

if TYPE_CHECKING:
    from proxyboot.core.cancellation import CancellationSource

LOGGER = logging.getLogger(__name__)


async def first_completed(*tasks: asyncio.Future[Any]) -> asyncio.Future[Any]:
    """Wait until any of ``tasks`` is done and return it.

    When several are done at once the earliest one in argument order wins, so
    callers express priority through ordering. Pending tasks are left running.
    """
    if not any(task.done() for task in tasks):
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    return next(task for task in tasks if task.done())


async def cancel_pending(*tasks: asyncio.Future[Any]) -> None:
    pending = [task for task in tasks if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
    for task in tasks:
        if task.done() and not task.cancelled():
            # Mark as retrieved; losers of a race are discarded on purpose.
            task.exception()


async def wait_for_outcome(control: CharacteristicControl, cancel: CancellationSource) -> Outcome:
    """Race operator cancellation against characteristic control events.

    Cancellation takes precedence when both are ready in the same iteration,
    and it also interrupts the read of an accepted write. Notify requests are
    ignored; the first write request or the end of the event stream
    terminates the run.
    """
    cancel_task = asyncio.ensure_future(cancel.wait())
    event_task: asyncio.Future[Any] | None = None
    try:
        while True:
            event_task = asyncio.ensure_future(control.next())
            winner = await first_completed(cancel_task, event_task)
            if winner is cancel_task:
                await cancel_pending(event_task)
                _expire_unhandled(event_task)
                return _cancelled(cancel_task)

            event = event_task.result()
            match event:
                case WriteRequest():
                    return await _read_write(event, cancel_task)
                case NotifyRequest(mtu=mtu):
                    LOGGER.debug("Should not happen: accepting notify request event with MTU %d", mtu)
                case None:
                    LOGGER.info("Characteristic event stream closed")
                    return StreamClosed()
                case _:
                    assert_never(event)
    finally:
        if event_task is not None:
            await cancel_pending(event_task)
        await cancel_pending(cancel_task)
        cancel.close()


async def _read_write(request: WriteRequest, cancel_task: asyncio.Future[Any]) -> Outcome:
    write_task = asyncio.ensure_future(handle_write(request))
    try:
        winner = await first_completed(cancel_task, write_task)
        if winner is cancel_task:
            await cancel_pending(write_task)
            request.expire()
            return _cancelled(cancel_task)
        try:
            return ProxyName(write_task.result())
        except PayloadDecodeError as exc:
            return DecodeFailure(exc.message)
    finally:
        await cancel_pending(write_task)


def _cancelled(cancel_task: asyncio.Future[Any]) -> OperatorCancelled:
    exc = cancel_task.exception()
    if exc is not None:
        # Any activity on the source counts, failures included.
        LOGGER.warning("Cancellation source failed, treating it as a cancel: %s", exc)
    LOGGER.info("Stopped waiting for proxy device name (cancelled by operator)")
    return OperatorCancelled()


def _expire_unhandled(event_task: asyncio.Future[Any]) -> None:
    if event_task.cancelled() or event_task.exception() is not None:
        return
    event = event_task.result()
    if isinstance(event, WriteRequest):
        event.expire()
