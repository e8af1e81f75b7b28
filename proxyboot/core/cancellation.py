"""Operator cancellation sources for the bootstrap wait."""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from collections.abc import Iterable
from typing import IO, Protocol

from proxyboot.core.arbiter import cancel_pending, first_completed
from proxyboot.core.errors import ProxybootError

CANCEL_MODES = ("stdin", "signal", "none")


class CancellationSource(Protocol):
    hint: str

    async def wait(self) -> None:
        """Return once the operator asked to stop."""

    def close(self) -> None:
        """Release anything installed by :meth:`wait`."""


class EventCancellation:
    """Cancellation driven by an :class:`asyncio.Event`, e.g. from a UI action."""

    hint = "Call cancel() to quit."

    def __init__(self, event: asyncio.Event | None = None) -> None:
        self.event = event or asyncio.Event()

    def cancel(self) -> None:
        self.event.set()

    async def wait(self) -> None:
        await self.event.wait()

    def close(self) -> None:
        pass


class NeverCancel:
    hint = "Waiting indefinitely."

    async def wait(self) -> None:
        await asyncio.Future()

    def close(self) -> None:
        pass


class ConsoleLineCancellation:
    """Cancel when a line (or end of input) is read from the console."""

    hint = "Press enter to quit."

    def __init__(self, stream: IO[str] | IO[bytes] | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdin
        self._transport: asyncio.ReadTransport | None = None

    async def wait(self) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        try:
            # Watch a duplicate so closing the transport leaves the real stream open.
            pipe = os.fdopen(os.dup(self._stream.fileno()), "rb", buffering=0)
        except (OSError, ValueError) as exc:
            raise ProxybootError(f"Console is not available for cancellation: {exc}") from exc
        try:
            self._transport, _ = await loop.connect_read_pipe(
                lambda: asyncio.StreamReaderProtocol(reader),
                pipe,
            )
        except (OSError, ValueError) as exc:
            pipe.close()
            raise ProxybootError(
                f"Console is not available for cancellation: {exc}. Use --cancel signal instead."
            ) from exc
        await reader.readline()

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None


class SignalCancellation:
    """Cancel on SIGINT/SIGTERM (or the given signals)."""

    hint = "Send SIGINT or SIGTERM to quit."

    def __init__(self, signals: Iterable[signal.Signals] = (signal.SIGINT, signal.SIGTERM)) -> None:
        self._signals = tuple(signals)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._installed: list[signal.Signals] = []

    async def wait(self) -> None:
        self._loop = asyncio.get_running_loop()
        received = asyncio.Event()
        for sig in self._signals:
            try:
                self._loop.add_signal_handler(sig, received.set)
            except (NotImplementedError, RuntimeError) as exc:
                raise ProxybootError(f"Cannot install handler for {sig.name}: {exc}") from exc
            self._installed.append(sig)
        await received.wait()

    def close(self) -> None:
        if self._loop is None:
            return
        for sig in self._installed:
            self._loop.remove_signal_handler(sig)
        self._installed.clear()


class TimeoutCancellation:
    def __init__(self, timeout_s: float) -> None:
        if timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        self.timeout_s = timeout_s
        self.hint = f"Giving up after {timeout_s:g}s."

    async def wait(self) -> None:
        await asyncio.sleep(self.timeout_s)

    def close(self) -> None:
        pass


class AnyCancellation:
    """Cancel as soon as any of the wrapped sources fires."""

    def __init__(self, *sources: CancellationSource) -> None:
        if not sources:
            raise ValueError("AnyCancellation needs at least one source")
        self.sources = sources
        self.hint = " ".join(source.hint for source in sources)

    async def wait(self) -> None:
        tasks = [asyncio.ensure_future(source.wait()) for source in self.sources]
        try:
            winner = await first_completed(*tasks)
            winner.result()
        finally:
            await cancel_pending(*tasks)

    def close(self) -> None:
        for source in self.sources:
            source.close()


def build_cancellation(mode: str, timeout_s: float | None = None) -> CancellationSource:
    sources: list[CancellationSource] = []
    if mode == "stdin":
        sources.append(ConsoleLineCancellation())
    elif mode == "signal":
        sources.append(SignalCancellation())
    elif mode != "none":
        allowed = ", ".join(CANCEL_MODES)
        raise ProxybootError(f"Unsupported cancel mode '{mode}'. Allowed: {allowed}")
    if timeout_s is not None:
        sources.append(TimeoutCancellation(timeout_s))
    if not sources:
        return NeverCancel()
    if len(sources) == 1:
        return sources[0]
    return AnyCancellation(*sources)
