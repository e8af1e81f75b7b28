"""GATT application descriptors and the characteristic control channel."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from proxyboot.adapters.base import Adapter, RegistrationHandle
from proxyboot.core.errors import WriteIOError
from proxyboot.core.model import Application, Characteristic, CharacteristicWrite, Service, WriteMethod

LOGGER = logging.getLogger(__name__)


class WriteStream(Protocol):
    async def read(self, n: int) -> bytes:
        """Read at most ``n`` bytes written by the remote central."""

    def close(self) -> None:
        """Release the underlying stream."""


class BytesWriteStream:
    """Write stream over a value that has already been received."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._closed = False

    async def read(self, n: int) -> bytes:
        if self._closed:
            raise WriteIOError("Write stream is closed")
        chunk, self._data = self._data[:n], self._data[n:]
        return chunk

    def close(self) -> None:
        self._closed = True


class WriteRequest:
    """A pending characteristic write that may be accepted exactly once."""

    def __init__(self, mtu: int, acceptor: Callable[[], WriteStream]) -> None:
        self._mtu = mtu
        self._acceptor = acceptor
        self._accepted = False
        self._expired = False

    @property
    def mtu(self) -> int:
        return self._mtu

    @property
    def expired(self) -> bool:
        return self._expired

    def accept(self) -> WriteStream:
        if self._accepted:
            raise WriteIOError("Write request was already accepted")
        if self._expired:
            raise WriteIOError("Write request expired before it was accepted")
        self._accepted = True
        try:
            return self._acceptor()
        except OSError as exc:
            raise WriteIOError(f"Could not accept write request: {exc}") from exc

    def expire(self) -> None:
        self._expired = True


@dataclass(frozen=True)
class NotifyRequest:
    mtu: int


ControlEvent = WriteRequest | NotifyRequest

_CLOSED = object()


class CharacteristicControl:
    """Single-consumer stream of control events for one characteristic.

    Events are pushed through the paired :class:`CharacteristicControlHandle`.
    Once the handle is closed the stream ends and stays ended.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._ended = False

    async def next(self) -> ControlEvent | None:
        if self._ended:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._ended = True
            return None
        return item  # type: ignore[return-value]

    def __aiter__(self) -> CharacteristicControl:
        return self

    async def __anext__(self) -> ControlEvent:
        event = await self.next()
        if event is None:
            raise StopAsyncIteration
        return event


class CharacteristicControlHandle:
    """Producer side of a :class:`CharacteristicControl`, held by the adapter."""

    def __init__(self, control: CharacteristicControl) -> None:
        self._control = control
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, event: ControlEvent) -> None:
        if self._closed:
            if isinstance(event, WriteRequest):
                event.expire()
            return
        self._control._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._control._queue.put_nowait(_CLOSED)


def characteristic_control() -> tuple[CharacteristicControl, CharacteristicControlHandle]:
    control = CharacteristicControl()
    return control, CharacteristicControlHandle(control)


def build_application(
    service_uuid: str,
    characteristic_uuid: str,
    control_handle: CharacteristicControlHandle,
) -> Application:
    return Application(
        services=(
            Service(
                uuid=service_uuid,
                primary=True,
                characteristics=(
                    Characteristic(
                        uuid=characteristic_uuid,
                        # Left without encrypt/authenticated/secure write: requiring
                        # encryption forces pairing on first connect, and writes from
                        # an already paired phone are then rejected as unauthenticated
                        # until the phone is trusted on this side.
                        write=CharacteristicWrite(
                            write=True,
                            write_without_response=True,
                            method=WriteMethod.IO,
                        ),
                        control_handle=control_handle,
                    ),
                ),
            ),
        ),
    )


async def register_service(
    adapter: Adapter,
    service_uuid: str,
    characteristic_uuid: str,
) -> tuple[CharacteristicControl, RegistrationHandle]:
    """Serve one primary service with one write-only characteristic.

    Returns the characteristic's control event stream and the handle that
    unregisters the application when released.
    """
    control, control_handle = characteristic_control()
    app = build_application(service_uuid, characteristic_uuid, control_handle)
    handle = await adapter.serve_gatt_application(app)
    LOGGER.info("Registered GATT application (service=%s, char=%s)", service_uuid, characteristic_uuid)
    return control, handle
