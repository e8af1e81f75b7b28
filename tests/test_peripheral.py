from __future__ import annotations

import asyncio

import pytest

from proxyboot.core.cancellation import EventCancellation
from proxyboot.core.errors import (
    AdapterError,
    BootstrapError,
    ControlStreamClosedError,
    OperatorCancelledError,
    PayloadDecodeError,
    WriteIOError,
)
from proxyboot.core.gatt import BytesWriteStream, NotifyRequest, WriteRequest
from proxyboot.core.model import Advertisement, Application, DecodeFailure, FailureKind, ProxyName
from proxyboot.core.peripheral import advertise_and_find_proxy_device_name, find_proxy_device_name_outcome

SVC_UUID = "5f1b0c3e-7a2d-4e59-9c41-2b8d6e0f1a01"
CHAR_UUID = "5f1b0c3e-7a2d-4e59-9c41-2b8d6e0f1a02"


class FakeHandle:
    def __init__(self) -> None:
        self.releases = 0

    async def release(self) -> None:
        self.releases += 1


class FakeAdapter:
    def __init__(
        self,
        events: list[WriteRequest | NotifyRequest] | None = None,
        *,
        close_after: bool = False,
        fail_advertise: bool = False,
        fail_serve: bool = False,
    ) -> None:
        self.events = events or []
        self.close_after = close_after
        self.fail_advertise = fail_advertise
        self.fail_serve = fail_serve
        self.advertisements: list[Advertisement] = []
        self.apps: list[Application] = []
        self.adv_handle: FakeHandle | None = None
        self.app_handle: FakeHandle | None = None

    async def advertise(self, advertisement: Advertisement) -> FakeHandle:
        if self.fail_advertise:
            raise AdapterError("Failed to register advertisement: adapter powered off")
        self.advertisements.append(advertisement)
        self.adv_handle = FakeHandle()
        return self.adv_handle

    async def serve_gatt_application(self, app: Application) -> FakeHandle:
        if self.fail_serve:
            raise AdapterError("Failed to register GATT application: adapter busy")
        self.apps.append(app)
        control_handle = app.services[0].characteristics[0].control_handle
        for event in self.events:
            control_handle.push(event)
        if self.close_after:
            control_handle.close()
        self.app_handle = FakeHandle()
        return self.app_handle


class CountingWrite(WriteRequest):
    def __init__(self, data: bytes, mtu: int = 23) -> None:
        self.accepts = 0

        def acceptor() -> BytesWriteStream:
            self.accepts += 1
            return BytesWriteStream(data)

        super().__init__(mtu, acceptor)


def _run(adapter: FakeAdapter, cancel: EventCancellation | None = None) -> str:
    return asyncio.run(
        advertise_and_find_proxy_device_name(
            adapter,
            "rock4",
            SVC_UUID,
            CHAR_UUID,
            cancel or EventCancellation(),
        )
    )


def _assert_released_once(adapter: FakeAdapter) -> None:
    assert adapter.adv_handle is not None and adapter.adv_handle.releases == 1
    assert adapter.app_handle is not None and adapter.app_handle.releases == 1


def test_write_returns_proxy_device_name() -> None:
    adapter = FakeAdapter([CountingWrite(b"pixel-7")])
    assert _run(adapter) == "pixel-7"
    _assert_released_once(adapter)


def test_advertisement_and_application_layout() -> None:
    adapter = FakeAdapter([CountingWrite(b"pixel-7")])
    _run(adapter)

    advertisement = adapter.advertisements[0]
    assert advertisement.service_uuids == frozenset({SVC_UUID})
    assert advertisement.manufacturer_data == {0xFFFF: bytes([0x21, 0x22, 0x23, 0x24])}
    assert advertisement.discoverable is True
    assert advertisement.local_name == "rock4"

    service = adapter.apps[0].services[0]
    assert service.uuid == SVC_UUID
    assert service.primary is True
    assert len(service.characteristics) == 1
    characteristic = service.characteristics[0]
    assert characteristic.uuid == CHAR_UUID
    assert "write" in characteristic.write.flags()
    assert not any(flag.startswith(("encrypt", "secure")) for flag in characteristic.write.flags())


def test_invalid_utf8_is_decode_failure() -> None:
    adapter = FakeAdapter([CountingWrite(bytes([0xFF, 0xFE]))])
    with pytest.raises(PayloadDecodeError) as exc:
        _run(adapter)
    assert exc.value.kind is FailureKind.DECODE
    assert "not a UTF8-encoded string" in str(exc.value)
    _assert_released_once(adapter)


def test_decode_failure_is_not_retried() -> None:
    second = CountingWrite(b"pixel-7")
    adapter = FakeAdapter([CountingWrite(bytes([0xFF, 0xFE])), second])
    with pytest.raises(PayloadDecodeError):
        _run(adapter)
    assert second.accepts == 0


def test_cancel_before_any_write() -> None:
    cancel = EventCancellation()
    cancel.cancel()
    adapter = FakeAdapter()
    with pytest.raises(OperatorCancelledError) as exc:
        _run(adapter, cancel)
    assert exc.value.kind is FailureKind.CANCELLED
    _assert_released_once(adapter)


def test_cancel_while_waiting() -> None:
    adapter = FakeAdapter()

    async def scenario() -> None:
        cancel = EventCancellation()
        asyncio.get_running_loop().call_later(0.01, cancel.cancel)
        await advertise_and_find_proxy_device_name(adapter, "rock4", SVC_UUID, CHAR_UUID, cancel)

    with pytest.raises(OperatorCancelledError):
        asyncio.run(scenario())
    _assert_released_once(adapter)


def test_cancellation_wins_over_simultaneous_write() -> None:
    write = CountingWrite(b"pixel-7")
    cancel = EventCancellation()
    cancel.cancel()
    adapter = FakeAdapter([write])

    with pytest.raises(OperatorCancelledError):
        _run(adapter, cancel)
    assert write.accepts == 0
    _assert_released_once(adapter)


def test_registration_failure_releases_only_created_handles() -> None:
    adapter = FakeAdapter(fail_serve=True)
    with pytest.raises(AdapterError):
        _run(adapter)
    assert adapter.adv_handle is not None and adapter.adv_handle.releases == 1
    assert adapter.app_handle is None


def test_advertise_failure_registers_nothing() -> None:
    adapter = FakeAdapter(fail_advertise=True)
    with pytest.raises(AdapterError):
        _run(adapter)
    assert adapter.adv_handle is None
    assert adapter.apps == []


def test_notify_request_keeps_listening() -> None:
    adapter = FakeAdapter([NotifyRequest(mtu=23), CountingWrite(b"pixel-7")])
    assert _run(adapter) == "pixel-7"
    _assert_released_once(adapter)


def test_stream_closed_without_write() -> None:
    adapter = FakeAdapter([NotifyRequest(mtu=23)], close_after=True)
    with pytest.raises(ControlStreamClosedError) as exc:
        _run(adapter)
    assert isinstance(exc.value, BootstrapError)
    assert exc.value.kind is FailureKind.STREAM_CLOSED
    _assert_released_once(adapter)


def test_only_first_write_is_accepted() -> None:
    first = CountingWrite(b"pixel-7")
    second = CountingWrite(b"pixel-8")
    adapter = FakeAdapter([first, second])
    assert _run(adapter) == "pixel-7"
    assert first.accepts == 1
    assert second.accepts == 0


def test_write_is_limited_to_one_mtu() -> None:
    adapter = FakeAdapter([CountingWrite(b"pixel-7-pro", mtu=7)])
    assert _run(adapter) == "pixel-7"


def test_empty_write_is_valid() -> None:
    adapter = FakeAdapter([CountingWrite(b"")])
    assert _run(adapter) == ""


def test_multibyte_utf8_name() -> None:
    name = "téléphone-ü"
    adapter = FakeAdapter([CountingWrite(name.encode("utf-8"), mtu=64)])
    assert _run(adapter) == name


def test_outcome_keeps_failure_distinct() -> None:
    async def outcome_for(adapter: FakeAdapter):
        return await find_proxy_device_name_outcome(adapter, "rock4", SVC_UUID, CHAR_UUID, EventCancellation())

    decoded = asyncio.run(outcome_for(FakeAdapter([CountingWrite(bytes([0xC3]))])))
    assert isinstance(decoded, DecodeFailure)
    assert "not a UTF8-encoded string" in decoded.detail

    ok = asyncio.run(outcome_for(FakeAdapter([CountingWrite(b"pixel-7")])))
    assert ok == ProxyName("pixel-7")


def test_custom_manufacturer_data() -> None:
    adapter = FakeAdapter([CountingWrite(b"pixel-7")])
    asyncio.run(
        advertise_and_find_proxy_device_name(
            adapter,
            "rock4",
            SVC_UUID,
            CHAR_UUID,
            EventCancellation(),
            manufacturer_id=0x1234,
            manufacturer_data=b"\x01",
            discoverable=False,
        )
    )
    advertisement = adapter.advertisements[0]
    assert advertisement.manufacturer_data == {0x1234: b"\x01"}
    assert advertisement.discoverable is False


class BrokenStream:
    def __init__(self) -> None:
        self.closed = False

    async def read(self, n: int) -> bytes:
        raise ConnectionResetError("central disconnected")

    def close(self) -> None:
        self.closed = True


def test_write_io_error_propagates_and_releases_once() -> None:
    stream = BrokenStream()
    adapter = FakeAdapter([WriteRequest(23, lambda: stream)])
    with pytest.raises(WriteIOError) as exc:
        _run(adapter)
    assert not isinstance(exc.value, BootstrapError)
    assert "central disconnected" in str(exc.value)
    assert stream.closed
    _assert_released_once(adapter)
