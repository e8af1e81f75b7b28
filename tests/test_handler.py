from __future__ import annotations

import asyncio

import pytest

from proxyboot.core.errors import PayloadDecodeError, WriteIOError
from proxyboot.core.gatt import BytesWriteStream, WriteRequest
from proxyboot.core.handler import handle_write


class FailingStream:
    def __init__(self) -> None:
        self.closed = False

    async def read(self, n: int) -> bytes:
        raise ConnectionResetError("peer went away")

    def close(self) -> None:
        self.closed = True


class RecordingStream(BytesWriteStream):
    def __init__(self, data: bytes) -> None:
        super().__init__(data)
        self.reads: list[int] = []
        self.was_closed = False

    async def read(self, n: int) -> bytes:
        self.reads.append(n)
        return await super().read(n)

    def close(self) -> None:
        self.was_closed = True
        super().close()


def test_reads_once_with_mtu_and_closes_stream() -> None:
    stream = RecordingStream(b"pixel-7")
    request = WriteRequest(185, lambda: stream)
    assert asyncio.run(handle_write(request)) == "pixel-7"
    assert stream.reads == [185]
    assert stream.was_closed


def test_accepting_twice_fails() -> None:
    request = WriteRequest(23, lambda: BytesWriteStream(b"pixel-7"))
    request.accept()
    with pytest.raises(WriteIOError):
        asyncio.run(handle_write(request))


def test_accepting_expired_request_fails() -> None:
    request = WriteRequest(23, lambda: BytesWriteStream(b"pixel-7"))
    request.expire()
    with pytest.raises(WriteIOError):
        asyncio.run(handle_write(request))


def test_acceptor_os_error_is_io_error() -> None:
    def acceptor() -> BytesWriteStream:
        raise OSError("socket gone")

    with pytest.raises(WriteIOError):
        asyncio.run(handle_write(WriteRequest(23, acceptor)))


def test_read_failure_is_io_error_and_closes_stream() -> None:
    stream = FailingStream()
    with pytest.raises(WriteIOError) as exc:
        asyncio.run(handle_write(WriteRequest(23, lambda: stream)))
    assert "peer went away" in str(exc.value)
    assert stream.closed


def test_invalid_utf8_raises_decode_error() -> None:
    with pytest.raises(PayloadDecodeError) as exc:
        asyncio.run(handle_write(WriteRequest(23, lambda: BytesWriteStream(b"\xff\xfe"))))
    assert "0xff" in str(exc.value)
