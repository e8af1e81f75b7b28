"""Characteristic write handling."""

from __future__ import annotations

import logging

from proxyboot.core.errors import PayloadDecodeError, WriteIOError
from proxyboot.core.gatt import WriteRequest

LOGGER = logging.getLogger(__name__)


async def handle_write(request: WriteRequest) -> str:
    """Accept ``request``, read one MTU worth of bytes and decode them as UTF-8.

    Writes larger than one MTU are not reassembled: only the first read counts.
    """
    mtu = request.mtu
    LOGGER.debug("Accepting write request event with MTU %d", mtu)
    stream = request.accept()
    try:
        try:
            data = await stream.read(mtu)
        except OSError as exc:
            raise WriteIOError(f"Could not read written proxy device name: {exc}") from exc
    finally:
        stream.close()

    try:
        return data[:mtu].decode("utf-8")
    except UnicodeDecodeError as exc:
        raise PayloadDecodeError(
            f"Written proxy device name is not a UTF8-encoded string: {exc}"
        ) from exc
