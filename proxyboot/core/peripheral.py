"""Peripheral side of the proxy device name bootstrap."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from typing import assert_never

from proxyboot.adapters.base import Adapter, RegistrationHandle
from proxyboot.core.advertiser import begin_advertising
from proxyboot.core.arbiter import wait_for_outcome
from proxyboot.core.cancellation import CancellationSource
from proxyboot.core.errors import ControlStreamClosedError, OperatorCancelledError, PayloadDecodeError
from proxyboot.core.gatt import register_service
from proxyboot.core.model import (
    DEFAULT_MANUFACTURER_DATA,
    TESTING_MANUFACTURER_ID,
    DecodeFailure,
    OperatorCancelled,
    Outcome,
    ProxyName,
    StreamClosed,
)

LOGGER = logging.getLogger(__name__)


async def find_proxy_device_name_outcome(
    adapter: Adapter,
    device_name: str,
    svc_uuid: str,
    proxy_device_name_char_uuid: str,
    cancel: CancellationSource,
    *,
    manufacturer_id: int = TESTING_MANUFACTURER_ID,
    manufacturer_data: bytes = DEFAULT_MANUFACTURER_DATA,
    discoverable: bool = True,
) -> Outcome:
    """Advertise, serve the proxy name characteristic and wait for a terminal outcome.

    Both registrations are released before this returns or raises. Adapter and
    write I/O failures are raised; every other ending is returned as an outcome.
    """
    async with AsyncExitStack() as stack:
        adv_handle = await begin_advertising(
            adapter,
            device_name,
            svc_uuid,
            manufacturer_id=manufacturer_id,
            manufacturer_data=manufacturer_data,
            discoverable=discoverable,
        )
        stack.push_async_callback(_release, adv_handle, "advertisement")

        char_control, app_handle = await register_service(adapter, svc_uuid, proxy_device_name_char_uuid)
        stack.push_async_callback(_release, app_handle, "GATT application")

        LOGGER.info("Advertising proxy device name char to be written to. Local device name: %s", device_name)
        LOGGER.info("Waiting for proxy device name to be written. %s", cancel.hint)
        return await wait_for_outcome(char_control, cancel)


async def advertise_and_find_proxy_device_name(
    adapter: Adapter,
    device_name: str,
    svc_uuid: str,
    proxy_device_name_char_uuid: str,
    cancel: CancellationSource,
    *,
    manufacturer_id: int = TESTING_MANUFACTURER_ID,
    manufacturer_data: bytes = DEFAULT_MANUFACTURER_DATA,
    discoverable: bool = True,
) -> str:
    """Advertise a peripheral device:

    - with adapter `adapter`
    - named `device_name`
    - with a service IDed as `svc_uuid`
    - with a characteristic IDed as `proxy_device_name_char_uuid`

    Waits for a BLE central to write a UTF8-encoded string to that characteristic and
    returns the written value. Runs that end without one raise a `BootstrapError`.
    """
    outcome = await find_proxy_device_name_outcome(
        adapter,
        device_name,
        svc_uuid,
        proxy_device_name_char_uuid,
        cancel,
        manufacturer_id=manufacturer_id,
        manufacturer_data=manufacturer_data,
        discoverable=discoverable,
    )
    return unwrap_outcome(outcome)


def unwrap_outcome(outcome: Outcome) -> str:
    match outcome:
        case ProxyName(value=value):
            return value
        case DecodeFailure(detail=detail):
            raise PayloadDecodeError(detail)
        case StreamClosed():
            raise ControlStreamClosedError(
                "Failed to collect a proxy device name: characteristic event stream closed"
            )
        case OperatorCancelled():
            raise OperatorCancelledError("Failed to collect a proxy device name: cancelled by operator")
        case _:
            assert_never(outcome)


async def _release(handle: RegistrationHandle, what: str) -> None:
    await handle.release()
    LOGGER.debug("Released %s", what)
