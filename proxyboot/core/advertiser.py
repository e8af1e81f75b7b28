"""LE advertisement construction and activation."""

from __future__ import annotations

import logging

from proxyboot.adapters.base import Adapter, RegistrationHandle
from proxyboot.core.model import (
    DEFAULT_MANUFACTURER_DATA,
    TESTING_MANUFACTURER_ID,
    Advertisement,
)

LOGGER = logging.getLogger(__name__)


def build_advertisement(
    device_name: str,
    service_uuid: str,
    *,
    manufacturer_id: int = TESTING_MANUFACTURER_ID,
    manufacturer_data: bytes = DEFAULT_MANUFACTURER_DATA,
    discoverable: bool = True,
) -> Advertisement:
    if not 0 <= manufacturer_id <= 0xFFFF:
        raise ValueError(f"Manufacturer id {manufacturer_id:#x} is not a 16-bit value")
    if not manufacturer_data:
        raise ValueError("Manufacturer data must not be empty")
    return Advertisement(
        service_uuids=frozenset({service_uuid}),
        manufacturer_data={manufacturer_id: bytes(manufacturer_data)},
        discoverable=discoverable,
        local_name=device_name,
    )


async def begin_advertising(
    adapter: Adapter,
    device_name: str,
    service_uuid: str,
    *,
    manufacturer_id: int = TESTING_MANUFACTURER_ID,
    manufacturer_data: bytes = DEFAULT_MANUFACTURER_DATA,
    discoverable: bool = True,
) -> RegistrationHandle:
    advertisement = build_advertisement(
        device_name,
        service_uuid,
        manufacturer_id=manufacturer_id,
        manufacturer_data=manufacturer_data,
        discoverable=discoverable,
    )
    handle = await adapter.advertise(advertisement)
    LOGGER.info("Registered advertisement")
    return handle
