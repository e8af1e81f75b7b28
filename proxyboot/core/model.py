"""Core data models used across loader, peripheral, service, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from proxyboot.core.gatt import CharacteristicControlHandle

# Bluetooth SIG reserves 0xffff for testing, so scanners treat it as such.
TESTING_MANUFACTURER_ID = 0xFFFF
DEFAULT_MANUFACTURER_DATA = bytes([0x21, 0x22, 0x23, 0x24])


@dataclass(frozen=True)
class Advertisement:
    service_uuids: frozenset[str]
    manufacturer_data: dict[int, bytes]
    discoverable: bool
    local_name: str


class WriteMethod(str, Enum):
    # Handler reads bytes from an acquired stream.
    IO = "io"
    # Server buffers the value and dispatches it.
    FUN = "fun"


@dataclass(frozen=True)
class CharacteristicWrite:
    write: bool = True
    write_without_response: bool = False
    encrypt_write: bool = False
    encrypt_authenticated_write: bool = False
    secure_write: bool = False
    method: WriteMethod = WriteMethod.IO

    def flags(self) -> list[str]:
        """BlueZ GattCharacteristic1 flag strings for this permission set."""
        flags: list[str] = []
        if self.write:
            flags.append("write")
        if self.write_without_response:
            flags.append("write-without-response")
        if self.encrypt_write:
            flags.append("encrypt-write")
        if self.encrypt_authenticated_write:
            flags.append("encrypt-authenticated-write")
        if self.secure_write:
            flags.append("secure-write")
        return flags


@dataclass(frozen=True)
class Characteristic:
    uuid: str
    write: CharacteristicWrite
    control_handle: CharacteristicControlHandle = field(compare=False)


@dataclass(frozen=True)
class Service:
    uuid: str
    primary: bool
    characteristics: tuple[Characteristic, ...]


@dataclass(frozen=True)
class Application:
    services: tuple[Service, ...]


@dataclass(frozen=True)
class CancelSpec:
    mode: str = "stdin"
    timeout_s: float | None = None


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    device_name: str
    adapter: str
    service_uuid: str
    proxy_name_char_uuid: str
    manufacturer_id: int = TESTING_MANUFACTURER_ID
    manufacturer_data: bytes = DEFAULT_MANUFACTURER_DATA
    discoverable: bool = True
    cancel: CancelSpec = CancelSpec()


class FailureKind(str, Enum):
    DECODE = "decode"
    STREAM_CLOSED = "stream_closed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProxyName:
    value: str


@dataclass(frozen=True)
class DecodeFailure:
    detail: str


@dataclass(frozen=True)
class StreamClosed:
    pass


@dataclass(frozen=True)
class OperatorCancelled:
    pass


Outcome = ProxyName | DecodeFailure | StreamClosed | OperatorCancelled


@dataclass(frozen=True)
class BootstrapResult:
    profile: Profile
    device_name: str
    proxy_device_name: str
