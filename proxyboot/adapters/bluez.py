"""BlueZ adapter implementation over the system D-Bus.

dbus-next reads D-Bus signatures from annotations, so this module must not use
postponed evaluation of annotations.
"""

import asyncio
import itertools
import logging
import socket
from typing import Any

from dbus_next import BusType, Variant
from dbus_next.aio import MessageBus, ProxyInterface
from dbus_next.constants import PropertyAccess
from dbus_next.errors import DBusError, InterfaceNotFoundError, InvalidObjectPathError
from dbus_next.service import ServiceInterface, dbus_property, method

from proxyboot.core.errors import AdapterError
from proxyboot.core.gatt import BytesWriteStream, NotifyRequest, WriteRequest
from proxyboot.core.model import Advertisement, Application, Characteristic, Service, WriteMethod

BLUEZ = "org.bluez"
ADAPTER_IFACE = "org.bluez.Adapter1"
GATT_MANAGER_IFACE = "org.bluez.GattManager1"
LE_ADV_MANAGER_IFACE = "org.bluez.LEAdvertisingManager1"
LE_ADV_IFACE = "org.bluez.LEAdvertisement1"
GATT_SERVICE_IFACE = "org.bluez.GattService1"
GATT_CHRC_IFACE = "org.bluez.GattCharacteristic1"
OBJECT_MANAGER_IFACE = "org.freedesktop.DBus.ObjectManager"

BASE_PATH = "/org/proxyboot"
DEFAULT_ATT_MTU = 23

LOGGER = logging.getLogger(__name__)
_object_ids = itertools.count()


def _option(options: dict[str, Variant], key: str, default: Any) -> Any:
    variant = options.get(key)
    return variant.value if variant is not None else default


class SocketWriteStream:
    """Accepted end of an ``AcquireWrite`` socket pair."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    async def read(self, n: int) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.sock_recv(self._sock, n)

    def close(self) -> None:
        self._sock.close()


class LEAdvertisement(ServiceInterface):
    def __init__(self, advertisement: Advertisement):
        super().__init__(LE_ADV_IFACE)
        self.advertisement = advertisement

    @dbus_property(access=PropertyAccess.READ)
    def Type(self) -> "s":  # type: ignore
        return "peripheral"

    @dbus_property(access=PropertyAccess.READ)
    def ServiceUUIDs(self) -> "as":  # type: ignore
        return sorted(self.advertisement.service_uuids)

    @dbus_property(access=PropertyAccess.READ)
    def ManufacturerData(self) -> "a{qv}":  # type: ignore
        return {
            vendor_id: Variant("ay", payload)
            for vendor_id, payload in self.advertisement.manufacturer_data.items()
        }

    @dbus_property(access=PropertyAccess.READ)
    def Discoverable(self) -> "b":  # type: ignore
        return self.advertisement.discoverable

    @dbus_property(access=PropertyAccess.READ)
    def LocalName(self) -> "s":  # type: ignore
        return self.advertisement.local_name

    @method()
    def Release(self):
        LOGGER.debug("BlueZ released advertisement %s", self.advertisement.local_name)


class GattService(ServiceInterface):
    def __init__(self, service: Service):
        super().__init__(GATT_SERVICE_IFACE)
        self.service = service

    def managed_properties(self) -> dict[str, Variant]:
        return {
            "UUID": Variant("s", self.service.uuid),
            "Primary": Variant("b", self.service.primary),
        }

    @dbus_property(access=PropertyAccess.READ)
    def UUID(self) -> "s":  # type: ignore
        return self.service.uuid

    @dbus_property(access=PropertyAccess.READ)
    def Primary(self) -> "b":  # type: ignore
        return self.service.primary


class GattCharacteristic(ServiceInterface):
    """Characteristic that forwards BlueZ write/notify calls as control events."""

    def __init__(self, characteristic: Characteristic, service_path: str):
        super().__init__(GATT_CHRC_IFACE)
        self.characteristic = characteristic
        self.service_path = service_path
        self._sockets: list[socket.socket] = []
        self._requests: list[WriteRequest] = []

    def managed_properties(self) -> dict[str, Variant]:
        properties = {
            "UUID": Variant("s", self.characteristic.uuid),
            "Service": Variant("o", self.service_path),
            "Flags": Variant("as", self.characteristic.write.flags()),
        }
        if self.characteristic.write.method is WriteMethod.IO:
            properties["WriteAcquired"] = Variant("b", False)
        return properties

    def _push_write(self, request: WriteRequest) -> None:
        handle = self.characteristic.control_handle
        if handle.closed:
            raise DBusError("org.bluez.Error.Failed", "Characteristic is no longer served")
        self._requests.append(request)
        handle.push(request)

    def release(self) -> None:
        for request in self._requests:
            request.expire()
        for sock in self._sockets:
            sock.close()
        self._sockets.clear()
        self.characteristic.control_handle.close()

    @dbus_property(access=PropertyAccess.READ)
    def UUID(self) -> "s":  # type: ignore
        return self.characteristic.uuid

    @dbus_property(access=PropertyAccess.READ)
    def Service(self) -> "o":  # type: ignore
        return self.service_path

    @dbus_property(access=PropertyAccess.READ)
    def Flags(self) -> "as":  # type: ignore
        return self.characteristic.write.flags()

    @dbus_property(access=PropertyAccess.READ)
    def WriteAcquired(self) -> "b":  # type: ignore
        return False

    def write_value(self, value: bytes, options: dict[str, Variant]) -> None:
        data = bytes(value)
        mtu = _option(options, "mtu", len(data))
        self._push_write(WriteRequest(mtu, lambda: BytesWriteStream(data)))

    def acquire_write(self, options: dict[str, Variant]) -> list[int]:
        if self.characteristic.write.method is not WriteMethod.IO:
            raise DBusError("org.bluez.Error.NotSupported", "Characteristic does not use the I/O write method")
        mtu = _option(options, "mtu", DEFAULT_ATT_MTU)
        ours, theirs = socket.socketpair(socket.AF_UNIX, socket.SOCK_SEQPACKET)
        ours.setblocking(False)
        self._sockets.extend((ours, theirs))

        def accept() -> SocketWriteStream:
            # The reply carrying theirs is flushed before the request is
            # dequeued. BlueZ then holds the only peer end, so its close
            # reaches our reader as EOF.
            self._sockets.remove(ours)
            self._sockets.remove(theirs)
            theirs.close()
            return SocketWriteStream(ours)

        self._push_write(WriteRequest(mtu, accept))
        return [theirs.fileno(), mtu]

    def acquire_notify(self, options: dict[str, Variant]) -> None:
        self.characteristic.control_handle.push(NotifyRequest(_option(options, "mtu", DEFAULT_ATT_MTU)))
        raise DBusError("org.bluez.Error.NotSupported", "Characteristic is write-only")

    @method()
    def WriteValue(self, value: "ay", options: "a{sv}"):  # type: ignore
        self.write_value(value, options)

    @method()
    def AcquireWrite(self, options: "a{sv}") -> "hq":  # type: ignore
        return self.acquire_write(options)

    # Flags never include notify; a client that asks anyway still shows up as a NotifyRequest.
    @method()
    def AcquireNotify(self, options: "a{sv}") -> "hq":  # type: ignore
        self.acquire_notify(options)


class GattObjectManager(ServiceInterface):
    def __init__(self, objects: list[tuple[str, GattService | GattCharacteristic]]):
        super().__init__(OBJECT_MANAGER_IFACE)
        self.objects = objects

    def managed_objects(self) -> dict[str, dict[str, dict[str, Variant]]]:
        return {path: {iface.name: iface.managed_properties()} for path, iface in self.objects}

    @method()
    def GetManagedObjects(self) -> "a{oa{sa{sv}}}":  # type: ignore
        return self.managed_objects()


class BlueZAdvertisementHandle:
    def __init__(self, bus: MessageBus, manager: ProxyInterface, path: str) -> None:
        self._bus = bus
        self._manager = manager
        self._path = path
        self._released = False

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            await self._manager.call_unregister_advertisement(self._path)
        except DBusError as exc:
            LOGGER.warning("Could not unregister advertisement %s: %s", self._path, exc.text)
        finally:
            self._bus.unexport(self._path)


class BlueZApplicationHandle:
    def __init__(
        self,
        bus: MessageBus,
        manager: ProxyInterface,
        path: str,
        objects: list[tuple[str, GattService | GattCharacteristic]],
    ) -> None:
        self._bus = bus
        self._manager = manager
        self._path = path
        self._objects = objects
        self._released = False

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            await self._manager.call_unregister_application(self._path)
        except DBusError as exc:
            LOGGER.warning("Could not unregister GATT application %s: %s", self._path, exc.text)
        finally:
            _unexport(self._bus, self._path, self._objects)


def _unexport(
    bus: MessageBus,
    app_path: str,
    objects: list[tuple[str, GattService | GattCharacteristic]],
) -> None:
    for path, iface in objects:
        if isinstance(iface, GattCharacteristic):
            iface.release()
        bus.unexport(path)
    bus.unexport(app_path)


class BlueZAdapter:
    """Advertising and GATT server capability of one BlueZ controller."""

    def __init__(self, name: str = "hci0", *, bus: MessageBus | None = None) -> None:
        self.name = name
        self._bus = bus
        self._owns_bus = bus is None
        self._adv_manager: ProxyInterface | None = None
        self._gatt_manager: ProxyInterface | None = None

    async def __aenter__(self) -> "BlueZAdapter":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    async def open(self) -> None:
        if self._bus is None:
            try:
                self._bus = await MessageBus(bus_type=BusType.SYSTEM, negotiate_unix_fd=True).connect()
            except (DBusError, OSError) as exc:
                raise AdapterError(f"Could not connect to the system D-Bus: {exc}") from exc

        path = f"/org/bluez/{self.name}"
        try:
            introspection = await self._bus.introspect(BLUEZ, path)
        except InvalidObjectPathError as exc:
            raise AdapterError(f"Invalid Bluetooth adapter name '{self.name}': {exc}") from exc
        except DBusError as exc:
            raise AdapterError(f"Bluetooth adapter '{self.name}' not found: {exc.text}") from exc

        proxy = self._bus.get_proxy_object(BLUEZ, path, introspection)
        try:
            adapter_iface = proxy.get_interface(ADAPTER_IFACE)
            self._adv_manager = proxy.get_interface(LE_ADV_MANAGER_IFACE)
            self._gatt_manager = proxy.get_interface(GATT_MANAGER_IFACE)
        except InterfaceNotFoundError as exc:
            raise AdapterError(
                f"Bluetooth adapter '{self.name}' does not support LE advertising and GATT serving: {exc}"
            ) from exc

        try:
            powered = await adapter_iface.get_powered()
        except DBusError as exc:
            raise AdapterError(f"Could not query power state of '{self.name}': {exc.text}") from exc
        if not powered:
            raise AdapterError(f"Bluetooth adapter '{self.name}' is powered off")

    def close(self) -> None:
        if self._owns_bus and self._bus is not None:
            self._bus.disconnect()
            self._bus = None

    def _require(self, manager: ProxyInterface | None) -> tuple[MessageBus, ProxyInterface]:
        if self._bus is None or manager is None:
            raise AdapterError(f"Bluetooth adapter '{self.name}' is not open")
        return self._bus, manager

    async def advertise(self, advertisement: Advertisement) -> BlueZAdvertisementHandle:
        bus, manager = self._require(self._adv_manager)
        path = f"{BASE_PATH}/advertisement{next(_object_ids)}"
        bus.export(path, LEAdvertisement(advertisement))
        try:
            await manager.call_register_advertisement(path, {})
        except DBusError as exc:
            bus.unexport(path)
            raise AdapterError(f"Failed to register advertisement: {exc.text}") from exc
        return BlueZAdvertisementHandle(bus, manager, path)

    async def serve_gatt_application(self, app: Application) -> BlueZApplicationHandle:
        bus, manager = self._require(self._gatt_manager)
        app_path = f"{BASE_PATH}/app{next(_object_ids)}"
        objects: list[tuple[str, GattService | GattCharacteristic]] = []
        for service_index, service in enumerate(app.services):
            service_path = f"{app_path}/service{service_index}"
            objects.append((service_path, GattService(service)))
            for char_index, characteristic in enumerate(service.characteristics):
                objects.append(
                    (f"{service_path}/char{char_index}", GattCharacteristic(characteristic, service_path))
                )

        bus.export(app_path, GattObjectManager(objects))
        for path, iface in objects:
            bus.export(path, iface)

        try:
            await manager.call_register_application(app_path, {})
        except DBusError as exc:
            _unexport(bus, app_path, objects)
            raise AdapterError(f"Failed to register GATT application: {exc.text}") from exc
        return BlueZApplicationHandle(bus, manager, app_path, objects)
