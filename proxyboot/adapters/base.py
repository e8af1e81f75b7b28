"""Adapter interfaces."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from proxyboot.core.model import Advertisement, Application


class RegistrationHandle(Protocol):
    async def release(self) -> None:
        """Deactivate the advertisement or unregister the application."""


class Adapter(Protocol):
    async def advertise(self, advertisement: Advertisement) -> RegistrationHandle:
        """Register an LE advertisement and return its live handle."""

    async def serve_gatt_application(self, app: Application) -> RegistrationHandle:
        """Register a local GATT application and return its live handle."""
