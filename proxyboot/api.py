"""Stable public API for building tooling on top of proxyboot.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from proxyboot.adapters.base import Adapter, RegistrationHandle
from proxyboot.core.cancellation import (
    AnyCancellation,
    CancellationSource,
    ConsoleLineCancellation,
    EventCancellation,
    SignalCancellation,
    TimeoutCancellation,
)
from proxyboot.core.errors import (
    AdapterError,
    BootstrapError,
    ControlStreamClosedError,
    OperatorCancelledError,
    PayloadDecodeError,
    ProfileLoadError,
    ProfileResolutionError,
    ProfileValidationError,
    ProxybootError,
    WriteIOError,
)
from proxyboot.core.model import BootstrapResult, FailureKind, Profile
from proxyboot.core.peripheral import advertise_and_find_proxy_device_name
from proxyboot.core.service import BootstrapService

__all__ = [
    "ProxybootError",
    "ProfileLoadError",
    "ProfileResolutionError",
    "ProfileValidationError",
    "AdapterError",
    "WriteIOError",
    "BootstrapError",
    "PayloadDecodeError",
    "ControlStreamClosedError",
    "OperatorCancelledError",
    "FailureKind",
    "Adapter",
    "RegistrationHandle",
    "BootstrapResult",
    "Profile",
    "CancellationSource",
    "AnyCancellation",
    "ConsoleLineCancellation",
    "EventCancellation",
    "SignalCancellation",
    "TimeoutCancellation",
    "advertise_and_find_proxy_device_name",
    "Client",
]


class Client:
    """Public client for running proxy device name bootstraps.

    A `Client` instance wraps profile loading and the bootstrap run behind a
    stable API intended for third-party tools (GUI/TUI/services/scripts). Pass
    `adapter` to drive something other than the local BlueZ controller.
    """

    def __init__(self, *, adapter: Adapter | None = None) -> None:
        self._service = BootstrapService(adapter=adapter)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def runtime_warnings(self) -> tuple[str, ...]:
        return self._service.runtime_warnings

    def list_profiles(self) -> list[Profile]:
        return self._service.list_profiles()

    def get_profile(self, profile_id: str | None = None, *, device_name: str | None = None) -> Profile:
        return self._service.resolve_profile(profile_id, device_name=device_name)

    def find_proxy_device_name(
        self,
        profile_id: str | None = None,
        *,
        device_name: str | None = None,
        cancel: CancellationSource | None = None,
    ) -> BootstrapResult:
        profile = self._service.resolve_profile(profile_id, device_name=device_name)
        return self._service.find_proxy_device_name(profile, cancel=cancel)

    async def find_proxy_device_name_async(
        self,
        profile_id: str | None = None,
        *,
        device_name: str | None = None,
        cancel: CancellationSource | None = None,
    ) -> BootstrapResult:
        profile = self._service.resolve_profile(profile_id, device_name=device_name)
        return await self._service.run_profile(profile, cancel=cancel)
