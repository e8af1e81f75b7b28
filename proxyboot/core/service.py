"""Service layer used by CLI and future UI frontends."""

from __future__ import annotations

import asyncio
import dataclasses
import sys

from proxyboot.adapters.base import Adapter
from proxyboot.core.cancellation import CANCEL_MODES, CancellationSource, build_cancellation
from proxyboot.core.errors import ProfileResolutionError, ProfileValidationError
from proxyboot.core.model import BootstrapResult, CancelSpec, Profile
from proxyboot.core.peripheral import advertise_and_find_proxy_device_name
from proxyboot.core.profile_loader import load_profiles, normalize_adapter, normalize_uuid

DEFAULT_PROFILE_ID = "default"


class BootstrapService:
    def __init__(self, *, adapter: Adapter | None = None) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        self.runtime_warnings = _runtime_warnings()
        self.adapter = adapter

    def list_profiles(self) -> list[Profile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    def resolve_profile(
        self,
        profile_id: str | None = None,
        *,
        device_name: str | None = None,
        adapter: str | None = None,
        service_uuid: str | None = None,
        proxy_name_char_uuid: str | None = None,
        cancel_mode: str | None = None,
        timeout_s: float | None = None,
    ) -> Profile:
        wanted = profile_id or DEFAULT_PROFILE_ID
        profile = self.profiles.get(wanted)
        if profile is None:
            available = ", ".join(sorted(self.profiles)) or "<none>"
            raise ProfileResolutionError(f"Unknown profile '{wanted}'. Available: {available}")

        changes: dict[str, object] = {}
        if device_name is not None:
            if not device_name:
                raise ProfileResolutionError("Device name must not be empty")
            changes["device_name"] = device_name
        try:
            if adapter is not None:
                changes["adapter"] = normalize_adapter(adapter, context="--adapter")
            if service_uuid is not None:
                changes["service_uuid"] = normalize_uuid(service_uuid, context="--service-uuid")
            if proxy_name_char_uuid is not None:
                changes["proxy_name_char_uuid"] = normalize_uuid(proxy_name_char_uuid, context="--char-uuid")
        except ProfileValidationError as exc:
            raise ProfileResolutionError(str(exc)) from exc

        if cancel_mode is not None or timeout_s is not None:
            mode = cancel_mode if cancel_mode is not None else profile.cancel.mode
            if mode not in CANCEL_MODES:
                allowed = ", ".join(CANCEL_MODES)
                raise ProfileResolutionError(f"Unsupported cancel mode '{mode}'. Allowed: {allowed}")
            if timeout_s is not None and timeout_s <= 0:
                raise ProfileResolutionError("Timeout must be a positive number of seconds")
            changes["cancel"] = CancelSpec(
                mode=mode,
                timeout_s=timeout_s if timeout_s is not None else profile.cancel.timeout_s,
            )

        return dataclasses.replace(profile, **changes) if changes else profile

    def find_proxy_device_name(
        self,
        profile: Profile,
        *,
        cancel: CancellationSource | None = None,
    ) -> BootstrapResult:
        return asyncio.run(self.run_profile(profile, cancel=cancel))

    async def run_profile(
        self,
        profile: Profile,
        *,
        cancel: CancellationSource | None = None,
    ) -> BootstrapResult:
        if cancel is None:
            cancel = build_cancellation(profile.cancel.mode, profile.cancel.timeout_s)

        if self.adapter is not None:
            proxy_device_name = await _bootstrap(self.adapter, profile, cancel)
        else:
            from proxyboot.adapters.bluez import BlueZAdapter

            async with BlueZAdapter(profile.adapter) as adapter:
                proxy_device_name = await _bootstrap(adapter, profile, cancel)

        return BootstrapResult(
            profile=profile,
            device_name=profile.device_name,
            proxy_device_name=proxy_device_name,
        )


async def _bootstrap(adapter: Adapter, profile: Profile, cancel: CancellationSource) -> str:
    return await advertise_and_find_proxy_device_name(
        adapter,
        profile.device_name,
        profile.service_uuid,
        profile.proxy_name_char_uuid,
        cancel,
        manufacturer_id=profile.manufacturer_id,
        manufacturer_data=profile.manufacturer_data,
        discoverable=profile.discoverable,
    )


def _runtime_warnings() -> tuple[str, ...]:
    warnings: list[str] = []
    if not sys.platform.startswith("linux"):
        warnings.append(
            f"BlueZ adapter requires Linux (running on {sys.platform}); only injected adapters will work."
        )
    return tuple(warnings)
