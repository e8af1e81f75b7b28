from __future__ import annotations

from pathlib import Path

import pytest

from proxyboot.api import BootstrapResult, Client, EventCancellation, PayloadDecodeError
from proxyboot.core.gatt import BytesWriteStream, WriteRequest


@pytest.fixture(autouse=True)
def _isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


class FakeHandle:
    async def release(self) -> None:
        pass


class FakeAdapter:
    def __init__(self, payload: bytes) -> None:
        self.payload = payload

    async def advertise(self, advertisement):
        return FakeHandle()

    async def serve_gatt_application(self, app):
        payload = self.payload
        app.services[0].characteristics[0].control_handle.push(
            WriteRequest(23, lambda: BytesWriteStream(payload))
        )
        return FakeHandle()


def test_public_client_list_profiles() -> None:
    client = Client(adapter=FakeAdapter(b"pixel-7"))
    profiles = client.list_profiles()
    assert any(p.id == "default" for p in profiles)


def test_public_client_find_proxy_device_name() -> None:
    client = Client(adapter=FakeAdapter(b"pixel-7"))
    result = client.find_proxy_device_name(device_name="rock4", cancel=EventCancellation())
    assert isinstance(result, BootstrapResult)
    assert result.proxy_device_name == "pixel-7"
    assert result.device_name == "rock4"


def test_public_client_surfaces_decode_failure() -> None:
    client = Client(adapter=FakeAdapter(b"\xff\xfe"))
    with pytest.raises(PayloadDecodeError):
        client.find_proxy_device_name(cancel=EventCancellation())
