"""Bootstrap profiles: packaged defaults plus XDG user overrides, one YAML file each."""

from __future__ import annotations

import functools
import json
import logging
import os
import re
from collections.abc import Iterator
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from proxyboot.core.errors import ProfileLoadError, ProfileValidationError
from proxyboot.core.model import (
    DEFAULT_MANUFACTURER_DATA,
    TESTING_MANUFACTURER_ID,
    CancelSpec,
    Profile,
)

PROFILE_SUFFIXES = (".yaml", ".yml")
DEFAULT_ADAPTER = "hci0"
# Legacy advertising PDUs carry 31 bytes; the AD header and vendor id take 4 of them.
MAX_MANUFACTURER_DATA_BYTES = 27

_UUID128_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_ADAPTER_RE = re.compile(r"^hci[0-9]+$")
LOGGER = logging.getLogger(__name__)


class _ProfileYamlLoader(yaml.SafeLoader):
    """Safe loader that refuses a key given twice in one mapping."""

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
        seen: set[Any] = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    "while constructing a profile",
                    node.start_mark,
                    f"found duplicate key '{key}'",
                    key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, Profile]
    warnings: tuple[str, ...]


@functools.cache
def _schema_validator() -> Any:
    schema = json.loads(
        resources.files("proxyboot.schemas").joinpath("profile.schema.json").read_text(encoding="utf-8")
    )
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID128_RE.match(normalized):
        raise ProfileValidationError(f"{context} must be a 128-bit UUID string")
    return normalized


def normalize_adapter(value: str, *, context: str) -> str:
    if not _ADAPTER_RE.match(value):
        raise ProfileValidationError(f"{context} must name a controller like 'hci0', got '{value}'")
    return value


def _load_document(source: Path | Traversable) -> dict[str, Any]:
    try:
        content = source.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {source}: {exc}") from exc
    try:
        doc = yaml.load(content, Loader=_ProfileYamlLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {source}: {exc}") from exc
    if not isinstance(doc, dict):
        raise ProfileValidationError(f"Profile file {source} must contain a mapping at root")
    return doc


def _manufacturer_payload(manufacturer: dict[str, Any], source: Path | Traversable) -> bytes:
    if "data" not in manufacturer:
        return DEFAULT_MANUFACTURER_DATA
    # The schema pins the format to hex byte pairs, optionally space separated.
    payload = bytes.fromhex(manufacturer["data"])
    if len(payload) > MAX_MANUFACTURER_DATA_BYTES:
        raise ProfileValidationError(
            f"{source}: manufacturer.data is {len(payload)} bytes, "
            f"an advertisement fits at most {MAX_MANUFACTURER_DATA_BYTES}"
        )
    return payload


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> Profile:
    try:
        _schema_validator().validate(doc)
    except ValidationError as exc:
        where = ".".join(str(part) for part in exc.path)
        raise ProfileValidationError(
            f"Schema validation failed for {source}{f' ({where})' if where else ''}: {exc.message}"
        ) from exc

    manufacturer = doc.get("manufacturer", {})
    cancel = doc.get("cancel", {})
    timeout_s = cancel.get("timeout_s")
    return Profile(
        id=doc["id"],
        name=doc["name"],
        device_name=doc["device_name"],
        adapter=doc.get("adapter", DEFAULT_ADAPTER),
        service_uuid=doc["service_uuid"].lower(),
        proxy_name_char_uuid=doc["proxy_name_char_uuid"].lower(),
        manufacturer_id=manufacturer.get("id", TESTING_MANUFACTURER_ID),
        manufacturer_data=_manufacturer_payload(manufacturer, source),
        discoverable=doc.get("discoverable", True),
        cancel=CancelSpec(
            mode=cancel.get("mode", "stdin"),
            timeout_s=float(timeout_s) if timeout_s is not None else None,
        ),
    )


def _user_profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "proxyboot/profiles", xdg_data / "proxyboot/profiles"


def _profile_sources() -> Iterator[Path | Traversable]:
    """Yield profile files in precedence order, packaged ones first."""
    packaged = resources.files("proxyboot.profiles")
    yield from sorted(
        (item for item in packaged.iterdir() if item.name.endswith(PROFILE_SUFFIXES)),
        key=lambda item: item.name,
    )
    for directory in _user_profile_dirs():
        if directory.is_dir():
            yield from sorted(p for p in directory.iterdir() if p.suffix in PROFILE_SUFFIXES)


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, Profile] = {}
    origins: dict[str, Path | Traversable] = {}
    warnings: list[str] = []

    for source in _profile_sources():
        profile = _build_profile(_load_document(source), source)
        if profile.id in origins:
            warning = f"Profile '{profile.id}' from {source} overrides the one from {origins[profile.id]}"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile
        origins[profile.id] = source

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))
