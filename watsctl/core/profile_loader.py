"""Profile loading and validation for YAML-based watsctl device profiles."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from watsctl.core.errors import ProfileLoadError, ProfileValidationError
from watsctl.core.frames import BITMASK_POLICIES
from watsctl.core.model import Profile, ProtocolSpec, TransportSpec

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_MAX_QUERY_LENGTH = 20
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ProfileValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, Profile]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("watsctl.schemas").joinpath("profile.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "watsctl/profiles", xdg_data / "watsctl/profiles"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return loaded


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ProfileValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalized


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ProfileValidationError(f"{context} must be boolean true/false")


def _positive_seconds(value: Any, *, context: str) -> float:
    seconds = float(value)
    if seconds <= 0:
        raise ProfileValidationError(f"{context} must be greater than zero")
    return seconds


def _normalize_query(value: str, *, context: str) -> str:
    query = value.strip()
    if not query or len(query) > _MAX_QUERY_LENGTH or not query.isascii():
        raise ProfileValidationError(
            f"{context} must be 1-{_MAX_QUERY_LENGTH} ASCII characters"
        )
    return query


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> Profile:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    transport_doc = doc["transport"]
    if transport_doc["type"] != "ble":
        raise ProfileValidationError(
            f"Unsupported transport type '{transport_doc['type']}' in {source}"
        )
    transport = TransportSpec(
        type="ble",
        char_uuid=_normalize_uuid(
            transport_doc["char_uuid"],
            context=f"{doc['id']}.transport.char_uuid",
        )
        if "char_uuid" in transport_doc
        else None,
        write_with_response=_normalize_bool(
            transport_doc.get("write_with_response", True),
            context=f"{doc['id']}.transport.write_with_response",
        ),
        connect_timeout_s=_positive_seconds(
            transport_doc.get("connect_timeout_s", 10.0),
            context=f"{doc['id']}.transport.connect_timeout_s",
        ),
    )

    protocol_doc = doc.get("protocol", {})
    bitmask_policy = protocol_doc.get("bitmask_policy", "length")
    if bitmask_policy not in BITMASK_POLICIES:
        allowed = ", ".join(BITMASK_POLICIES)
        raise ProfileValidationError(
            f"{doc['id']}.protocol.bitmask_policy must be one of: {allowed}"
        )
    protocol = ProtocolSpec(
        capability_query=_normalize_query(
            str(protocol_doc.get("capability_query", "PIDs")),
            context=f"{doc['id']}.protocol.capability_query",
        ),
        response_timeout_s=_positive_seconds(
            protocol_doc.get("response_timeout_s", 2.0),
            context=f"{doc['id']}.protocol.response_timeout_s",
        ),
        poll_interval_s=_positive_seconds(
            protocol_doc.get("poll_interval_s", 1.0),
            context=f"{doc['id']}.protocol.poll_interval_s",
        ),
        bitmask_policy=bitmask_policy,
    )

    return Profile(id=doc["id"], name=doc["name"], transport=transport, protocol=protocol)


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("watsctl.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, Profile] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        profiles[profile.id] = profile

    for path in _iter_user_profile_paths():
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        if profile.id in profiles:
            warning = f"User profile '{profile.id}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))
