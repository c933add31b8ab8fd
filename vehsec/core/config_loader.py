"""PID table and settings loading for YAML-based vehsec configuration."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from vehsec.core.errors import ConfigLoadError, ConfigValidationError
from vehsec.core.model import AdapterKind, PidDescriptor, Settings

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
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedPidTable:
    pids: dict[str, PidDescriptor]
    warnings: tuple[str, ...]


def _load_validator(schema_name: str) -> Any:
    schema_text = resources.files("vehsec.schemas").joinpath(schema_name).read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _config_home() -> Path:
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")) / "vehsec"


def _pid_dirs() -> tuple[Path, Path]:
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return _config_home() / "pids", xdg_data / "vehsec/pids"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _validate(validator: Any, doc: dict[str, Any], source: Path | Traversable) -> None:
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def _build_pids(doc: dict[str, Any], source: Path | Traversable) -> dict[str, PidDescriptor]:
    _validate(_load_validator("pids.schema.json"), doc, source)

    pids: dict[str, PidDescriptor] = {}
    for name, spec in doc["pids"].items():
        pids[name] = PidDescriptor(
            name=name,
            code=spec["code"].upper(),
            formula=spec["formula"],
            unit=spec.get("unit", ""),
            description=spec.get("description", ""),
        )
    return pids


def _check_unique_codes(pids: dict[str, PidDescriptor]) -> None:
    seen: dict[str, str] = {}
    for pid in pids.values():
        other = seen.get(pid.code)
        if other is not None:
            raise ConfigValidationError(
                f"Request code {pid.code} is used by both '{other}' and '{pid.name}'"
            )
        seen[pid.code] = pid.name


def _iter_packaged_pid_paths() -> list[Traversable]:
    pid_root = resources.files("vehsec.pids")
    return [item for item in pid_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_pid_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _pid_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_pid_table() -> LoadedPidTable:
    pids: dict[str, PidDescriptor] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_pid_paths(), key=lambda p: p.name):
        pids.update(_build_pids(_read_yaml(path), path))

    for path in _iter_user_pid_paths():
        for name, pid in _build_pids(_read_yaml(path), path).items():
            if name in pids:
                warning = f"User PID '{name}' from {path.name} overrides packaged definition"
                LOGGER.warning(warning)
                warnings.append(warning)
            pids[name] = pid

    _check_unique_codes(pids)
    return LoadedPidTable(pids=pids, warnings=tuple(warnings))


def load_settings(path: Path | None = None) -> Settings:
    """Read user settings, falling back to defaults when no file exists."""
    source = path or _config_home() / "config.yaml"
    if not source.exists():
        return Settings()

    doc = _read_yaml(source)
    _validate(_load_validator("config.schema.json"), doc, source)
    if "adapter" in doc:
        doc["adapter"] = AdapterKind(doc["adapter"])
    return Settings(**doc)
