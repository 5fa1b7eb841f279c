"""Updating the nerdctl configuration and shell environment inside the VM."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import tomli_w

from finchvm.config import ConfigError

NERDCTL_NAMESPACE = "finch"
NERDCTL_ROOTFUL_CFG_PATH = "/etc/nerdctl/nerdctl.toml"


@dataclass
class NerdctlConfig:
    """The nerdctl.toml settings; empty values are omitted when written."""

    debug: bool = field(default=False, metadata={"key": "debug"})
    debug_full: bool = field(default=False, metadata={"key": "debug_full1"})
    address: str = field(default="", metadata={"key": "address"})
    namespace: str = field(default="", metadata={"key": "namespace"})
    snapshotter: str = field(default="", metadata={"key": "snapshotter"})
    cni_path: str = field(default="", metadata={"key": "cni_path"})
    cni_netconf_path: str = field(default="", metadata={"key": "cni_netconfpath"})
    data_root: str = field(default="", metadata={"key": "data_root"})
    cgroup_manager: str = field(default="", metadata={"key": "cgroup_manager"})
    insecure_registry: bool = field(default=False, metadata={"key": "insecure_registry"})
    hosts_dir: list[str] = field(default_factory=list, metadata={"key": "hosts_dir"})

    @classmethod
    def from_toml(cls, text: str) -> NerdctlConfig:
        """Parse TOML text; unknown keys are ignored. Raises ConfigError."""
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(str(exc)) from exc
        values: dict[str, Any] = {}
        for f in fields(cls):
            key = f.metadata["key"]
            if key not in data:
                continue
            value = data[key]
            if f.type == "bool" and not isinstance(value, bool):
                raise ConfigError(f"cannot unmarshal {value!r} into {key}")
            if f.type == "str" and not isinstance(value, str):
                raise ConfigError(f"cannot unmarshal {value!r} into {key}")
            if f.type == "list[str]" and not (
                isinstance(value, list) and all(isinstance(v, str) for v in value)
            ):
                raise ConfigError(f"cannot unmarshal {value!r} into {key}")
            values[f.name] = list(value) if isinstance(value, list) else value
        return cls(**values)

    def to_toml(self) -> str:
        """Return TOML text holding the non-empty settings."""
        data = {
            f.metadata["key"]: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name)
        }
        return tomli_w.dumps(data)


def _under(root: str | os.PathLike[str], abs_path: str) -> Path:
    return Path(root) / abs_path.lstrip("/")


def _write(path: Path, text: str) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(text)


def update_environment(root: str | os.PathLike[str], user: str) -> None:
    """Make the user's ~/.bashrc in the VM point DOCKER_CONFIG at the host's ~/.finch."""
    profile = _under(root, f"/home/{user}.linux/.bashrc")
    try:
        text = profile.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read config file: {exc}") from exc

    if "export DOCKER_CONFIG" not in text:
        updated = f'{text}\nexport DOCKER_CONFIG="/Users/{user}/.finch"\n'
        try:
            _write(profile, updated)
        except OSError as exc:
            raise ConfigError(f"failed to write to profile file: {exc}") from exc


def update_nerdctl_config(root: str | os.PathLike[str], user: str, rootless: bool) -> None:
    """Set the nerdctl namespace in the rootless or rootful nerdctl.toml, creating it if needed."""
    cfg_path = (
        f"/home/{user}.linux/.config/nerdctl/nerdctl.toml" if rootless else NERDCTL_ROOTFUL_CFG_PATH
    )
    target = _under(root, cfg_path)

    try:
        target.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigError(f"failed to create config dir (dir(filepath)) {cfg_path}: {exc}") from exc

    if not target.exists():
        try:
            _write(target, "")
        except OSError as exc:
            raise ConfigError(f'failed to create "{cfg_path}": {exc}') from exc

    try:
        text = target.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read config file {cfg_path}: {exc}") from exc

    try:
        cfg = NerdctlConfig.from_toml(text)
    except ConfigError as exc:
        raise ConfigError(f"failed to unmarshal config file {cfg_path}: {exc}") from exc

    cfg.namespace = NERDCTL_NAMESPACE

    try:
        _write(target, cfg.to_toml())
    except OSError as exc:
        raise ConfigError(f"failed to write to config file {cfg_path}: {exc}") from exc