"""Applying Finch settings to the lima VM configuration file."""

from __future__ import annotations

import os
import platform
import sys
from typing import Any

import yaml

from finchvm.config import ConfigError, FinchConfig, supports_virtualization_framework

USER_MODE_EMULATION_SCRIPT_HEADER = "# cross-arch tools"

USER_MODE_EMULATION_SCRIPT = (
    f"{USER_MODE_EMULATION_SCRIPT_HEADER}\n"
    "#!/bin/bash\n"
    "dnf install -y --setopt=install_weak_deps=False "
    "qemu-user-static-aarch64 qemu-user-static-arm qemu-user-static-x86\n"
)

_NO_VZ_SUPPORT = 'system does not have virtualization framework support, change vmType to "qemu"'


class _HostPlatform:
    """Operating system and architecture of the machine we run on."""

    def os(self) -> str:
        return "darwin" if sys.platform == "darwin" else sys.platform

    def arch(self) -> str:
        machine = platform.machine().lower()
        return {"x86_64": "amd64", "aarch64": "arm64"}.get(machine, machine)


def find_user_mode_emulation_script(lima_cfg: dict[str, Any]) -> int | None:
    """Return the index of the first cross-arch provisioning script, or None."""
    for idx, prov in enumerate(lima_cfg.get("provision") or []):
        script = (prov or {}).get("script") or ""
        if str(script).strip(" ").startswith(USER_MODE_EMULATION_SCRIPT_HEADER):
            return idx
    return None


def toggle_user_mode_emulation_script(lima_cfg: dict[str, Any], enabled: bool) -> None:
    """Add or remove the cross-arch tools provisioning script in lima_cfg."""
    idx = find_user_mode_emulation_script(lima_cfg)
    provision = list(lima_cfg.get("provision") or [])
    if idx is None and enabled:
        provision.append({"mode": "system", "script": USER_MODE_EMULATION_SCRIPT})
    elif idx is not None and not enabled:
        del provision[idx]
    if provision:
        lima_cfg["provision"] = provision
    else:
        lima_cfg.pop("provision", None)


def _write_file(path: str, data: str) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(data)


class LimaConfigApplier:
    """Writes the lima-related values of a Finch config into a lima config file."""

    def __init__(
        self,
        cfg: FinchConfig | None,
        cmd_creator: Any,
        lima_config_path: str | os.PathLike[str],
        system_deps: Any = None,
    ) -> None:
        self.cfg = cfg
        self.cmd_creator = cmd_creator
        self.lima_config_path = os.fspath(lima_config_path)
        self.system_deps = system_deps if system_deps is not None else _HostPlatform()

    def apply(self, is_init: bool) -> None:
        """Update the lima config file, creating it if missing.

        Init-only settings (VM type, mount type, Rosetta) are applied only when is_init is true.
        """
        path = self.lima_config_path
        if not os.path.exists(path):
            try:
                _write_file(path, "")
            except OSError as exc:
                raise ConfigError(f"failed to create the an empty lima config file: {exc}") from exc

        try:
            with open(path, "rb") as fh:
                raw = fh.read()
        except OSError as exc:
            raise ConfigError(f"failed to load the lima config file: {exc}") from exc

        try:
            lima_cfg = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to unmarshal the lima config file: {exc}") from exc
        if lima_cfg is None:
            lima_cfg = {}
        if not isinstance(lima_cfg, dict):
            raise ConfigError(
                f"failed to unmarshal the lima config file: cannot unmarshal {lima_cfg!r} into LimaYAML"
            )

        cfg = self.cfg
        if cfg is None:
            raise ConfigError("no Finch config to apply")
        lima_cfg["cpus"] = cfg.cpus
        lima_cfg["memory"] = cfg.memory
        mounts = [{"location": d.path, "writable": True} for d in cfg.additional_directories]
        if mounts:
            lima_cfg["mounts"] = mounts
        else:
            lima_cfg.pop("mounts", None)

        if is_init:
            try:
                self._apply_init(lima_cfg)
            except ConfigError as exc:
                raise ConfigError(f"failed to apply init-only config values: {exc}") from exc

        try:
            text = yaml.safe_dump(lima_cfg, sort_keys=False, default_flow_style=False)
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to marshal the lima config file: {exc}") from exc
        try:
            _write_file(path, text)
        except OSError as exc:
            raise ConfigError(f"failed to write to the lima config file: {exc}") from exc

    def _apply_init(self, lima_cfg: dict[str, Any]) -> None:
        support_error: ConfigError | None = None
        has_support = False
        try:
            has_support = supports_virtualization_framework(self.cmd_creator)
        except ConfigError as exc:
            support_error = exc

        def require_support() -> None:
            if support_error is not None:
                raise ConfigError(
                    f"failed to check for virtualization framework support: {support_error}"
                ) from support_error
            if not has_support:
                raise ConfigError(_NO_VZ_SUPPORT)

        cfg = self.cfg
        assert cfg is not None
        if cfg.rosetta and self.system_deps.os() == "darwin" and self.system_deps.arch() == "arm64":
            require_support()
            lima_cfg["rosetta"] = {"enabled": True, "binfmt": True}
            lima_cfg["vmType"] = "vz"
            lima_cfg["mountType"] = "virtiofs"
            toggle_user_mode_emulation_script(lima_cfg, False)
        else:
            if cfg.vm_type == "vz":
                require_support()
                lima_cfg["mountType"] = "virtiofs"
            elif cfg.vm_type == "qemu":
                lima_cfg["mountType"] = "reverse-sshfs"
            lima_cfg.pop("rosetta", None)
            if cfg.vm_type is None:
                lima_cfg.pop("vmType", None)
            else:
                lima_cfg["vmType"] = cfg.vm_type
            toggle_user_mode_emulation_script(lima_cfg, True)