"""Loading, defaulting and validating the Finch configuration file."""

from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import dataclass, field
from typing import Any

import yaml

from finchvm.command import wrap_if_exit_error
from finchvm.units import bytes_size, from_human_size

FALLBACK_MEMORY = 2_147_483_648.0
FALLBACK_CPUS = 2


class ConfigError(Exception):
    """The configuration could not be loaded, written or validated."""


@dataclass
class AdditionalDirectory:
    """A host directory to mount into the VM in addition to the home directory."""

    path: str | None = None


@dataclass
class FinchConfig:
    """The settings of the Finch configuration file."""

    cpus: int | None = None
    memory: str | None = None
    additional_directories: list[AdditionalDirectory] = field(default_factory=list)
    vm_type: str | None = None
    rosetta: bool | None = None

    @classmethod
    def from_dict(cls, data: Any) -> FinchConfig:
        """Build a config from parsed YAML; unknown keys are ignored."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError(f"cannot unmarshal {type(data).__name__} into FinchConfig")

        cpus = data.get("cpus")
        if cpus is not None and (isinstance(cpus, bool) or not isinstance(cpus, int)):
            raise ConfigError(f"cannot unmarshal {cpus!r} into cpus")

        memory = _optional_str(data.get("memory"), "memory")
        vm_type = _optional_str(data.get("vmType"), "vmType")

        rosetta = data.get("rosetta")
        if rosetta is not None and not isinstance(rosetta, bool):
            raise ConfigError(f"cannot unmarshal {rosetta!r} into rosetta")

        raw_dirs = data.get("additional_directories") or []
        if not isinstance(raw_dirs, list):
            raise ConfigError("cannot unmarshal additional_directories into a list")
        dirs = []
        for entry in raw_dirs:
            if entry is None:
                entry = {}
            if not isinstance(entry, dict):
                raise ConfigError(f"cannot unmarshal {entry!r} into an additional directory")
            dirs.append(AdditionalDirectory(_optional_str(entry.get("path"), "path")))

        return cls(
            cpus=cpus,
            memory=memory,
            additional_directories=dirs,
            vm_type=vm_type,
            rosetta=rosetta,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the YAML mapping, in file order, omitting unset optional keys."""
        data: dict[str, Any] = {"cpus": self.cpus, "memory": self.memory}
        if self.additional_directories:
            data["additional_directories"] = [
                {"path": d.path} for d in self.additional_directories
            ]
        if self.vm_type is not None:
            data["vmType"] = self.vm_type
        if self.rosetta is not None:
            data["rosetta"] = self.rosetta
        return data


def _optional_str(value: Any, key: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        raise ConfigError(f"cannot unmarshal {value!r} into {key}")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class _HostSystem:
    """CPU and memory figures of the machine we run on."""

    def num_cpu(self) -> int:
        return os.cpu_count() or 1

    def total_memory(self) -> int:
        try:
            return os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES")
        except (AttributeError, ValueError, OSError):
            return 0


def _round_half_away(value: float) -> float:
    return math.floor(value + 0.5) if value >= 0 else math.ceil(value - 0.5)


def apply_defaults(cfg: FinchConfig, system_deps: Any, mem: Any) -> FinchConfig:
    """Fill unset settings with defaults derived from the host; returns cfg."""
    if cfg.cpus is None:
        default_cpus = int(_round_half_away(system_deps.num_cpu() * 0.25))
        cfg.cpus = default_cpus if default_cpus >= FALLBACK_CPUS else FALLBACK_CPUS

    if cfg.memory is None:
        default_memory = _round_half_away(float(mem.total_memory()) * 0.25)
        cfg.memory = bytes_size(
            default_memory if default_memory >= FALLBACK_MEMORY else FALLBACK_MEMORY
        )

    if cfg.vm_type is None:
        cfg.vm_type = "qemu"

    if cfg.rosetta is None:
        cfg.rosetta = False

    return cfg


def validate(cfg: FinchConfig, logger: logging.Logger, system_deps: Any, mem: Any) -> None:
    """Raise ConfigError for impossible settings; log a warning for excessive ones."""
    if cfg.cpus is None or cfg.cpus <= 0:
        raise ConfigError(f"specified number of CPUs ({cfg.cpus}) must be greater than 0")

    try:
        mem_int = from_human_size(cfg.memory or "")
    except ValueError as exc:
        raise ConfigError(f"failed to parse memory to uint: {exc}") from exc

    if mem_int <= 0:
        raise ConfigError(
            f"specified amount of memory ({cfg.memory}) must be greater than 0GiB"
        )

    total_cpus = system_deps.num_cpu()
    if cfg.cpus > total_cpus:
        logger.info(
            "The specified number of CPUs (%d) is greater than CPUs available on this system (%d),\n"
            "which may lead to severe performance degradation",
            cfg.cpus,
            total_cpus,
        )

    total_mem = mem.total_memory()
    if mem_int > total_mem:
        logger.info(
            "The specified amount of memory (%s) is greater than the memory available on this system (%s),\n"
            "which may lead to severe performance degradation",
            cfg.memory,
            bytes_size(float(total_mem)),
        )


def write_config(cfg: FinchConfig, path: str | os.PathLike[str]) -> None:
    """Write cfg as YAML to path."""
    try:
        text = yaml.safe_dump(cfg.to_dict(), sort_keys=False, default_flow_style=False)
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to write to marshal config: {exc}") from exc
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o755)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
    except OSError as exc:
        raise ConfigError(f"failed to write to config file: {exc}") from exc


def ensure_config_dir(path: str | os.PathLike[str], logger: logging.Logger) -> None:
    """Create the configuration directory (not its parents) if it is missing."""
    if os.path.isdir(path):
        return
    logger.info('"%s" directory doesn\'t exist, attempting to create it', os.fspath(path))
    try:
        os.mkdir(path, 0o755)
    except OSError as exc:
        raise ConfigError(f"failed to create config directory: {exc}") from exc


def load(
    cfg_path: str | os.PathLike[str],
    logger: logging.Logger | None = None,
    system_deps: Any = None,
    mem: Any = None,
) -> FinchConfig:
    """Load the config file, fill in defaults, write it back and validate it.

    A missing file is created with default values.
    """
    logger = logger if logger is not None else logging.getLogger(__name__)
    host = _HostSystem()
    system_deps = system_deps if system_deps is not None else host
    mem = mem if mem is not None else host
    path = os.fspath(cfg_path)

    try:
        with open(path, "rb") as fh:
            raw = fh.read()
    except FileNotFoundError:
        logger.info('Using default values due to missing config file at "%s"', path)
        cfg = apply_defaults(FinchConfig(), system_deps, mem)
        config_dir = os.path.dirname(path) or "."
        try:
            ensure_config_dir(config_dir, logger)
        except ConfigError as exc:
            raise ConfigError(f'failed to ensure "{path}" directory: {exc}') from exc
        write_config(cfg, path)
        return cfg
    except OSError as exc:
        raise ConfigError(f"failed to read the config file: {exc}") from exc

    try:
        cfg = FinchConfig.from_dict(yaml.safe_load(raw))
    except (yaml.YAMLError, ConfigError) as exc:
        raise ConfigError(f"failed to unmarshal config file: {exc}") from exc

    cfg = apply_defaults(cfg, system_deps, mem)
    write_config(cfg, path)

    try:
        validate(cfg, logger, system_deps, mem)
    except ConfigError as exc:
        raise ConfigError(f"failed to validate config file: {exc}") from exc

    return cfg


_INT_RE = re.compile(r"[+-]?[0-9]+")


def supports_virtualization_framework(cmd_creator: Any) -> bool:
    """Report whether the host macOS version (13 or later) has Virtualization.framework."""
    cmd = cmd_creator.create("sw_vers", "-productVersion")
    try:
        out = cmd.output()
    except Exception as exc:  # noqa: BLE001 - any failure to run the tool is reported
        wrapped = wrap_if_exit_error(exc)
        raise ConfigError(f"failed to run sw_vers command: {wrapped}") from wrapped

    text = out.decode(errors="replace") if isinstance(out, bytes) else str(out)
    major = text.split(".")[0]
    if not _INT_RE.fullmatch(major):
        raise ConfigError(f"failed to parse split sw_vers output ({major}) into int")
    return int(major) >= 13