import logging
import subprocess

import pytest

from finchvm.command import ExitError
from finchvm.config import (
    AdditionalDirectory,
    ConfigError,
    FinchConfig,
    apply_defaults,
    ensure_config_dir,
    load,
    supports_virtualization_framework,
    validate,
    write_config,
)

GIB12 = 12_884_901_888


class FakeDeps:
    def __init__(self, cpus):
        self.cpus = cpus
        self.calls = 0

    def num_cpu(self):
        self.calls += 1
        return self.cpus


class FakeMem:
    def __init__(self, total):
        self.total = total
        self.calls = 0

    def total_memory(self):
        self.calls += 1
        return self.total


@pytest.fixture
def logger():
    return logging.getLogger("finchvm.test")


def _messages(caplog):
    return [r.getMessage() for r in caplog.records]


# --- load ---


def test_load_happy_path(tmp_path, logger):
    path = tmp_path / "config.yaml"
    path.write_text("\nmemory: 4GiB\ncpus: 8\n")
    got = load(str(path), logger, FakeDeps(8), FakeMem(GIB12))
    assert got == FinchConfig(cpus=8, memory="4GiB", vm_type="qemu", rosetta=False)
    assert path.read_text() == "cpus: 8\nmemory: 4GiB\nvmType: qemu\nrosetta: false\n"


def test_load_empty_file(tmp_path, logger):
    path = tmp_path / "config.yaml"
    path.write_text("")
    deps, mem = FakeDeps(4), FakeMem(GIB12)
    got = load(str(path), logger, deps, mem)
    assert got == FinchConfig(cpus=2, memory="3GiB", vm_type="qemu", rosetta=False)
    assert deps.calls == 2
    assert mem.calls == 2


def test_load_partial_file(tmp_path, logger):
    path = tmp_path / "config.yaml"
    path.write_text("memory: 2GiB")
    deps, mem = FakeDeps(4), FakeMem(GIB12)
    got = load(str(path), logger, deps, mem)
    assert got == FinchConfig(cpus=2, memory="2GiB", vm_type="qemu", rosetta=False)
    assert deps.calls == 2
    assert mem.calls == 1


def test_load_unknown_field_is_ignored(tmp_path, logger):
    path = tmp_path / "config.yaml"
    path.write_text("unknownField: 2GiB")
    got = load(str(path), logger, FakeDeps(4), FakeMem(GIB12))
    assert got == FinchConfig(cpus=2, memory="3GiB", vm_type="qemu", rosetta=False)


def test_load_missing_file_writes_defaults(tmp_path, logger, caplog):
    caplog.set_level(logging.INFO)
    path = tmp_path / "config.yaml"
    deps, mem = FakeDeps(4), FakeMem(GIB12)
    got = load(str(path), logger, deps, mem)
    assert got == FinchConfig(cpus=2, memory="3GiB", vm_type="qemu", rosetta=False)
    assert f'Using default values due to missing config file at "{path}"' in _messages(caplog)
    assert deps.calls == 1
    assert mem.calls == 1
    assert path.read_text() == "cpus: 2\nmemory: 3GiB\nvmType: qemu\nrosetta: false\n"


def test_load_missing_file_creates_directory(tmp_path, logger):
    path = tmp_path / ".finch" / "finch.yaml"
    load(str(path), logger, FakeDeps(4), FakeMem(GIB12))
    assert path.is_file()


def test_load_invalid_yaml(tmp_path, logger):
    path = tmp_path / "config.yaml"
    path.write_text("this isn't YAML")
    with pytest.raises(ConfigError, match="^failed to unmarshal config file: "):
        load(str(path), logger, FakeDeps(4), FakeMem(GIB12))


def test_load_fails_validation(tmp_path, logger):
    path = tmp_path / "config.yaml"
    path.write_text("memory: 4GiB\ncpus: 0\n")
    with pytest.raises(ConfigError) as info:
        load(str(path), logger, FakeDeps(4), FakeMem(GIB12))
    assert str(info.value) == (
        "failed to validate config file: specified number of CPUs (0) must be greater than 0"
    )


# --- write_config / ensure_config_dir ---


def test_write_config(tmp_path):
    path = tmp_path / "config.yaml"
    write_config(FinchConfig(cpus=4, memory="4GiB"), str(path))
    assert path.read_bytes() == b"cpus: 4\nmemory: 4GiB\n"


def test_config_dict_round_trip():
    cfg = FinchConfig(
        cpus=6,
        memory="4GiB",
        additional_directories=[AdditionalDirectory("/Volumes"), AdditionalDirectory("/tmp/ws")],
        vm_type="vz",
        rosetta=True,
    )
    assert FinchConfig.from_dict(cfg.to_dict()) == cfg


def test_ensure_config_dir_existing(tmp_path, logger, caplog):
    caplog.set_level(logging.INFO)
    target = tmp_path / ".finch"
    target.mkdir()
    ensure_config_dir(str(target), logger)
    assert target.is_dir()
    assert _messages(caplog) == []


def test_ensure_config_dir_creates(tmp_path, logger, caplog):
    caplog.set_level(logging.INFO)
    target = tmp_path / ".finch"
    ensure_config_dir(str(target), logger)
    assert target.is_dir()
    assert f'"{target}" directory doesn\'t exist, attempting to create it' in _messages(caplog)


# --- apply_defaults ---


def test_apply_defaults_happy_path():
    got = apply_defaults(FinchConfig(), FakeDeps(8), FakeMem(GIB12))
    assert got == FinchConfig(cpus=2, memory="3GiB", vm_type="qemu", rosetta=False)


def test_apply_defaults_fills_cpus():
    mem = FakeMem(GIB12)
    got = apply_defaults(FinchConfig(memory="4GiB"), FakeDeps(8), mem)
    assert got == FinchConfig(cpus=2, memory="4GiB", vm_type="qemu", rosetta=False)
    assert mem.calls == 0


def test_apply_defaults_fills_memory():
    deps = FakeDeps(8)
    got = apply_defaults(FinchConfig(cpus=6), deps, FakeMem(GIB12))
    assert got == FinchConfig(cpus=6, memory="3GiB", vm_type="qemu", rosetta=False)
    assert deps.calls == 0


def test_apply_defaults_uses_fallbacks():
    got = apply_defaults(FinchConfig(), FakeDeps(4), FakeMem(1_073_741_824))
    assert got == FinchConfig(cpus=2, memory="2GiB", vm_type="qemu", rosetta=False)


# --- validate ---


def test_validate_happy_path(logger, caplog):
    caplog.set_level(logging.INFO)
    validate(FinchConfig(cpus=4, memory="4GiB"), logger, FakeDeps(8), FakeMem(12_880_000_000))
    assert _messages(caplog) == []


def test_validate_too_few_cpus(logger):
    with pytest.raises(ConfigError) as info:
        validate(FinchConfig(cpus=0, memory="0GiB"), logger, FakeDeps(8), FakeMem(GIB12))
    assert str(info.value) == "specified number of CPUs (0) must be greater than 0"


def test_validate_too_little_memory(logger):
    with pytest.raises(ConfigError) as info:
        validate(FinchConfig(cpus=1, memory="0GiB"), logger, FakeDeps(8), FakeMem(GIB12))
    assert str(info.value) == "specified amount of memory (0GiB) must be greater than 0GiB"


def test_validate_unparsable_memory(logger):
    with pytest.raises(ConfigError, match="^failed to parse memory to uint"):
        validate(FinchConfig(cpus=1, memory="lots"), logger, FakeDeps(8), FakeMem(GIB12))


def test_validate_more_cpus_than_available(logger, caplog):
    caplog.set_level(logging.INFO)
    validate(FinchConfig(cpus=4, memory="4GiB"), logger, FakeDeps(1), FakeMem(12_880_000_000))
    assert _messages(caplog) == [
        "The specified number of CPUs (4) is greater than CPUs available on this system (1),\n"
        "which may lead to severe performance degradation"
    ]


def test_validate_more_memory_than_available(logger, caplog):
    caplog.set_level(logging.INFO)
    validate(FinchConfig(cpus=4, memory="4GiB"), logger, FakeDeps(8), FakeMem(1_074_000_000))
    assert _messages(caplog) == [
        "The specified amount of memory (4GiB) is greater than the memory available on this system (1GiB),\n"
        "which may lead to severe performance degradation"
    ]


# --- supports_virtualization_framework ---


class FakeCmd:
    def __init__(self, out=b"", exc=None):
        self.out = out
        self.exc = exc

    def output(self):
        if self.exc is not None:
            raise self.exc
        return self.out


class FakeCreator:
    def __init__(self, cmd):
        self.cmd = cmd
        self.created = []

    def create(self, name, *args):
        self.created.append((name, *args))
        return self.cmd


def test_supports_vz_on_13():
    creator = FakeCreator(FakeCmd(b"13.0.0"))
    assert supports_virtualization_framework(creator) is True
    assert creator.created == [("sw_vers", "-productVersion")]


def test_does_not_support_vz_on_12():
    assert supports_virtualization_framework(FakeCreator(FakeCmd(b"12.6.1\n"))) is False


def test_supports_vz_unparsable_version():
    with pytest.raises(ConfigError, match="failed to parse split sw_vers output"):
        supports_virtualization_framework(FakeCreator(FakeCmd(b"abc")))


def test_supports_vz_command_failure():
    err = subprocess.CalledProcessError(1, ["sw_vers"], stderr=b"boom")
    with pytest.raises(ConfigError) as info:
        supports_virtualization_framework(FakeCreator(FakeCmd(exc=err)))
    assert str(info.value) == "failed to run sw_vers command: exit status 1, stderr: boom"
    assert isinstance(info.value.__cause__, ExitError)