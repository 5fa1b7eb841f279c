# finchvm

Helpers for driving a Lima-based virtual machine used for container
development: building `limactl` commands, loading and validating the user
configuration file, and applying that configuration to the Lima override
file and to the nerdctl configuration of the VM.

## Installation

```
pip install finchvm
```

The `test` extra installs pytest for running the test suite:

```
pip install "finchvm[test]"
```

## Modules

### `finchvm.command`

- `ExecCmdCreator().create(name, *args)` returns a `Command`. You can set its
  `env`, `stdin`, `stdout` and `stderr` attributes before you run it. If a
  stream is not set, it is not connected.
- `Command.run()` runs the program to completion.
- `Command.output()` returns stdout as bytes. If `stderr` is unset, stderr is
  captured and goes into the error.
- `Command.combined_output()` returns stdout and stderr interleaved.
- A non-zero exit raises `ExitError`. Its `returncode` and `stderr` attributes
  are set, and its message reads `exit status N, stderr: ...`.
  `wrap_if_exit_error(err)` turns a `subprocess.CalledProcessError` into an
  `ExitError`. Any other exception is returned unchanged.

### `finchvm.lima`

- `LimaCmdCreator(cmd_creator, lima_home_path, limactl_path, qemu_bin_path,
  system_deps=None, logger=None)` builds `limactl` commands. Each command
  gets the current environment with `LIMA_HOME` set, and with the QEMU
  binary directory put first on `PATH`.
  - `create(*args)` connects the process's stdio.
  - `create_without_stdio(*args)` leaves the streams unconnected.
  - `run_with_replacing_stdout(replacements, *args)` runs the command and
    captures its stdout. It applies each `Replacement(source, target)` in
    order, then writes the result to stdout. If the command fails, nothing
    is written.
- `replace_bytes(data, replacements)` applies the same replacements to a
  bytes value.

### `finchvm.units`

- `bytes_size(size)` formats a byte count with binary units and four
  significant digits (`3GiB`, `1.5MiB`).
- `from_human_size(text)` parses sizes such as `4GiB` or `10 MB` into bytes.
  It uses decimal multipliers, so `1GiB` is 1,000,000,000. It raises
  `ValueError` for bad input.

### `finchvm.config`

`FinchConfig` holds these settings:

- `cpus`
- `memory`
- `additional_directories`, a list of `AdditionalDirectory(path)`
- `vm_type`
- `rosetta`

`FinchConfig.from_dict` and `FinchConfig.to_dict` convert to and from the
YAML mapping. The keys are `cpus`, `memory`, `additional_directories`,
`vmType` and `rosetta`.

`load(cfg_path, logger=None, system_deps=None, mem=None)` does the following:

1. Reads the YAML file.
2. Fills unset values with `apply_defaults`:
   - CPUs: a quarter of the host's CPUs, at least 2.
   - Memory: a quarter of the host's memory, at least 2GiB.
   - VM type: `qemu`.
   - Rosetta: off.
3. Writes the file back.
4. Checks the result with `validate`.

If the file is missing, `load` creates the directory that holds it (only the
last level) and writes the defaults there.

`validate` raises `ConfigError` in these cases:

- CPUs is not positive.
- Memory cannot be parsed or is not positive.

A CPU count or memory size larger than the host has is logged at info level
but still accepted.

Other helpers:

- `write_config(cfg, path)` writes the config as YAML.
- `ensure_config_dir(path, logger)` creates the directory if it is missing.
- `supports_virtualization_framework(cmd_creator)` runs
  `sw_vers -productVersion` and reports whether the major version is 13 or
  later.

### `finchvm.lima_config`

`LimaConfigApplier(cfg, cmd_creator, lima_config_path,
system_deps=None).apply(is_init)` writes CPUs, memory and writable mounts
into the Lima YAML file. If the file does not exist, it is created.

When `is_init` is true, the VM type, mount type and Rosetta are set as well:

- **Rosetta enabled on darwin/arm64.** Switches to `vz` with `virtiofs` and
  enables Rosetta with binfmt. It also removes the cross-architecture
  provisioning script.
- **Otherwise.** `vz` gets `virtiofs` and `qemu` gets `reverse-sshfs`.
  Rosetta settings are dropped and the cross-architecture script is added.

Using `vz` requires `supports_virtualization_framework`; if the check fails,
`ConfigError` is raised.

`find_user_mode_emulation_script` and `toggle_user_mode_emulation_script`
work on the parsed Lima mapping directly.

### `finchvm.nerdctl_config`

- `NerdctlConfig` reads and writes `nerdctl.toml`. Empty settings are
  omitted when it is written.
- `update_nerdctl_config(root, user, rootless)` sets the namespace to
  `finch`. It works on the rootful `/etc/nerdctl/nerdctl.toml` or on the
  user's rootless file, and creates the file if needed.
- `update_environment(root, user)` appends an
  `export DOCKER_CONFIG="/Users/<user>/.finch"` line to
  `/home/<user>.linux/.bashrc`, unless the file already has one.

Both functions resolve these paths under the directory `root`.

## Example

```python
import logging
import os

from finchvm.config import load

cfg = load(os.path.expanduser("~/.finch/finch.yaml"), logging.getLogger("finch"))
print(cfg.cpus, cfg.memory, cfg.vm_type)
```

If `system_deps` and `mem` are not given, the host's own CPU count and
physical memory are used.

## What this package does not do

- It has no command-line program. It does not create, start or stop the
  virtual machine itself; it only builds the `limactl` commands and writes
  the configuration files.
- The nerdctl helpers do not open SSH or SFTP connections to the VM. They
  edit files under a directory tree that you give them, for example a
  mounted copy of the VM's filesystem.

All errors from configuration handling are raised as `ConfigError`.