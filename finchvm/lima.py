"""Creating limactl commands with the right environment."""

from __future__ import annotations

import io
import logging
import os
import sys
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

_ENV_KEY_LIMA_HOME = "LIMA_HOME"
_ENV_KEY_PATH = "PATH"


@dataclass(frozen=True)
class Replacement:
    """A string in output to be replaced by another."""

    source: str
    target: str


def replace_bytes(data: bytes, replacements: Iterable[Replacement]) -> bytes:
    """Apply the replacements one after another."""
    for r in replacements:
        data = data.replace(r.source.encode(), r.target.encode())
    return data


class _ProcessSystemDeps:
    def environ(self) -> dict[str, str]:
        return dict(os.environ)

    def env(self, key: str) -> str:
        return os.environ.get(key, "")

    def stdin(self) -> Any:
        return sys.stdin

    def stdout(self) -> Any:
        return sys.stdout

    def stderr(self) -> Any:
        return sys.stderr


class LimaCmdCreator:
    """Creates limactl commands bound to a lima home and a qemu binary directory."""

    def __init__(
        self,
        cmd_creator: Any,
        lima_home_path: str,
        limactl_path: str,
        qemu_bin_path: str,
        system_deps: Any = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cmd_creator = cmd_creator
        self.lima_home_path = lima_home_path
        self.limactl_path = limactl_path
        self.qemu_bin_path = qemu_bin_path
        self.system_deps = system_deps if system_deps is not None else _ProcessSystemDeps()
        self.logger = logger if logger is not None else logging.getLogger(__name__)

    def create(self, *args: str) -> Any:
        """Create a command connected to this process's stdio."""
        deps = self.system_deps
        return self._create(deps.stdin(), deps.stdout(), deps.stderr(), args)

    def create_without_stdio(self, *args: str) -> Any:
        """Create a command with no stdio connected."""
        return self._create(None, None, None, args)

    def run_with_replacing_stdout(
        self, replacements: Iterable[Replacement], *args: str
    ) -> None:
        """Run a command and write its stdout, after the replacements, to our stdout."""
        buf = io.BytesIO()
        deps = self.system_deps
        self._create(deps.stdin(), buf, deps.stderr(), args).run()
        out = replace_bytes(buf.getvalue(), replacements)
        stdout = deps.stdout()
        try:
            stdout.write(out)
        except TypeError:
            stdout.write(out.decode(errors="replace"))

    def _create(self, stdin: Any, stdout: Any, stderr: Any, args: tuple[str, ...]) -> Any:
        self.logger.debug(
            "Creating limactl command: ARGUMENTS: %s, %s: %s",
            list(args),
            _ENV_KEY_LIMA_HOME,
            self.lima_home_path,
        )
        cmd = self.cmd_creator.create(self.limactl_path, *args)
        env = dict(self.system_deps.environ())
        env[_ENV_KEY_LIMA_HOME] = self.lima_home_path
        env[_ENV_KEY_PATH] = f"{self.qemu_bin_path}:{self.system_deps.env(_ENV_KEY_PATH)}"
        cmd.env = env
        cmd.stdin = stdin
        cmd.stdout = stdout
        cmd.stderr = stderr
        return cmd