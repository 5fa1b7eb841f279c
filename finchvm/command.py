"""Creating and running external commands."""

from __future__ import annotations

import io
import subprocess
from dataclasses import dataclass, field
from typing import Any


class ExitError(Exception):
    """A command exited unsuccessfully; carries the exit code and stderr."""

    def __init__(self, returncode: int, stderr: bytes | str | None = b"") -> None:
        if isinstance(stderr, str):
            stderr = stderr.encode()
        self.returncode = returncode
        self.stderr: bytes = stderr or b""
        super().__init__(returncode, self.stderr)

    @property
    def status(self) -> str:
        """Short description of how the process ended."""
        if self.returncode < 0:
            return f"signal: {-self.returncode}"
        return f"exit status {self.returncode}"

    def __str__(self) -> str:
        return f"{self.status}, stderr: {self.stderr.decode(errors='replace')}"


def wrap_if_exit_error(err: BaseException) -> BaseException:
    """Turn a CalledProcessError into an ExitError whose message includes stderr."""
    if isinstance(err, ExitError):
        return err
    if isinstance(err, subprocess.CalledProcessError):
        wrapped = ExitError(err.returncode, err.stderr)
        wrapped.__cause__ = err
        return wrapped
    return err


def _has_fileno(stream: Any) -> bool:
    try:
        stream.fileno()
    except (AttributeError, OSError, io.UnsupportedOperation, ValueError):
        return False
    return True


def _flush(stream: Any) -> None:
    flush = getattr(stream, "flush", None)
    if flush is not None:
        flush()


def _write(stream: Any, data: bytes) -> None:
    try:
        stream.write(data)
    except TypeError:
        stream.write(data.decode(errors="replace"))


def _stdin_spec(stream: Any) -> tuple[Any, bytes | None]:
    if stream is None:
        return subprocess.DEVNULL, None
    if _has_fileno(stream):
        return stream, None
    data = stream.read()
    if isinstance(data, str):
        data = data.encode()
    return subprocess.PIPE, data


def _sink_spec(spec: Any) -> tuple[Any, Any]:
    """Return the argument for Popen and, if output must be copied, the target stream."""
    if spec is None:
        return subprocess.DEVNULL, None
    if isinstance(spec, int):
        return spec, None
    if _has_fileno(spec):
        _flush(spec)
        return spec, None
    return subprocess.PIPE, spec


@dataclass
class Command:
    """An external command; configure its attributes, then run it."""

    name: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] | None = None
    stdin: Any = None
    stdout: Any = None
    stderr: Any = None

    def _execute(self, stdout: Any, stderr: Any) -> tuple[bytes, bytes, int]:
        stdin_arg, input_data = _stdin_spec(self.stdin)
        out_arg, out_stream = _sink_spec(stdout)
        err_arg, err_stream = _sink_spec(stderr)
        with subprocess.Popen(
            [self.name, *self.args],
            env=self.env,
            stdin=stdin_arg,
            stdout=out_arg,
            stderr=err_arg,
        ) as proc:
            out, err = proc.communicate(input_data)
        out = out or b""
        err = err or b""
        if out_stream is not None and out:
            _write(out_stream, out)
        if err_stream is not None and err:
            _write(err_stream, err)
        return out, err, proc.returncode

    def run(self) -> None:
        """Run the command to completion; raise ExitError on a non-zero exit."""
        _, _, code = self._execute(self.stdout, self.stderr)
        if code:
            raise ExitError(code)

    def output(self) -> bytes:
        """Run the command and return its stdout."""
        if self.stdout is not None:
            raise ValueError("stdout already set")
        capture_err = self.stderr is None
        out, err, code = self._execute(
            subprocess.PIPE, subprocess.PIPE if capture_err else self.stderr
        )
        if code:
            raise ExitError(code, err if capture_err else b"")
        return out

    def combined_output(self) -> bytes:
        """Run the command and return stdout and stderr combined."""
        if self.stdout is not None:
            raise ValueError("stdout already set")
        if self.stderr is not None:
            raise ValueError("stderr already set")
        out, _, code = self._execute(subprocess.PIPE, subprocess.STDOUT)
        if code:
            raise ExitError(code)
        return out


class ExecCmdCreator:
    """Creates commands that run as child processes."""

    def create(self, name: str, *args: str) -> Command:
        return Command(name, list(args))