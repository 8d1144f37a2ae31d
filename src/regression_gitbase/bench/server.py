"""Server subprocess lifetime and resource accounting.

:class:`ProcessHandle` starts a command, stops it and reports the
child's own CPU time and peak RSS, reaped with ``os.wait4``.  Platforms
without ``wait4`` get zeroed usage instead of an error.

:class:`ServerHandle` wraps a process handle for a SQL server: it owns a
private temporary directory (index directory and server log), waits for
the SQL port to accept connections, and removes the directory when the
server stops.
"""

from __future__ import annotations

import os
import shutil
import signal
import socket
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, IO

from regression_gitbase.errors import ServerStartError
from regression_gitbase.logging import get_logger

log = get_logger("server")

_STOP_GRACE_S = 10.0
_POLL_INTERVAL_S = 0.05


@dataclass(frozen=True)
class ResourceUsage:
    """CPU time and peak memory of one terminated process."""

    user_time_s: float = 0.0
    sys_time_s: float = 0.0
    max_rss_bytes: int = 0


def _maxrss_bytes(ru_maxrss: int) -> int:
    # ru_maxrss is KiB on Linux and bytes on macOS.
    if sys.platform == "darwin":
        return int(ru_maxrss)
    return int(ru_maxrss) * 1024


# ---------------------------------------------------------------------------
# ProcessHandle
# ---------------------------------------------------------------------------


class ProcessHandle:
    """A started-once, stopped-once child process."""

    def __init__(
        self,
        command: list[str],
        *,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        output: IO[bytes] | None = None,
    ) -> None:
        self.command = command
        self.cwd = cwd
        self.env = env
        self.output = output
        self.proc: subprocess.Popen[bytes] | None = None
        self.returncode: int | None = None
        self._usage: ResourceUsage | None = None

    def start(self) -> None:
        if self.proc is not None:
            raise RuntimeError("process already started")
        log.debug("Starting: %s", " ".join(self.command))
        self.proc = subprocess.Popen(
            self.command,
            cwd=str(self.cwd) if self.cwd else None,
            env=self.env,
            stdin=subprocess.DEVNULL,
            stdout=self.output or subprocess.DEVNULL,
            stderr=subprocess.STDOUT if self.output else subprocess.DEVNULL,
            start_new_session=True,
        )

    @property
    def pid(self) -> int:
        if self.proc is None:
            raise RuntimeError("process not started")
        return self.proc.pid

    def running(self) -> bool:
        """True while the child has not exited.  Reaps it if it has."""
        if self.proc is None or self.returncode is not None:
            return False
        return self._try_reap() is None

    def stop(self, grace: float = _STOP_GRACE_S) -> None:
        """Send SIGTERM, then SIGKILL after *grace* seconds, and reap the child."""
        if self.proc is None:
            raise RuntimeError("process not started")
        if self.returncode is not None:
            return

        # Not Popen.send_signal(): it polls, reaping the child before wait4.
        try:
            os.kill(self.proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            pass

        deadline = time.monotonic() + grace
        while self._try_reap() is None:
            if time.monotonic() >= deadline:
                log.warning("Process %d ignored SIGTERM, killing it", self.proc.pid)
                try:
                    os.killpg(self.proc.pid, signal.SIGKILL)
                except (ProcessLookupError, PermissionError):
                    os.kill(self.proc.pid, signal.SIGKILL)
                self._reap(blocking=True)
                break
            time.sleep(_POLL_INTERVAL_S)

    def resource_usage(self) -> ResourceUsage:
        """Usage of the terminated child.

        Raises:
            RuntimeError: If the process has not been stopped yet.
        """
        if self.returncode is None:
            raise RuntimeError("resource usage is only available after stop()")
        return self._usage or ResourceUsage()

    def _try_reap(self) -> int | None:
        return self._reap(blocking=False)

    def _reap(self, *, blocking: bool) -> int | None:
        assert self.proc is not None
        if self.returncode is not None:
            return self.returncode

        if not hasattr(os, "wait4"):
            if blocking:
                code = self.proc.wait()
            else:
                code = self.proc.poll()
            if code is not None:
                self.returncode = code
                self._usage = ResourceUsage()
            return code

        pid, status, rusage = os.wait4(self.proc.pid, 0 if blocking else os.WNOHANG)
        if pid == 0:
            return None
        code = os.waitstatus_to_exitcode(status)
        # Keep Popen from waiting on a pid we already reaped.
        self.proc.returncode = code
        self.returncode = code
        self._usage = ResourceUsage(
            user_time_s=rusage.ru_utime,
            sys_time_s=rusage.ru_stime,
            max_rss_bytes=_maxrss_bytes(rusage.ru_maxrss),
        )
        return code


# ---------------------------------------------------------------------------
# ServerHandle
# ---------------------------------------------------------------------------


def wait_for_port(
    host: str,
    port: int,
    timeout: float,
    *,
    alive: Callable[[], bool] = lambda: True,
) -> None:
    """Block until ``host:port`` accepts TCP connections.

    Raises:
        ServerStartError: If *alive* turns False or *timeout* expires.
    """
    deadline = time.monotonic() + timeout
    while True:
        if not alive():
            raise ServerStartError("server exited before accepting connections")
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return
        except OSError:
            pass
        if time.monotonic() >= deadline:
            raise ServerStartError(f"server not listening on {host}:{port} after {timeout:g}s")
        time.sleep(_POLL_INTERVAL_S * 4)


CommandBuilder = Callable[[str, Path, Path], list[str]]


class ServerHandle:
    """One server run against a fixture directory.

    Args:
        command_builder: ``(binary, fixture_dir, index_dir) -> argv``.
        host: Address the server listens on.
        port: SQL port to wait for.
        ready_timeout: Seconds to wait for the port to open.
    """

    def __init__(
        self,
        command_builder: CommandBuilder,
        *,
        host: str,
        port: int,
        ready_timeout: float = 60.0,
    ) -> None:
        self.command_builder = command_builder
        self.host = host
        self.port = port
        self.ready_timeout = ready_timeout
        self.work_dir: Path | None = None
        self.process: ProcessHandle | None = None
        self._log: IO[bytes] | None = None

    @property
    def index_dir(self) -> Path:
        assert self.work_dir is not None
        return self.work_dir / "index"

    @property
    def log_path(self) -> Path:
        assert self.work_dir is not None
        return self.work_dir / "server.log"

    def start(self, binary: str, fixture_dir: Path) -> None:
        """Launch *binary* serving *fixture_dir* and wait until it is ready.

        On failure the process is stopped and the work directory removed
        before the error propagates.
        """
        self.work_dir = Path(tempfile.mkdtemp(prefix="regression-server-"))
        self.index_dir.mkdir()
        self._log = open(self.log_path, "wb")
        self.process = ProcessHandle(
            self.command_builder(binary, fixture_dir, self.index_dir),
            output=self._log,
        )
        try:
            self.process.start()
            wait_for_port(
                self.host, self.port, self.ready_timeout, alive=self.process.running
            )
        except (OSError, ServerStartError) as exc:
            tail = self._log_tail()
            try:
                self.stop()
            except OSError as cleanup_exc:
                log.debug("Cleanup after failed start: %s", cleanup_exc)
            if isinstance(exc, ServerStartError) and tail:
                raise ServerStartError(f"{exc}; server output:\n{tail}") from exc
            raise
        log.debug("Server %s ready on %s:%d", binary, self.host, self.port)

    def stop(self) -> None:
        """Terminate the server, then remove the work directory.

        The directory is removed even if termination fails; a termination
        error takes priority over a removal error.
        """
        stop_error: Exception | None = None
        remove_error: OSError | None = None
        try:
            if self.process is not None and self.process.proc is not None:
                self.process.stop()
        except Exception as exc:  # noqa: BLE001
            stop_error = exc
        finally:
            if self._log is not None:
                self._log.close()
                self._log = None
            remove_error = self._remove_work_dir()

        if stop_error is not None:
            raise stop_error
        if remove_error is not None:
            raise remove_error

    def _remove_work_dir(self) -> OSError | None:
        if self.work_dir is None:
            return None
        try:
            shutil.rmtree(self.work_dir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            return exc
        finally:
            self.work_dir = None
        return None

    def rusage(self) -> ResourceUsage:
        """Resource usage of the stopped server."""
        if self.process is None:
            raise RuntimeError("server was never started")
        return self.process.resource_usage()

    def _log_tail(self, lines: int = 20) -> str:
        if self._log is None or self.work_dir is None:
            return ""
        self._log.flush()
        try:
            content = self.log_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return ""
        return "\n".join(content.splitlines()[-lines:])
