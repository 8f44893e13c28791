"""
Local node daemon supervision.

Lifecycle:

    stopped -> cleaning -> starting -> ready -> shutting_down -> stopped

start():
- terminate stray node processes (SIGTERM, grace period, SIGKILL)
- remove repo.lock, datastore/LOCK and the pid-file
- wait for the OS to release file handles
- spawn ``<binary> daemon [--offline] --routing=<mode>`` in its own session
- write the pid-file and wait for the readiness line on stdout

stop():
- SIGTERM, wait, SIGKILL if still alive, same file cleanup

Only one daemon is supervised per process. start/stop are serialized by a
lock; recovery from a crashed previous instance relies on the process scan
and lock-file cleanup, not on in-memory state.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

import psutil

from nexuslog.protocol.enums import DaemonState
from nexuslog.protocol.errors import ProcessSupervisionError
from nexuslog.protocol.models import DaemonStatus
from nexuslog.utils.timestamps import now_iso

logger = logging.getLogger(__name__)

# Keep at most this many stderr lines for error reports
STDERR_TAIL = 200


class NodeProcessSupervisor:
    def __init__(
        self,
        store,
        network,
        process_iter: Callable = psutil.process_iter,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._network = network
        self._process_iter = process_iter
        self._sleep = sleep

        self._lock = threading.Lock()
        self._state = DaemonState.STOPPED
        self._process: Optional[subprocess.Popen] = None
        self._ready = threading.Event()
        self._readers: List[threading.Thread] = []
        self._stderr: List[str] = []
        self._started_at: Optional[str] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self) -> DaemonState:
        return self._state

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def is_ready(self) -> bool:
        return (
            self._state == DaemonState.READY
            and self._process is not None
            and self._process.poll() is None
        )

    def status(self) -> DaemonStatus:
        return DaemonStatus(
            state=self._state,
            pid=self.pid,
            pid_file=self._store.pid_file,
            started_at=self._started_at,
            stderr="".join(self._stderr),
        )

    # ------------------------------------------------------------------
    # Cleanup helpers
    # ------------------------------------------------------------------
    @property
    def lock_files(self) -> List[Path]:
        repo = self._store.repo_path
        return [repo / "repo.lock", repo / "datastore" / "LOCK"]

    def find_node_processes(self) -> List[psutil.Process]:
        """Running processes of the node binary, excluding this process."""
        name = Path(self._store.binary).name
        own_pid = os.getpid()
        found = []
        for proc in self._process_iter(["pid", "name", "cmdline"]):
            info = proc.info
            if info.get("pid") == own_pid:
                continue
            cmdline = info.get("cmdline") or []
            if info.get("name") == name or (cmdline and Path(cmdline[0]).name == name):
                found.append(proc)
        return found

    def terminate_processes(self, procs: List[psutil.Process], grace: float) -> None:
        if not procs:
            return

        for proc in procs:
            try:
                logger.info("Terminating stray node process %d", proc.pid)
                proc.terminate()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied:
                logger.warning("Not allowed to terminate node process %d", proc.pid)

        _, alive = psutil.wait_procs(procs, timeout=grace)
        for proc in alive:
            try:
                logger.warning("Node process %d ignored SIGTERM, killing", proc.pid)
                proc.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied:
                logger.warning("Not allowed to kill node process %d", proc.pid)
        if alive:
            psutil.wait_procs(alive, timeout=grace)

    def cleanup_files(self) -> None:
        for path in self.lock_files + [Path(self._store.pid_file)]:
            try:
                path.unlink()
                logger.debug("Removed %s", path)
            except FileNotFoundError:
                pass

    def daemon_args(self) -> List[str]:
        args = ["daemon"]
        if not self._store.allow_online:
            args.append("--offline")
        args.append(f"--routing={self._store.routing}")
        return args

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------
    def start(self) -> DaemonStatus:
        with self._lock:
            if self.is_ready:
                raise ProcessSupervisionError(f"Node daemon already running (pid {self.pid})")
            try:
                return self._start()
            except Exception:
                self._abort()
                raise

    def _start(self) -> DaemonStatus:
        self._state = DaemonState.CLEANING
        self.terminate_processes(self.find_node_processes(), self._network.process_kill_timeout)
        self.cleanup_files()
        self._sleep(self._network.cleanup_wait_timeout)

        self._state = DaemonState.STARTING
        cmd = [self._store.binary] + self.daemon_args()
        logger.info("Starting node daemon: %s", " ".join(cmd))

        self._ready.clear()
        self._stderr = []
        self._process = None
        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            self._state = DaemonState.STOPPED
            raise ProcessSupervisionError(f"Cannot start {self._store.binary}: {e}")

        Path(self._store.pid_file).write_text(str(self._process.pid), encoding="utf-8")
        self._readers = [
            threading.Thread(target=self._read_stdout, args=(self._process,), daemon=True),
            threading.Thread(target=self._read_stderr, args=(self._process,), daemon=True),
        ]
        for t in self._readers:
            t.start()

        self._wait_ready(self._store.daemon_startup_timeout)

        self._state = DaemonState.READY
        self._started_at = now_iso()
        logger.info("Node daemon ready (pid %d)", self._process.pid)
        return self.status()

    def _wait_ready(self, timeout: float) -> None:
        proc = self._process
        deadline = time.monotonic() + timeout

        while not self._ready.wait(0.05):
            code = proc.poll()
            if code is not None:
                # The marker may still be in the pipe
                self._readers[0].join(0.5)
                if self._ready.is_set():
                    break
                self._fail_start(f"Node daemon exited with code {code} before becoming ready")
            if time.monotonic() >= deadline:
                logger.error("Node daemon not ready after %gs, killing pid %d", timeout, proc.pid)
                self._kill(proc)
                self._fail_start(f"Node daemon startup timeout after {timeout:g}s")

        if proc.poll() is not None:
            self._fail_start(f"Node daemon exited with code {proc.returncode} right after becoming ready")

    def _abort(self) -> None:
        proc = self._process
        if proc is not None and proc.poll() is None:
            self._kill(proc)
        if self._state != DaemonState.STOPPED:
            self._join_readers()
            self._process = None
            self._state = DaemonState.STOPPED

    def _fail_start(self, message: str) -> None:
        self._join_readers()
        self._process = None
        self._state = DaemonState.STOPPED
        try:
            Path(self._store.pid_file).unlink()
        except FileNotFoundError:
            pass
        raise ProcessSupervisionError(message, "".join(self._stderr))

    def _read_stdout(self, proc: subprocess.Popen) -> None:
        marker = self._store.ready_marker
        # Keep draining after the marker so the daemon never blocks on a full pipe
        for raw in iter(proc.stdout.readline, b""):
            line = raw.decode("utf-8", errors="replace")
            logger.debug("node: %s", line.rstrip())
            if marker in line:
                self._ready.set()
        proc.stdout.close()

    def _read_stderr(self, proc: subprocess.Popen) -> None:
        for raw in iter(proc.stderr.readline, b""):
            line = raw.decode("utf-8", errors="replace")
            logger.warning("node stderr: %s", line.rstrip())
            self._stderr.append(line)
            if len(self._stderr) > STDERR_TAIL:
                del self._stderr[0]
        proc.stderr.close()

    def _join_readers(self) -> None:
        for t in self._readers:
            t.join(1.0)
        self._readers = []

    def _kill(self, proc: subprocess.Popen) -> None:
        try:
            proc.kill()
        except ProcessLookupError:
            return
        try:
            proc.wait(timeout=max(self._network.process_kill_timeout, 1.0))
        except subprocess.TimeoutExpired:
            logger.error("Node daemon pid %d did not exit after SIGKILL", proc.pid)

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------
    def stop(self) -> None:
        with self._lock:
            proc = self._process
            if proc is None:
                return

            self._state = DaemonState.SHUTTING_DOWN
            logger.info("Stopping node daemon (pid %d)", proc.pid)

            if proc.poll() is None:
                try:
                    proc.terminate()
                except ProcessLookupError:
                    pass
                try:
                    proc.wait(timeout=self._network.daemon_shutdown_timeout)
                except subprocess.TimeoutExpired:
                    logger.warning("Node daemon ignored SIGTERM, killing pid %d", proc.pid)
                    self._kill(proc)

            self._join_readers()
            self.cleanup_files()
            self._process = None
            self._started_at = None
            self._state = DaemonState.STOPPED

    def __enter__(self) -> "NodeProcessSupervisor":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
