"""
Supervisor for the proxy process.

Owns the proxy's lifecycle: reclaims its port, writes the runtime config,
spawns it, captures stdout/stderr, and starts a LogTailer on the proxy's
access log. Unexpected exits are noticed by the output reader thread when
the pipes close, not by polling.

Status, the child handle and the current tailer are guarded by one lock that
is never held across a blocking call. Callers are expected to serialize
start() and stop().
"""

import asyncio
import itertools
import logging
import os
import shlex
import signal
import subprocess
import threading
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

import psutil

from .config import Config, ProxySettings
from .events import ProcessStatus, endpoint_for
from .exceptions import KillError, PortReclaimError, SpawnError
from .history import HistoryStore
from .management import ManagementClient
from .notifier import STATUS_CHANGED, Notifier
from .proxyconfig import write_proxy_config
from .tailer import LogTailer

logger = logging.getLogger(__name__)


def reclaim_port(port: int) -> list[int]:
    """
    Kill any other process listening on a TCP port.

    Returns:
        PIDs that were killed.

    Raises:
        PortReclaimError: If listeners cannot be listed or killed.
    """
    try:
        connections = psutil.net_connections(kind="inet")
    except (psutil.AccessDenied, OSError) as e:
        raise PortReclaimError(f"Cannot list connections for port {port}: {e}") from e

    own_pid = os.getpid()
    pids = {
        conn.pid
        for conn in connections
        if conn.laddr and conn.laddr.port == port and conn.status == psutil.CONN_LISTEN
        and conn.pid and conn.pid != own_pid
    }

    killed = []
    failed = []
    for pid in sorted(pids):
        try:
            psutil.Process(pid).kill()
            killed.append(pid)
            logger.info(f"Killed PID {pid} holding port {port}")
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied:
            failed.append(pid)

    if failed:
        raise PortReclaimError(f"Access denied killing {failed} on port {port}")
    return killed


def kill_process(process: subprocess.Popen, timeout: float = 5):
    """
    Forcefully kill a process and its process group, then reap it.

    A process that is already gone is not an error.

    Raises:
        KillError: If the process cannot be signalled or does not exit.
    """
    if process.poll() is not None:
        # Already reaped; its pid may belong to something else now
        return

    try:
        if hasattr(os, "killpg"):
            os.killpg(os.getpgid(process.pid), signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        return
    except OSError as e:
        raise KillError(f"Failed to kill process {process.pid}: {e}") from e

    try:
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise KillError(f"Process {process.pid} did not exit after SIGKILL") from e


def detect_level(line: str, default: str) -> str:
    """Guess a log level from the content of an output line."""
    lower = line.lower()
    if "error" in lower or "panic" in lower or "fatal" in lower:
        return "error"
    if "warning" in lower or "warn" in lower:
        return "warning"
    return default


class Supervisor:
    """Manages the single supervised proxy process."""

    def __init__(
        self,
        config: Config,
        settings: ProxySettings,
        store: HistoryStore,
        notifier: Notifier,
    ):
        self.config = config
        self.settings = settings
        self.management = ManagementClient(settings.port, config.management_key)

        self._store = store
        self._notifier = notifier
        self._status = ProcessStatus(port=settings.port, endpoint=endpoint_for(settings.port))
        self._process: Optional[subprocess.Popen] = None
        self._started_at: Optional[datetime] = None
        self._tailer: Optional[LogTailer] = None
        # Shared by every tailer so event ids keep increasing across restarts
        self._counter = itertools.count()
        self._lock = threading.Lock()
        self._on_output: Optional[Callable[[str, str, str], None]] = None
        self._tasks: set[asyncio.Task] = set()

    def set_output_callback(self, callback: Callable[[str, str, str], None]):
        """Set callback for proxy output lines: callback(stream, level, message)."""
        self._on_output = callback

    def status(self) -> ProcessStatus:
        with self._lock:
            return replace(self._status)

    @property
    def tailer(self) -> Optional[LogTailer]:
        with self._lock:
            return self._tailer

    def get_pid(self) -> Optional[int]:
        with self._lock:
            process = self._process
        if process is not None and process.poll() is None:
            return process.pid
        return None

    async def start(self) -> ProcessStatus:
        """
        Start the proxy. Returns the current status unchanged if already running.

        Raises:
            ConfigWriteError: If the runtime config cannot be written.
            SpawnError: If the process cannot be started or exits before startup completes.
        """
        with self._lock:
            if self._status.running:
                return replace(self._status)
            previous = self._process
            self._process = None

        if previous is not None:
            await asyncio.to_thread(self._kill_quietly, previous)

        port = self.settings.port
        try:
            await asyncio.to_thread(reclaim_port, port)
        except PortReclaimError as e:
            logger.warning(f"Could not reclaim port {port}: {e}")
        await asyncio.sleep(self.config.port_release_delay)

        config_path = write_proxy_config(self.config.proxy_config_path, self.settings, self.config.management_key)
        process = self._spawn(config_path)

        with self._lock:
            self._process = process
            self._started_at = datetime.now()
        self._watch_output(process)
        logger.info(f"Started proxy with PID {process.pid} on port {port}")

        # Give it a moment to start listening
        await asyncio.sleep(self.config.settle_delay)

        with self._lock:
            alive = self._process is process and process.poll() is None
        if not alive:
            raise SpawnError(f"Proxy exited during startup with code {process.poll()}")

        self._background(self.management.sync_settings(self.settings), "settings sync")
        await self._restart_tailer()
        if self.settings.usage_stats_enabled:
            self._background(self._delayed_usage_sync(), "usage sync")

        with self._lock:
            alive = self._process is process and process.poll() is None
            if alive:
                self._status.running = True
                self._status.port = port
                self._status.endpoint = endpoint_for(port)
                status = replace(self._status)
            tailer = self._tailer

        if not alive:
            if tailer is not None:
                tailer.stop()
            raise SpawnError(f"Proxy exited during startup with code {process.poll()}")

        self._notifier.publish(STATUS_CHANGED, status.to_dict())
        return status

    async def stop(self) -> ProcessStatus:
        """
        Stop the log tailer and kill the proxy. A no-op if not running.

        Raises:
            KillError: If the process cannot be killed.
        """
        with self._lock:
            if not self._status.running:
                return replace(self._status)
            tailer = self._tailer
            process = self._process
            self._process = None

        if tailer is not None:
            tailer.stop()

        if process is not None:
            try:
                await asyncio.to_thread(kill_process, process)
            except KillError:
                with self._lock:
                    if self._process is None:
                        self._process = process
                raise

        with self._lock:
            self._status.running = False
            self._started_at = None
            status = replace(self._status)

        logger.info("Stopped proxy")
        self._notifier.publish(STATUS_CHANGED, status.to_dict())
        return status

    def shutdown(self):
        """Stop everything without raising. Used on application exit."""
        with self._lock:
            tailer = self._tailer
            process = self._process
            self._process = None
            self._tailer = None
            self._status.running = False

        if tailer is not None:
            tailer.stop()
        if process is not None:
            self._kill_quietly(process)
        for task in list(self._tasks):
            task.cancel()

    def metrics(self) -> dict:
        """Current resource usage of the proxy and its children."""
        result = {
            "pid": None,
            "cpu_percent": 0.0,
            "memory_mb": 0.0,
            "child_processes": 0,
            "uptime_seconds": 0,
        }

        with self._lock:
            started_at = self._started_at
        pid = self.get_pid()
        if not pid:
            return result

        try:
            proc = psutil.Process(pid)
            cpu_percent = proc.cpu_percent(interval=0.1)
            memory_mb = proc.memory_info().rss / 1024 / 1024

            child_count = 0
            try:
                children = proc.children(recursive=True)
                child_count = len(children)
                for child in children:
                    cpu_percent += child.cpu_percent(interval=0.1)
                    memory_mb += child.memory_info().rss / 1024 / 1024
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass

            result.update({
                "pid": pid,
                "cpu_percent": round(cpu_percent, 1),
                "memory_mb": round(memory_mb, 1),
                "child_processes": child_count,
                "uptime_seconds": (datetime.now() - started_at).total_seconds() if started_at else 0,
            })
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

        return result

    def _spawn(self, config_path) -> subprocess.Popen:
        cmd = shlex.split(self.config.proxy_binary) + ["--config", str(config_path)]

        # Point the proxy's writable dir at ours so its log lands where the tailer looks
        env = os.environ.copy()
        env["WRITABLE_PATH"] = str(self.config.data_dir)

        try:
            return subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(self.config.data_dir),
                env=env,
                start_new_session=True,  # Create new process group
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to spawn proxy {cmd[0]}: {e}")
            raise SpawnError(f"Failed to spawn proxy: {e}") from e

    def _watch_output(self, process: subprocess.Popen):
        stderr_thread = threading.Thread(
            target=self._capture_output,
            args=("stderr", process.stderr, "error"),
            daemon=True,
        )
        stderr_thread.start()

        def consume():
            self._capture_output("stdout", process.stdout, "info")
            stderr_thread.join()
            self._on_terminated(process, process.wait())

        threading.Thread(target=consume, name=f"proxy-output:{process.pid}", daemon=True).start()

    def _capture_output(self, stream_name: str, stream, level: str):
        """Log the proxy's output line by line until the pipe closes."""
        try:
            for line in iter(stream.readline, b""):
                try:
                    decoded = line.decode("utf-8", errors="replace").rstrip()
                    if not decoded:
                        continue

                    detected_level = detect_level(decoded, level)
                    logger.log(
                        logging.ERROR if detected_level == "error" else logging.INFO,
                        f"[proxy {stream_name}] {decoded}",
                    )

                    if self._on_output:
                        self._on_output(stream_name, detected_level, decoded)

                except Exception as e:
                    logger.error(f"Error processing proxy {stream_name} line: {e}")

        except Exception as e:
            logger.error(f"Error reading proxy {stream_name}: {e}")
        finally:
            try:
                stream.close()
            except OSError:
                pass

    def _on_terminated(self, process: subprocess.Popen, returncode: int):
        with self._lock:
            if self._process is not process:
                # Killed by stop() or replaced by a newer start()
                return
            self._process = None
            self._started_at = None
            self._status.running = False
            status = replace(self._status)

        logger.warning(f"Proxy process {process.pid} terminated with exit code {returncode}")
        self._notifier.publish(STATUS_CHANGED, status.to_dict())

    async def _restart_tailer(self):
        with self._lock:
            previous = self._tailer

        if previous is not None:
            previous.stop()
            # Let the old watcher release its file handle
            await asyncio.sleep(self.config.tailer_handoff_delay)

        tailer = LogTailer(
            self.config.proxy_log,
            self._store,
            self._notifier,
            counter=self._counter,
            poll_interval=self.config.tailer_poll_interval,
            wait_attempts=self.config.tailer_wait_attempts,
        )
        with self._lock:
            self._tailer = tailer
        tailer.start()

    async def _delayed_usage_sync(self):
        await asyncio.sleep(self.config.usage_sync_delay)
        await self.management.sync_usage(self._store)

    def _background(self, coro, name: str):
        """Run a best-effort coroutine; its failure is only logged."""

        async def guarded():
            try:
                await coro
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Background {name} failed: {e}")

        task = asyncio.create_task(guarded())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _kill_quietly(self, process: subprocess.Popen):
        try:
            kill_process(process)
        except KillError as e:
            logger.warning(f"Ignoring failure to kill previous proxy: {e}")
