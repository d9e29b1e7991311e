"""
Follow the proxy's access log and ingest request events.

A LogTailer runs on its own daemon thread. It waits for the log file to
appear, seeks to its end so earlier runs are never replayed, then polls for
growth. New complete lines are parsed; events the history store accepts are
pushed to the notifier. A shrinking (or replaced) file is treated as
rotation and read again from the start; history dedup keeps lines that were
already recorded from being emitted twice.

Stopping is cooperative: stop() sets an event that the poll loop waits on,
so the thread exits within one poll interval.
"""

import itertools
import logging
import os
import threading
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from .exceptions import PersistError
from .history import HistoryStore
from .notifier import REQUEST_LOG, Notifier
from .parser import parse_line

logger = logging.getLogger(__name__)


class TailerState(Enum):
    IDLE = "idle"
    WAITING = "waiting"
    TAILING = "tailing"
    STOPPED = "stopped"
    ABANDONED = "abandoned"


class LogTailer:
    """Tail one log file on a background thread."""

    def __init__(
        self,
        path: Path,
        store: HistoryStore,
        notifier: Notifier,
        counter: Optional[Iterator[int]] = None,
        poll_interval: float = 0.5,
        wait_attempts: int = 30,
    ):
        self.path = Path(path)
        self.poll_interval = poll_interval
        self.wait_attempts = wait_attempts
        self.state = TailerState.IDLE
        # Current read position in the file
        self.offset = 0
        # Bytes after the last newline, completed by a later write
        self.partial = b""

        self._store = store
        self._notifier = notifier
        self._counter = counter if counter is not None else itertools.count()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._file: Optional[BinaryIO] = None
        self._inode: Optional[int] = None

    def start(self):
        """Start watching on a new daemon thread."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=f"tail:{self.path.name}", daemon=True)
        self._thread.start()

    def stop(self):
        """Ask the watcher to exit at its next poll."""
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self):
        try:
            if not self._wait_for_file():
                return

            self.attach()
            while not self._stop_event.wait(self.poll_interval):
                self.poll()

        except Exception as e:
            logger.error(f"Log watcher for {self.path} failed: {e}")
        finally:
            self.detach()
            if self.state != TailerState.ABANDONED:
                self.state = TailerState.STOPPED
            logger.info(f"Stopped watching {self.path}")

    def _wait_for_file(self) -> bool:
        self.state = TailerState.WAITING
        for _ in range(self.wait_attempts):
            if self.path.exists():
                return True
            if self._stop_event.wait(self.poll_interval):
                return False
        if self.path.exists():
            return True

        logger.error(f"Log file not found after {self.wait_attempts} attempts: {self.path}")
        self.state = TailerState.ABANDONED
        return False

    def attach(self):
        """Open the file positioned at its end; only later writes are read."""
        self._open()
        self.offset = self._file.seek(0, os.SEEK_END)
        self.partial = b""
        self.state = TailerState.TAILING
        logger.info(f"Started watching {self.path}")

    def poll(self) -> int:
        """Check the file once and ingest any new lines. Returns lines read."""
        try:
            stat = os.stat(self.path)
        except FileNotFoundError:
            # Mid-rotation; the new file will show up on a later poll
            return 0

        if stat.st_size < self.offset or stat.st_ino != self._inode:
            logger.info(f"Log file {self.path} was rotated, reading from the start")
            self.detach()
            try:
                self._open()
            except OSError as e:
                # Forget the inode so the next poll tries again
                self._inode = None
                logger.warning(f"Could not reopen {self.path}: {e}")
                return 0
            self.offset = 0
            self.partial = b""

        if stat.st_size == self.offset:
            return 0

        lines = self._read_new_lines()
        for line in lines:
            self._handle_line(line)
        return len(lines)

    def _read_new_lines(self) -> list[str]:
        self._file.seek(self.offset)
        data = self._file.read()
        self.offset += len(data)

        chunks = (self.partial + data).split(b"\n")
        # Last chunk is empty after a trailing newline, otherwise an incomplete line
        self.partial = chunks.pop()
        return [chunk.decode("utf-8", errors="replace").rstrip("\r") for chunk in chunks]

    def _handle_line(self, line: str):
        if not line:
            return
        try:
            event = parse_line(line, next(self._counter))
            if event is None:
                return
            if self._store.ingest(event):
                self._notifier.publish(REQUEST_LOG, event.to_dict())
        except PersistError as e:
            logger.error(f"Failed to save request to history: {e}")
        except Exception as e:
            logger.error(f"Error processing log line: {e}")

    def _open(self):
        self._file = open(self.path, "rb")
        self._inode = os.fstat(self._file.fileno()).st_ino

    def detach(self):
        """Close the file handle."""
        if self._file is not None:
            try:
                self._file.close()
            except OSError:
                pass
            self._file = None
