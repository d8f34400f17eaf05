"""
SCP sink-side protocol receiver

Turns the byte stream written by a remote ``scp -f`` into local files and
directories, and queues the ack bytes the sender blocks on.  The receiver does
no I/O on the channel itself: the driver hands it inbound chunks with
``feed()`` and collects outbound bytes with ``read()``.

Wire grammar (one control line per inbound chunk while in READLINE):

    T<mtime> <mtime_us> <atime> <atime_us>\\n
    C<mode> <size> <name>\\n   followed by <size> bytes and a status byte
    D<mode> <size> <name>\\n
    E\\n
"""
import enum
import os
import re
import stat
from collections import deque
from typing import Callable, Optional

from ..errors import PathSafetyError, ProtocolError, RemoteError, TimestampRangeError, TransportError
from ..utils.logging import vlog, warn
from . import events as ev

ACK = b"\x00"
MAX_USEC = 999999

_T_RE = re.compile(r"T([0-9]+) ([0-9]+) ([0-9]+) ([0-9]+)")
_CD_RE = re.compile(r"([CD])([0-7]+) ([0-9]+) (.*)", re.S)


class State(enum.Enum):
    INIT = 0
    READLINE = 1
    DATA = 2
    REMOTE_ERROR = 3   # collecting the sender's error message after a file


class _FileEntry:
    """The file currently receiving payload bytes (only while in DATA)."""

    __slots__ = ("sink", "local_path", "remote_path", "size", "written", "times")

    def __init__(self, sink, local_path: str, remote_path: str, size: int,
                 times: Optional[tuple[int, int]]):
        self.sink = sink
        self.local_path = local_path
        self.remote_path = remote_path
        self.size = size
        self.written = 0
        self.times = times


class ScpReceiver:
    """
    Finite-state machine for one pull.

    INIT -> READLINE on the first read() (handshake ack), then
    READLINE <-> DATA for every C entry until the stream ends.  A failure
    status after file data moves DATA -> REMOTE_ERROR until the sender's
    message line is complete.
    """

    def __init__(self, dest: str, recursive: bool,
                 on_event: Optional[Callable[..., None]] = None):
        self._dest = os.path.abspath(dest)
        self._recursive = recursive
        self._on_event = on_event
        self._state = State.INIT
        self._components: list[str] = []
        self._times: Optional[tuple[int, int]] = None   # (atime_ns, mtime_ns)
        self._file: Optional[_FileEntry] = None
        self._remaining = 0
        self._size = 0
        self._outbox: deque = deque()
        self._closed = False
        self._error_text = b""
        self._error_path = ""

    # ── introspection ───────────────────────────────────────────────────────

    @property
    def state(self) -> State:
        return self._state

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def depth(self) -> int:
        return len(self._components)

    @property
    def closed(self) -> bool:
        return self._closed

    # ── outbound ────────────────────────────────────────────────────────────

    def read(self) -> bytes:
        """Return (and clear) every queued outbound byte."""
        if self._state is State.INIT:
            self._ack()
            self._state = State.READLINE
        out = b"".join(self._outbox)
        self._outbox.clear()
        return out

    def _ack(self):
        self._outbox.append(ACK)

    def _emit(self, name: str, *args):
        if self._on_event is not None:
            self._on_event(name, *args)

    # ── inbound ─────────────────────────────────────────────────────────────

    def feed(self, chunk: bytes):
        """Accept one inbound chunk: a control line, or payload bytes in DATA."""
        if self._closed:
            raise TransportError("receiver is closed")
        if not chunk:
            return
        if self._state is State.READLINE:
            if chunk[-1:] != b"\n":
                raise ProtocolError("invalid protocol, expected control line ending in \\n")
            line = chunk[:-1]
            if b"\n" in line:
                raise ProtocolError(f"more than one control line in a chunk: {chunk!r}")
            try:
                text = line.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ProtocolError(f"control line is not valid UTF-8: {line!r}") from exc
            self._handle_line(text)
            self._ack()
        elif self._state is State.DATA:
            self._handle_data(chunk)
        elif self._state is State.REMOTE_ERROR:
            self._error_text += chunk
            if chunk.endswith(b"\n"):
                self._raise_remote_error()
        else:
            raise ProtocolError(f"invalid state {self._state.name} for inbound data")

    def _handle_line(self, line: str):
        vlog(f"  [scp] < {line!r}")
        if not line:
            raise ProtocolError("empty control line")
        code = line[0]
        if code in ("\x01", "\x02"):
            raise RemoteError(line[1:].strip() or "remote sender reported an error")
        if code == "E":
            if line != "E":
                raise ProtocolError(f"protocol error, response: {line!r}")
            self._popd()
        elif code == "T":
            self._set_times(line)
        elif code in ("C", "D"):
            self._handle_entry(line)
        else:
            raise ProtocolError(f"protocol error, response: {line!r}")

    def _set_times(self, line: str):
        m = _T_RE.fullmatch(line)
        if m is None:
            raise ProtocolError(f"protocol error, response: {line!r}")
        mtime, mtime_us, atime, atime_us = (int(g) for g in m.groups())
        if mtime_us > MAX_USEC or atime_us > MAX_USEC:
            raise TimestampRangeError(f"time out of range: {line!r}")
        self._times = (atime * 1_000_000_000 + atime_us * 1000,
                       mtime * 1_000_000_000 + mtime_us * 1000)

    def _popd(self):
        if self._times is not None:
            raise ProtocolError("timestamp line not followed by a file or directory")
        if not self._components:
            raise ProtocolError("end of directory received at the destination root")
        self._components.pop()

    def _handle_entry(self, line: str):
        m = _CD_RE.fullmatch(line)
        if m is None:
            raise ProtocolError(f"protocol error, response: {line!r}")
        code, mode_s, size_s, name = m.groups()
        mode = int(mode_s, 8)
        size = int(size_s, 10)

        self._check_name(name)
        dest = self._local_name(name) if self._recursive else self._dest
        src = self._remote_name(name)

        if code == "C":
            self._open_file(dest, src, mode, size)
        else:
            self._make_dir(dest, src, name, mode)

    # ── paths ───────────────────────────────────────────────────────────────

    @staticmethod
    def _check_name(name: str):
        if not name or name in (".", "..") or "/" in name or os.sep in name or "\x00" in name:
            raise PathSafetyError(f"invalid path: {name!r}")

    def _local_name(self, name: str) -> str:
        parent = os.path.join(self._dest, *self._components)
        full = os.path.abspath(os.path.join(parent, name))
        if os.path.dirname(full) != os.path.abspath(parent) or os.path.basename(full) != name:
            raise PathSafetyError(f"invalid path: {name!r}")
        root = os.path.realpath(self._dest)
        if os.path.commonpath([root, os.path.realpath(full)]) != root:
            raise PathSafetyError(f"path escapes destination: {name!r}")
        return full

    def _remote_name(self, name: str) -> str:
        return "/".join([*self._components, name])

    # ── entries ─────────────────────────────────────────────────────────────

    def _open_file(self, dest: str, src: str, mode: int, size: int):
        # download/progress fire before the sink is opened; if os.open fails
        # observers see a started download that never gets a done event.
        self._emit(ev.DOWNLOAD, src, size)
        self._emit(ev.PROGRESS, src, 0, size)
        vlog(f"  [scp] receiving {src} ({size} bytes, mode {mode:04o}) → {dest}")
        fd = os.open(dest, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        sink = os.fdopen(fd, "wb")
        self._file = _FileEntry(sink, dest, src, size, self._times)
        self._times = None
        self._size = self._remaining = size
        self._state = State.DATA

    def _make_dir(self, dest: str, src: str, name: str, mode: int):
        self._emit(ev.MKDIR, src)
        # owner needs rwx to populate the directory
        os.makedirs(dest, mode=mode | stat.S_IRWXU, exist_ok=True)
        if self._times is not None:
            os.utime(dest, ns=self._times)
            self._times = None
        self._components.append(name)

    def _handle_data(self, chunk: bytes):
        entry = self._file
        if entry is None:
            raise ProtocolError("invalid state: payload received with no open file")

        if len(chunk) <= self._remaining:
            entry.sink.write(chunk)
            entry.written += len(chunk)
            self._remaining -= len(chunk)
            self._emit(ev.PROGRESS, entry.remote_path, entry.written, entry.size)
            return

        status = chunk[self._remaining]
        if status != 0:
            if status in (1, 2):
                self._start_remote_error(entry, chunk[self._remaining + 1:])
                return
            raise ProtocolError(f"bad status byte {status:#04x} after {entry.remote_path}")
        if len(chunk) > self._remaining + 1:
            raise ProtocolError(f"unexpected bytes after the status byte of {entry.remote_path}")
        self._finish_file(chunk[:self._remaining])

    def _finish_file(self, tail: bytes):
        """
        Write the last payload bytes and complete the current file.

        Postcondition: the completion ack is queued only after the declared
        bytes are flushed to disk and the sink is closed, and after the pending
        timestamp (if any) has been applied.
        """
        entry = self._file
        entry.sink.write(tail)
        entry.written += len(tail)
        entry.sink.flush()
        os.fsync(entry.sink.fileno())
        entry.sink.close()
        self._file = None

        if entry.times is not None:
            os.utime(entry.local_path, ns=entry.times)

        self._state = State.READLINE
        self._remaining = 0
        self._size = 0
        self._ack()

        self._emit(ev.PROGRESS, entry.remote_path, entry.written, entry.size)
        self._emit(ev.DONE, entry.remote_path)

    def _start_remote_error(self, entry: _FileEntry, text: bytes):
        """The sender gave up on *entry*; its message follows up to a newline."""
        entry.sink.close()
        self._file = None
        self._remaining = 0
        self._size = 0
        self._error_path = entry.remote_path
        self._error_text = text
        self._state = State.REMOTE_ERROR
        if text.endswith(b"\n"):
            self._raise_remote_error()

    def _raise_remote_error(self):
        message = self._error_text.decode("utf-8", errors="replace").strip()
        raise RemoteError(message or f"remote sender failed on {self._error_path}")

    # ── teardown ────────────────────────────────────────────────────────────

    def close(self):
        """Abort: close any open sink without acknowledging it."""
        if self._file is not None:
            try:
                self._file.sink.close()
            finally:
                self._file = None
        self._closed = True

    def finish(self):
        """Clean end of stream; fails if a file was still receiving data."""
        if self._state is State.REMOTE_ERROR:
            self._closed = True
            self._raise_remote_error()
        if self._file is not None or self._state is State.DATA:
            path = self._file.remote_path if self._file else "?"
            self.close()
            raise TransportError(f"channel closed while receiving {path}")
        if self._components:
            warn(f"[scp] stream ended inside {'/'.join(self._components)!r}")
        if self._times is not None:
            warn("[scp] stream ended with an unused timestamp")
        self._closed = True
