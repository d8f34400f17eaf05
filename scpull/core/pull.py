"""
Pull orchestrator: runs the remote sender and drives one receiver to completion
"""
from collections import deque
from typing import Callable, Optional

from .. import config as _cfg
from ..errors import ProtocolError, RemoteError, TransportError
from ..utils.logging import vlog
from . import events as ev
from .receiver import ScpReceiver, State

MAX_LINE_SIZE = 64 * 1024
STDERR_TAIL = 20


def quote(name: str) -> str:
    """Single-quote *name* for a POSIX shell."""
    return "'" + name.replace("'", "'\\''") + "'"


class Pull:
    """
    One recursive (or single-file) download from the remote host.

    ``start()`` blocks until the transfer finishes and raises the first error
    it meets; receiver events are relayed unchanged through ``events``.
    """

    def __init__(self, ssh, remote: str, local: str = ".",
                 recursive: bool = True, preserve: bool = True):
        self.events = ev.EventEmitter()
        self._ssh = ssh
        self._remote = remote
        self._local = local
        self._recursive = recursive
        self._preserve = preserve
        self._channel = None
        self._receiver: Optional[ScpReceiver] = None
        self._buf = b""
        self._stderr: deque = deque(maxlen=STDERR_TAIL)
        self._cancelled = False

    def on(self, name: str, handler: Callable) -> "Pull":
        self.events.on(name, handler)
        return self

    def build_command(self) -> str:
        flags = ["-v", "-f"]
        if self._preserve:
            flags.append("-p")
        if self._recursive:
            flags.append("-r")
        return " ".join([_cfg.SCP_COMMAND, *flags, quote(self._remote)])

    # ── lifecycle ───────────────────────────────────────────────────────────

    def start(self):
        receiver = ScpReceiver(self._local, self._recursive, on_event=self._relay)
        self._receiver = receiver
        try:
            self._channel = self._ssh.open_exec(self.build_command())
            self._pump(receiver)
            self._check_exit_status()
        except BaseException as exc:
            receiver.close()
            self._close_channel()
            self.events.emit(ev.ERROR, exc)
            raise
        self._close_channel()
        self.events.emit(ev.FINISH)

    def cancel(self):
        """Abort the transfer; start() fails with TransportError."""
        self._cancelled = True
        self._close_channel()

    def _relay(self, name: str, *args):
        self.events.emit(name, *args)

    def _close_channel(self):
        if self._channel is not None:
            self._channel.close()

    # ── byte pump ───────────────────────────────────────────────────────────

    def _pump(self, receiver: ScpReceiver):
        # every inbound chunk is fully handled before the next one is read
        while True:
            self._send(receiver.read())
            if receiver.state is State.DATA:
                chunk = self._recv_data(min(receiver.remaining + 1, _cfg.BLOCK_SIZE))
                if not chunk:
                    break
            else:
                chunk = self._recv_line()
                if chunk is None:
                    break
            receiver.feed(chunk)
        self._drain_stderr()
        receiver.finish()

    def _send(self, data: bytes):
        if data:
            self._channel.sendall(data)

    def _recv(self, n: int) -> bytes:
        if self._cancelled:
            raise TransportError("transfer cancelled")
        self._drain_stderr()
        data = self._channel.recv(n)
        if self._cancelled:
            raise TransportError("transfer cancelled")
        return data

    def _recv_line(self) -> Optional[bytes]:
        """Return one newline-terminated line, or None at a clean end of stream."""
        while b"\n" not in self._buf:
            if len(self._buf) > MAX_LINE_SIZE:
                raise ProtocolError("control line too long")
            data = self._recv(_cfg.BLOCK_SIZE)
            if not data:
                if self._buf:
                    raise TransportError("channel closed in the middle of a control line")
                return None
            self._buf += data
        line, _, self._buf = self._buf.partition(b"\n")
        return line + b"\n"

    def _recv_data(self, n: int) -> bytes:
        if self._buf:
            chunk, self._buf = self._buf[:n], self._buf[n:]
            return chunk
        return self._recv(n)

    def _drain_stderr(self):
        while self._channel.recv_stderr_ready():
            data = self._channel.recv_stderr(4096)
            if not data:
                break
            for line in data.decode("utf-8", errors="replace").splitlines():
                self._stderr.append(line)
                vlog(f"  [remote] {line}")

    def _check_exit_status(self):
        status = self._channel.recv_exit_status()
        if status != 0:
            detail = "; ".join(ln for ln in self._stderr if not ln.startswith("debug"))
            msg = f"remote {_cfg.SCP_COMMAND} exited {status}"
            raise RemoteError(f"{msg}: {detail}" if detail else msg)
