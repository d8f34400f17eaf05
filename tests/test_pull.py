"""
Tests for the pull orchestrator, driven through a scripted fake channel.

Tests:
  - remote command construction and shell quoting
  - a full recursive pull, including re-framing of coalesced/fragmented reads
  - event relaying and the single finish / error signal
  - failure paths: path escape, early close, non-zero exit, remote error, cancel
"""
import tempfile
import unittest
from collections import deque
from pathlib import Path

from scpull.core.pull import Pull, quote
from scpull.errors import PathSafetyError, RemoteError, TransportError

STREAM = [
    b"D0755 0 sub\n",
    b"T1700000000 0 1700000000 0\n",
    b"C0644 5 a.txt\n",
    b"hello\x00",
    b"E\n",
]


class FakeChannel:
    """Stands in for a paramiko Channel running the remote sender."""

    def __init__(self, chunks, exit_status=0, stderr=b""):
        self._inbound = deque(chunks)
        self._stderr = stderr
        self._exit_status = exit_status
        self.sent = bytearray()
        self.closed = False

    def sendall(self, data):
        self.sent += data

    def recv(self, n):
        if self.closed or not self._inbound:
            return b""
        chunk = self._inbound.popleft()
        if len(chunk) > n:
            self._inbound.appendleft(chunk[n:])
            chunk = chunk[:n]
        return chunk

    def recv_stderr_ready(self):
        return bool(self._stderr)

    def recv_stderr(self, n):
        data, self._stderr = self._stderr[:n], self._stderr[n:]
        return data

    def recv_exit_status(self):
        return self._exit_status

    def close(self):
        self.closed = True


class FakeSSH:
    def __init__(self, channel):
        self.channel = channel
        self.commands = []

    def open_exec(self, cmd):
        self.commands.append(cmd)
        return self.channel


# ── Tests: command line ───────────────────────────────────────────────────────

class TestCommand(unittest.TestCase):

    def test_quote(self):
        self.assertEqual(quote("plain"), "'plain'")
        self.assertEqual(quote("it's"), "'it'\\''s'")
        self.assertEqual(quote("a b;rm -rf"), "'a b;rm -rf'")

    def test_recursive_command(self):
        pull = Pull(FakeSSH(None), "/srv/data", ".", recursive=True)
        self.assertEqual(pull.build_command(), "scp -v -f -p -r '/srv/data'")

    def test_single_file_command(self):
        pull = Pull(FakeSSH(None), "/srv/a b.txt", ".", recursive=False, preserve=False)
        self.assertEqual(pull.build_command(), "scp -v -f '/srv/a b.txt'")


# ── Tests: pulls ──────────────────────────────────────────────────────────────

class PullTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)

    def tearDown(self):
        self.tmpdir.cleanup()

    def run_pull(self, chunks, recursive=True, **kw):
        channel = FakeChannel(chunks, **kw)
        pull = Pull(FakeSSH(channel), "/remote/sub", str(self.root), recursive=recursive)
        seen = []
        for name in ("download", "mkdir", "progress", "done", "finish", "error"):
            pull.on(name, lambda *args, _n=name: seen.append((_n, *args)))
        return pull, channel, seen


class TestSuccessfulPull(PullTestCase):

    def _assert_tree(self, channel, seen):
        self.assertEqual((self.root / "sub" / "a.txt").read_bytes(), b"hello")
        self.assertEqual(int((self.root / "sub" / "a.txt").stat().st_mtime), 1700000000)
        # handshake + D + T + C + file completion + E
        self.assertEqual(bytes(channel.sent), b"\x00" * 6)
        self.assertTrue(channel.closed)
        self.assertEqual(seen[-1], ("finish",))
        self.assertNotIn("error", [s[0] for s in seen])

    def test_pull_writes_tree(self):
        pull, channel, seen = self.run_pull(STREAM)
        pull.start()
        self._assert_tree(channel, seen)
        self.assertIn(("mkdir", "sub"), seen)
        self.assertIn(("download", "sub/a.txt", 5), seen)
        self.assertIn(("done", "sub/a.txt"), seen)

    def test_coalesced_stream(self):
        """Everything arriving in one read is re-framed line by line."""
        pull, channel, seen = self.run_pull([b"".join(STREAM)])
        pull.start()
        self._assert_tree(channel, seen)

    def test_fragmented_stream(self):
        """One byte per read still yields the same tree and acks."""
        data = b"".join(STREAM)
        pull, channel, seen = self.run_pull([data[i:i + 1] for i in range(len(data))])
        pull.start()
        self._assert_tree(channel, seen)

    def test_stderr_is_drained(self):
        pull, channel, seen = self.run_pull(STREAM, stderr=b"debug: Sink: C0644 5 a.txt\n")
        pull.start()
        self.assertFalse(channel.recv_stderr_ready())
        self.assertEqual(seen[-1], ("finish",))


class TestFailedPull(PullTestCase):

    def _assert_single_error(self, seen, exc_type):
        errors = [s for s in seen if s[0] == "error"]
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0][1], exc_type)
        self.assertNotIn(("finish",), seen)

    def test_path_escape_fails_pull(self):
        pull, channel, seen = self.run_pull([b"C0644 3 ../evil\n", b"abc\x00"])
        with self.assertRaises(PathSafetyError):
            pull.start()
        self._assert_single_error(seen, PathSafetyError)
        self.assertTrue(channel.closed)
        self.assertFalse((self.root.parent / "evil").exists())

    def test_channel_closed_mid_file(self):
        pull, channel, seen = self.run_pull([b"C0644 5 a.txt\n", b"hel"])
        with self.assertRaises(TransportError):
            pull.start()
        self._assert_single_error(seen, TransportError)
        self.assertEqual((self.root / "a.txt").read_bytes(), b"hel")

    def test_channel_closed_mid_line(self):
        pull, _, seen = self.run_pull([b"C0644 5 a"])
        with self.assertRaises(TransportError):
            pull.start()
        self._assert_single_error(seen, TransportError)

    def test_nonzero_exit_status(self):
        pull, _, seen = self.run_pull([], exit_status=1, stderr=b"scp: /remote/sub: No such file\n")
        with self.assertRaises(RemoteError) as cm:
            pull.start()
        self.assertIn("No such file", str(cm.exception))
        self._assert_single_error(seen, RemoteError)

    def test_remote_error_line(self):
        pull, _, seen = self.run_pull([b"\x01scp: /remote/sub: Permission denied\n"], exit_status=1)
        with self.assertRaises(RemoteError):
            pull.start()
        self._assert_single_error(seen, RemoteError)

    def test_remote_error_after_file_data(self):
        """The sender's message after a failed file's status byte reaches the caller."""
        pull, _, seen = self.run_pull(
            [b"C0644 2 a\n", b"ab\x01scp: /remote/sub/a: read error\n"], exit_status=1)
        with self.assertRaises(RemoteError) as cm:
            pull.start()
        self.assertIn("read error", str(cm.exception))
        self._assert_single_error(seen, RemoteError)
        self.assertNotIn("done", [s[0] for s in seen])

    def test_remote_error_message_fragmented(self):
        stream = b"C0644 2 a\nab\x02scp: /remote/sub/a: read error\n"
        pull, _, seen = self.run_pull([stream[i:i + 1] for i in range(len(stream))],
                                      exit_status=1)
        with self.assertRaises(RemoteError) as cm:
            pull.start()
        self.assertIn("read error", str(cm.exception))
        self._assert_single_error(seen, RemoteError)

    def test_files_before_failure_are_kept(self):
        pull, _, _ = self.run_pull([b"C0644 2 ok\n", b"ok\x00", b"C0644 3 ../bad\n"])
        with self.assertRaises(PathSafetyError):
            pull.start()
        self.assertEqual((self.root / "ok").read_bytes(), b"ok")

    def test_cancel_mid_file(self):
        pull, channel, seen = self.run_pull([b"C0644 5 a.txt\n", b"he", b"llo\x00"])

        def _cancel(path, written, total):
            if 0 < written < total:
                pull.cancel()

        pull.on("progress", _cancel)
        with self.assertRaises(TransportError):
            pull.start()
        self.assertTrue(channel.closed)
        self._assert_single_error(seen, TransportError)
        self.assertEqual((self.root / "a.txt").read_bytes(), b"he")


if __name__ == "__main__":
    unittest.main()
