"""
Error taxonomy for scpull

Every error raised while receiving is fatal for the pull; nothing here is
retried automatically.  Local I/O failures surface as the builtin OSError.
"""


class ScpError(Exception):
    """Base class for all scpull errors."""


class ProtocolError(ScpError):
    """Malformed control line, unexpected state or bad status byte."""


class RemoteError(ProtocolError):
    """The remote sender reported an error (\\x01 / \\x02 line or exit status)."""


class TimestampRangeError(ProtocolError, ValueError):
    """A timestamp fractional part is outside 0..999999."""


class PathSafetyError(ScpError):
    """A remote-declared name would land outside the destination root."""


class TransportError(ScpError):
    """The channel closed or was cancelled before the transfer completed."""
