"""
Logging utilities for scpull

Progress and verbose lines go to stdout; warnings go to stderr so they stay
out of the per-file progress output of a pull.
"""
import sys
from datetime import datetime

_verbose = False


def set_verbose(verbose: bool):
    """Set the verbose flag"""
    global _verbose
    _verbose = verbose


def _stamp(msg: str) -> str:
    return f"[{datetime.now().strftime('%H:%M:%S')}] {msg}"


def log(msg: str):
    """Log a message with timestamp"""
    print(_stamp(msg), flush=True)


def vlog(msg: str):
    """Log a verbose message (only if verbose mode is enabled)"""
    if _verbose:
        log(msg)


def warn(msg: str):
    """Log a warning to stderr"""
    print(_stamp(f"⚠  {msg}"), file=sys.stderr, flush=True)
