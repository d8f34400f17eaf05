"""Core functionality"""
from .ssh_manager import SSHManager
from .receiver import ScpReceiver, State
from .pull import Pull, quote

__all__ = ["SSHManager", "ScpReceiver", "State", "Pull", "quote"]
