"""
SSH connection manager: session setup and exec channels for the sender
"""
from typing import Optional
import paramiko
from .. import config as _cfg
from ..utils.logging import log, vlog
from ..utils.retry import retried


class SSHManager:
    """
    Wraps a paramiko SSHClient.
    Sends SSH keep-alives to reduce mid-transfer drops and hands out raw
    exec channels for the remote sender process.
    """

    def __init__(self):
        self._ssh: Optional[paramiko.SSHClient] = None

    # ── connection ─────────────────────────────────────────────────────────

    @retried
    def connect(self):
        if self._ssh:
            try:
                self._ssh.get_transport().send_ignore()  # test if alive
                return
            except Exception:
                self._close_quietly()

        log(f"[SSH] connecting to {_cfg.SSH_USER}@{_cfg.SSH_HOST}:{_cfg.SSH_PORT} …")
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        kw: dict = dict(hostname=_cfg.SSH_HOST, port=_cfg.SSH_PORT, username=_cfg.SSH_USER,
                        timeout=20, banner_timeout=30, auth_timeout=30)
        if _cfg.SSH_KEY_PATH:
            kw["key_filename"] = _cfg.SSH_KEY_PATH
        if _cfg.SSH_PASSWORD:
            kw["password"] = _cfg.SSH_PASSWORD

        client.connect(**kw)

        # Keep-alive: send a NOP every 30s
        transport = client.get_transport()
        transport.set_keepalive(30)

        self._ssh = client
        log("[SSH] connected ✓")

    def _close_quietly(self):
        try:
            if self._ssh:
                self._ssh.close()
        except Exception:
            pass
        self._ssh = None

    def disconnect(self):
        self._close_quietly()
        log("[SSH] disconnected.")

    def ensure_connected(self):
        """Call before any remote operation."""
        try:
            if self._ssh and self._ssh.get_transport().is_active():
                return
        except Exception:
            pass
        self.connect()

    # ── raw exec ────────────────────────────────────────────────────────────

    def open_exec(self, cmd: str) -> paramiko.Channel:
        """Start *cmd* on the remote host and return its unbuffered channel."""
        self.ensure_connected()
        vlog(f"[SSH] exec: {cmd}")
        channel = self._ssh.get_transport().open_session()
        channel.exec_command(cmd)
        return channel
