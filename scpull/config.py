"""
Configuration constants for scpull
"""
import os
from pathlib import Path
from typing import Optional

import yaml

# ══════════════════════════════════════════════════════════════════════════════
#  DEFAULTS  ── overridden by YAML config or apply_profile()
# ══════════════════════════════════════════════════════════════════════════════

SSH_HOST = "example.com"
SSH_PORT = 22
SSH_USER = "root"
# Path to your private key, or None to use ssh-agent / ~/.ssh/id_*
SSH_KEY_PATH: Optional[str] = None
SSH_PASSWORD: Optional[str] = None  # only if you use password auth

# Sender program run on the remote host
SCP_COMMAND = "scp"

# Largest payload chunk handed to the receiver at once
BLOCK_SIZE = 32 * 1024

# Retry settings (connection establishment only; a pull is never retried)
RETRY_MAX = 5
RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt

PROJECT_FILE = ".scpull"


# ══════════════════════════════════════════════════════════════════════════════
#  GLOBAL CONFIG FILE  ── $XDG_CONFIG_HOME/scpull/config.yaml
# ══════════════════════════════════════════════════════════════════════════════

def get_global_config_dir() -> Path:
    """Return the global config directory for scpull."""
    xdg = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg:
        return Path(xdg) / "scpull"
    if os.name == "nt":
        appdata = os.environ.get("APPDATA", "")
        if appdata:
            return Path(appdata) / "scpull"
    return Path.home() / ".config" / "scpull"


def load_global_config() -> dict:
    """Load global config; a missing file means no global defaults."""
    cfg_path = get_global_config_dir() / "config.yaml"
    if not cfg_path.is_file():
        return {}
    with cfg_path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


# ══════════════════════════════════════════════════════════════════════════════
#  PROJECT CONFIG FILE  ── .scpull (searched upward)
# ══════════════════════════════════════════════════════════════════════════════

def find_project_file(start: Optional[Path] = None) -> Optional[Path]:
    """
    Search upward from *start* (default: cwd) for a .scpull YAML file.
    Returns the Path if found, or None if no .scpull exists in any parent.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / PROJECT_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_project_file(path: Path) -> dict:
    """Parse a .scpull YAML file and return its contents as a dict."""
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_profile(data: dict, profile_name: str = "default") -> dict:
    """
    Extract a named profile from a .scpull or config.yaml data dict.
    Falls back to the first profile if the named one is not found.
    Returns a flat profile dict merged with top-level defaults.
    """
    defaults = data.get("defaults", {})
    profiles = data.get("profiles", [])
    if not profiles:
        return defaults.copy()
    profile = next((p for p in profiles if p.get("name") == profile_name), None)
    if profile is None:
        profile = profiles[0]
    merged = defaults.copy()
    merged.update(profile)
    return merged


# ══════════════════════════════════════════════════════════════════════════════
#  APPLY PROFILE  ── mutates module-level variables
# ══════════════════════════════════════════════════════════════════════════════

def apply_profile(profile: dict):
    """
    Apply a profile dict to the module-level config variables.
    Supports keys: server, port, user, ssh_key, ssh_password,
                   scp_command, block_size, retry_max, retry_base_delay.
    """
    global SSH_HOST, SSH_PORT, SSH_USER, SSH_KEY_PATH, SSH_PASSWORD
    global SCP_COMMAND, BLOCK_SIZE, RETRY_MAX, RETRY_BASE_DELAY

    if "server" in profile:
        SSH_HOST = str(profile["server"])
    if "port" in profile:
        SSH_PORT = int(profile["port"])
    if "user" in profile:
        SSH_USER = str(profile["user"])
    elif "username" in profile:
        SSH_USER = str(profile["username"])
    if "ssh_key" in profile:
        SSH_KEY_PATH = str(profile["ssh_key"]) if profile["ssh_key"] else None
    if "ssh_password" in profile:
        SSH_PASSWORD = str(profile["ssh_password"]) if profile["ssh_password"] else None
    if "scp_command" in profile:
        SCP_COMMAND = str(profile["scp_command"])
    if "block_size" in profile:
        BLOCK_SIZE = int(profile["block_size"])
    if "retry_max" in profile:
        RETRY_MAX = max(1, int(profile["retry_max"]))
    if "retry_base_delay" in profile:
        RETRY_BASE_DELAY = float(profile["retry_base_delay"])


def load_config(profile_name: str = "default", start: Optional[Path] = None) -> Optional[Path]:
    """
    Apply global defaults, then the nearest .scpull profile on top.
    Returns the project file used, or None when only global defaults applied.
    """
    global_cfg = load_global_config()
    if global_cfg:
        apply_profile(get_profile(global_cfg, profile_name))
    project = find_project_file(start)
    if project is not None:
        apply_profile(get_profile(load_project_file(project), profile_name))
    return project
