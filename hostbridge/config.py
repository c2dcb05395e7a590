"""
Configuration constants for hostbridge
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
# Private key file; its contents are parsed before any connection attempt
SSH_KEY_PATH: Optional[str] = None
SSH_KEY_PASSPHRASE: Optional[str] = None
SSH_PASSWORD: Optional[str] = None  # used only when no key is configured

# Connect, banner and auth timeout (seconds)
CONNECT_TIMEOUT = 5

# Host identity verification: "known_hosts", "fingerprint" or "accept-any".
# "accept-any" trusts every server key and must be chosen explicitly.
HOST_KEY_POLICY = "known_hosts"
KNOWN_HOSTS_FILE: Optional[str] = None  # extra file loaded after ~/.ssh/known_hosts
HOST_FINGERPRINTS: list[str] = []  # "SHA256:…" entries for the fingerprint policy

# Post-transfer MD5 verification
VERIFY_UPLOADS = True
VERIFY_DOWNLOADS = False

COPY_CHUNK_SIZE = 32768

# ══════════════════════════════════════════════════════════════════════════════
#  REMOTE COMMAND CONVENTIONS
# ══════════════════════════════════════════════════════════════════════════════

HOME_COMMAND = "cd;pwd"
# {path} is substituted already shell-quoted
REMOTE_DIGEST_COMMAND = "md5sum {path} | awk '{{print $1}}'"

CRONTAB_INSTALL = "crontab {path}"
CRONTAB_LIST = "crontab -l"
CRONTAB_CLEAR = "crontab -r"
# A failing crontab -l / -r whose output fully matches one of these regexes
# means "the table is empty". {user} is replaced by the escaped login name.
CRON_EMPTY_PATTERNS: list[str] = [r"no crontab for {user}"]
CRON_EMPTY_EXIT_CODES: list[int] = [1]

SYSTEMD_UNIT_DIR = "/usr/lib/systemd/system"
SYSTEMD_USE_SUDO = True


# ══════════════════════════════════════════════════════════════════════════════
#  GLOBAL CONFIG FILE  ── $XDG_CONFIG_HOME/hostbridge/config.yaml
# ══════════════════════════════════════════════════════════════════════════════

def get_global_config_dir() -> Path:
    """Return the global config directory for hostbridge."""
    xdg = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg:
        return Path(xdg) / "hostbridge"
    if os.name == "nt":
        appdata = os.environ.get("APPDATA", "")
        if appdata:
            return Path(appdata) / "hostbridge"
    return Path.home() / ".config" / "hostbridge"


def load_global_config() -> dict:
    """Load global config from the hostbridge config directory."""
    cfg_path = get_global_config_dir() / "config.yaml"
    if not cfg_path.is_file():
        return {}
    try:
        with cfg_path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        return {}


# ══════════════════════════════════════════════════════════════════════════════
#  PROJECT CONFIG FILE  ── .hostbridge (searched upward)
# ══════════════════════════════════════════════════════════════════════════════

def find_hostbridge(start: Optional[Path] = None) -> Optional[Path]:
    """
    Search upward from *start* (default: cwd) for a .hostbridge YAML file.
    Returns the Path if found, or None if no .hostbridge exists in any parent.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / ".hostbridge"
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_hostbridge_file(path: Path) -> dict:
    """Parse a .hostbridge YAML file and return its contents as a dict."""
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_profile(data: dict, profile_name: str = "default") -> dict:
    """
    Extract a named profile from a .hostbridge or config.yaml data dict.
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

def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def apply_profile(profile: dict):
    """
    Apply a profile dict to the module-level config variables.
    Supports keys: server, port, user/username, ssh_key, ssh_key_passphrase,
                   ssh_password, connect_timeout, host_key_policy, known_hosts,
                   fingerprints, verify_uploads, verify_downloads,
                   cron_empty_patterns, cron_empty_exit_codes,
                   systemd_unit_dir, systemd_sudo.
    """
    global SSH_HOST, SSH_PORT, SSH_USER, SSH_KEY_PATH, SSH_KEY_PASSPHRASE, SSH_PASSWORD
    global CONNECT_TIMEOUT, HOST_KEY_POLICY, KNOWN_HOSTS_FILE, HOST_FINGERPRINTS
    global VERIFY_UPLOADS, VERIFY_DOWNLOADS
    global CRON_EMPTY_PATTERNS, CRON_EMPTY_EXIT_CODES
    global SYSTEMD_UNIT_DIR, SYSTEMD_USE_SUDO

    if "server" in profile:
        SSH_HOST = str(profile["server"])
    if "port" in profile:
        SSH_PORT = int(profile["port"])
    if "user" in profile:
        SSH_USER = str(profile["user"])
    elif "username" in profile:
        SSH_USER = str(profile["username"])
    if "ssh_key" in profile:
        SSH_KEY_PATH = str(Path(profile["ssh_key"]).expanduser()) if profile["ssh_key"] else None
    if "ssh_key_passphrase" in profile:
        SSH_KEY_PASSPHRASE = str(profile["ssh_key_passphrase"]) if profile["ssh_key_passphrase"] else None
    if "ssh_password" in profile:
        SSH_PASSWORD = str(profile["ssh_password"]) if profile["ssh_password"] else None
    if "connect_timeout" in profile:
        CONNECT_TIMEOUT = float(profile["connect_timeout"])
    if "host_key_policy" in profile:
        HOST_KEY_POLICY = str(profile["host_key_policy"])
    if "known_hosts" in profile:
        KNOWN_HOSTS_FILE = str(Path(profile["known_hosts"]).expanduser()) if profile["known_hosts"] else None
    if "fingerprints" in profile:
        HOST_FINGERPRINTS = [str(f) for f in _as_list(profile["fingerprints"])]
    if "verify_uploads" in profile:
        VERIFY_UPLOADS = _as_bool(profile["verify_uploads"])
    if "verify_downloads" in profile:
        VERIFY_DOWNLOADS = _as_bool(profile["verify_downloads"])
    if "cron_empty_patterns" in profile:
        CRON_EMPTY_PATTERNS = [str(p) for p in _as_list(profile["cron_empty_patterns"])]
    if "cron_empty_exit_codes" in profile:
        CRON_EMPTY_EXIT_CODES = [int(c) for c in _as_list(profile["cron_empty_exit_codes"])]
    if "systemd_unit_dir" in profile:
        SYSTEMD_UNIT_DIR = str(profile["systemd_unit_dir"])
    if "systemd_sudo" in profile:
        SYSTEMD_USE_SUDO = _as_bool(profile["systemd_sudo"])
