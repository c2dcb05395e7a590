"""
hostbridge: manage one remote host over a single SSH session:
commands, verified file transfers, crontabs and systemd units.
"""
from .core import RemoteSession, RemoteCommandResult, Password, PrivateKey, open_session
from .errors import HostBridgeError

__version__ = "0.1.0"

__all__ = [
    "RemoteSession", "RemoteCommandResult", "Password", "PrivateKey", "open_session",
    "HostBridgeError", "__version__",
]
