"""
Exception hierarchy for hostbridge
"""
from typing import Optional


class HostBridgeError(Exception):
    """Base class for every error raised by hostbridge"""
    pass


# ── session establishment ────────────────────────────────────────────────────

class ConnectError(HostBridgeError):
    """Transport, socket or timeout failure while opening a session"""
    pass


class AuthError(ConnectError):
    """The server rejected the supplied credential"""
    pass


class HostKeyError(ConnectError):
    """The server's host key was not trusted by the active policy"""

    def __init__(self, message: str, hostname: str = None, fingerprint: str = None):
        self.hostname = hostname
        self.fingerprint = fingerprint
        super().__init__(message)


class CredentialError(HostBridgeError):
    """Private key material could not be parsed or decrypted"""
    pass


class SessionClosedError(HostBridgeError):
    """An operation was attempted on a closed session"""
    pass


class CloseError(HostBridgeError):
    """Releasing one of the session channels failed"""

    def __init__(self, message: str, channel: str = None):
        self.channel = channel
        super().__init__(message)


class InvalidArgument(HostBridgeError, ValueError):
    """Empty command, empty command sequence, empty service name"""
    pass


# ── filesystem ───────────────────────────────────────────────────────────────

class LocalIOError(HostBridgeError):
    """Local stat/read/write failure"""

    def __init__(self, message: str, path: str = None):
        self.path = path
        super().__init__(message)


class LocalNotFoundError(LocalIOError):
    """A local file or directory does not exist"""
    pass


class RemoteIOError(HostBridgeError):
    """Remote stat/read/write failure"""

    def __init__(self, message: str, path: str = None):
        self.path = path
        super().__init__(message)


class RemoteNotFoundError(RemoteIOError):
    """A remote file or directory does not exist"""
    pass


class IntegrityError(HostBridgeError):
    """Digest mismatch after a transfer"""

    def __init__(self, local_path: str, remote_path: str, local_digest: str, remote_digest: str):
        self.local_path = local_path
        self.remote_path = remote_path
        self.local_digest = local_digest
        self.remote_digest = remote_digest
        super().__init__(
            f"md5 mismatch: {local_path} ({local_digest}) != {remote_path} ({remote_digest})"
        )


# ── remote commands ──────────────────────────────────────────────────────────

class CommandError(HostBridgeError):
    """A remote command failed or produced output that could not be used"""

    def __init__(self, message: str, command: str = None, exit_status: Optional[int] = None,
                 output: bytes = b""):
        self.command = command
        self.exit_status = exit_status
        self.output = output
        super().__init__(message)

    @property
    def text(self) -> str:
        return (self.output or b"").decode("utf-8", errors="replace")


class StepError(HostBridgeError):
    """
    First failure of a fail-fast sequence (command list, directory replication).
    `step` names what failed, `index` is its position, `cause` is the original error.
    """

    def __init__(self, step: str, index: int, cause: Exception):
        self.step = step
        self.index = index
        self.cause = cause
        super().__init__(f"step {index} ({step}) failed: {cause}")
