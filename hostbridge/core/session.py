"""
Remote session: one authenticated SSH connection plus its SFTP sub-channel
"""
import errno
import io
import posixpath
import socket
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

import paramiko

from .. import config as _cfg
from ..errors import (
    AuthError, CloseError, CommandError, ConnectError, CredentialError, HostKeyError,
    InvalidArgument, RemoteIOError, RemoteNotFoundError, SessionClosedError, StepError,
)
from ..utils.logging import log, vlog, warn
from .host_keys import HostKeyPolicy, resolve_host_key_policy


# ── credentials ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Password:
    secret: str

    def __repr__(self):
        return "Password(***)"


@dataclass(frozen=True)
class PrivateKey:
    material: Union[str, bytes]
    passphrase: Optional[str] = None

    def __repr__(self):
        return "PrivateKey(***)"

    @classmethod
    def from_file(cls, path: str, passphrase: Optional[str] = None) -> "PrivateKey":
        try:
            material = Path(path).expanduser().read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise CredentialError(f"cannot read private key {path}: {exc}") from exc
        return cls(material, passphrase)


Credential = Union[Password, PrivateKey]

_KEY_TYPES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


def parse_private_key(key: PrivateKey) -> paramiko.PKey:
    """Parse OpenSSH/PEM key material; raises CredentialError if no key type accepts it."""
    material = key.material.decode("utf-8", errors="replace") if isinstance(key.material, bytes) \
        else key.material
    if not material.strip():
        raise CredentialError("private key material is empty")
    for key_cls in _KEY_TYPES:
        try:
            return key_cls.from_private_key(io.StringIO(material), password=key.passphrase)
        except paramiko.PasswordRequiredException as exc:
            raise CredentialError("private key is encrypted and no passphrase was given") from exc
        except (paramiko.SSHException, ValueError, TypeError):
            continue
    raise CredentialError("private key material could not be parsed")


# ── command results ──────────────────────────────────────────────────────────

@dataclass
class RemoteCommandResult:
    """Combined stdout+stderr of one remote command and its exit status."""
    command: str
    output: bytes
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def text(self) -> str:
        return self.output.decode("utf-8", errors="replace")

    def check(self) -> "RemoteCommandResult":
        """Return self, or raise CommandError carrying the full output."""
        if not self.ok:
            raise CommandError(
                f"remote command exited {self.exit_status}: {self.command!r}\n"
                f"output: {self.text.strip()}",
                command=self.command, exit_status=self.exit_status, output=self.output,
            )
        return self


def _is_missing(exc: BaseException) -> bool:
    return isinstance(exc, FileNotFoundError) or getattr(exc, "errno", None) == errno.ENOENT


class RemoteSession:
    """
    Wraps a connected paramiko SSHClient + SFTPClient.
    Every execute() opens its own channel so no shell state leaks between
    commands.  Not thread-safe: use one session per thread.
    """

    def __init__(self, host: str, port: int, user: str,
                 client: paramiko.SSHClient, sftp: paramiko.SFTPClient):
        self.host = host
        self.port = port
        self.user = user
        self._ssh: Optional[paramiko.SSHClient] = client
        self._sftp: Optional[paramiko.SFTPClient] = sftp

    def __repr__(self):
        state = "closed" if self.closed else "open"
        return f"<RemoteSession {self.user}@{self.host}:{self.port} {state}>"

    # ── connection ─────────────────────────────────────────────────────────

    @classmethod
    def connect(cls, host: str, port: int, user: str, credential: Credential,
                host_key_policy: Optional[HostKeyPolicy] = None,
                timeout: Optional[float] = None) -> "RemoteSession":
        """Authenticate and open the command + file-transfer channels."""
        kw: dict = dict(hostname=host, port=port, username=user,
                        allow_agent=False, look_for_keys=False)
        if isinstance(credential, PrivateKey):
            kw["pkey"] = parse_private_key(credential)
        elif isinstance(credential, Password):
            kw["password"] = credential.secret
        else:
            raise CredentialError(f"unsupported credential type: {type(credential).__name__}")

        timeout = _cfg.CONNECT_TIMEOUT if timeout is None else timeout
        kw.update(timeout=timeout, banner_timeout=timeout, auth_timeout=timeout)

        policy = host_key_policy if host_key_policy is not None else resolve_host_key_policy()

        log(f"[SSH] connecting to {user}@{host}:{port} …")
        client = paramiko.SSHClient()
        try:
            policy.install(client)
            client.connect(**kw)
        except HostKeyError:
            client.close()
            raise
        except paramiko.BadHostKeyException as exc:
            client.close()
            raise HostKeyError(str(exc), hostname=host) from exc
        except paramiko.AuthenticationException as exc:
            client.close()
            raise AuthError(f"authentication failed for {user}@{host}: {exc}") from exc
        except (paramiko.SSHException, socket.timeout, OSError, EOFError) as exc:
            client.close()
            raise ConnectError(f"cannot connect to {host}:{port}: {exc}") from exc

        try:
            sftp = client.open_sftp()
        except (paramiko.SSHException, OSError, EOFError) as exc:
            client.close()
            raise ConnectError(f"cannot open sftp channel to {host}:{port}: {exc}") from exc

        log("[SSH] connected ✓")
        return cls(host, port, user, client, sftp)

    @property
    def closed(self) -> bool:
        return self._ssh is None

    def _ensure_open(self):
        if self._ssh is None or self._sftp is None:
            raise SessionClosedError(f"session to {self.host} is closed")

    def close(self):
        """
        Release the sftp channel, then the ssh connection.  Both are always
        attempted; the first failure is raised as CloseError.  Closing an
        already-closed session does nothing.
        """
        if self.closed:
            vlog(f"[SSH] session to {self.host} already closed")
            return
        first: Optional[CloseError] = None
        sftp, ssh = self._sftp, self._ssh
        self._sftp = None
        self._ssh = None
        try:
            sftp.close()
        except Exception as exc:
            first = CloseError(f"closing sftp channel failed: {exc}", channel="sftp")
            first.__cause__ = exc
        try:
            ssh.close()
        except Exception as exc:
            if first is None:
                first = CloseError(f"closing ssh connection failed: {exc}", channel="ssh")
                first.__cause__ = exc
        if first is not None:
            raise first
        log("[SSH] disconnected.")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
            return False
        try:
            self.close()
        except CloseError as close_exc:
            warn(f"[SSH] {close_exc} (ignored while handling {exc_type.__name__})")
        return False

    # ── raw exec ────────────────────────────────────────────────────────────

    def execute(self, command: str, timeout: Optional[float] = None) -> RemoteCommandResult:
        """Run a command on a fresh channel; return its combined output and exit status."""
        self._ensure_open()
        if not command or not command.strip():
            raise InvalidArgument("no command received")
        vlog(f"[SSH] $ {command}")
        try:
            channel = self._ssh.get_transport().open_session()
        except (paramiko.SSHException, OSError, EOFError, AttributeError) as exc:
            raise CommandError(f"cannot open channel for {command!r}: {exc}", command=command) from exc
        try:
            channel.set_combine_stderr(True)
            if timeout is not None:
                channel.settimeout(timeout)
            channel.exec_command(command)
            with channel.makefile("rb") as stream:
                output = stream.read()
            status = channel.recv_exit_status()
        except (paramiko.SSHException, socket.timeout, OSError, EOFError) as exc:
            raise CommandError(f"remote command {command!r} failed: {exc}", command=command) from exc
        finally:
            channel.close()
        return RemoteCommandResult(command, output, status)

    def execute_sequence(self, commands: Sequence[str]) -> list[RemoteCommandResult]:
        """Run commands in order, stopping at the first failure (StepError)."""
        if not commands:
            raise InvalidArgument("no commands received")
        results = []
        for index, command in enumerate(commands):
            try:
                results.append(self.execute(command).check())
            except (CommandError, InvalidArgument) as exc:
                raise StepError(command, index, exc) from exc
        return results

    def home_directory(self) -> str:
        """
        Resolve the login user's home directory on the remote side.
        Only the first output line counts; stderr noise from shell profiles
        can follow it in the combined output.
        """
        result = self.execute(_cfg.HOME_COMMAND).check()
        lines = result.text.strip().splitlines()
        home = lines[0].strip() if lines else ""
        if not posixpath.isabs(home):
            raise CommandError(f"unexpected home directory output: {home!r}",
                               command=result.command, exit_status=result.exit_status,
                               output=result.output)
        return home

    # ── sftp ops ────────────────────────────────────────────────────────────

    def stat(self, path: str) -> paramiko.SFTPAttributes:
        self._ensure_open()
        try:
            return self._sftp.stat(path)
        except (IOError, OSError) as exc:
            if _is_missing(exc):
                raise RemoteNotFoundError(f"remote path does not exist: {path}", path=path) from exc
            raise RemoteIOError(f"cannot stat remote path {path}: {exc}", path=path) from exc
        except paramiko.SSHException as exc:
            raise RemoteIOError(f"cannot stat remote path {path}: {exc}", path=path) from exc

    def exists(self, path: str) -> bool:
        try:
            self.stat(path)
            return True
        except RemoteNotFoundError:
            return False

    def is_dir(self, path: str) -> bool:
        return stat.S_ISDIR(self.stat(path).st_mode or 0)

    def open(self, path: str, mode: str = "rb"):
        self._ensure_open()
        try:
            return self._sftp.open(path, mode)
        except (IOError, OSError, paramiko.SSHException) as exc:
            if _is_missing(exc):
                raise RemoteNotFoundError(f"remote path does not exist: {path}", path=path) from exc
            raise RemoteIOError(f"cannot open remote path {path}: {exc}", path=path) from exc

    def chmod(self, path: str, mode: int):
        self._ensure_open()
        try:
            self._sftp.chmod(path, mode)
        except (IOError, OSError, paramiko.SSHException) as exc:
            raise RemoteIOError(f"cannot chmod remote path {path}: {exc}", path=path) from exc

    def remove(self, path: str):
        self._ensure_open()
        try:
            self._sftp.remove(path)
        except (IOError, OSError, paramiko.SSHException) as exc:
            if _is_missing(exc):
                raise RemoteNotFoundError(f"remote path does not exist: {path}", path=path) from exc
            raise RemoteIOError(f"cannot remove remote path {path}: {exc}", path=path) from exc

    def remove_quietly(self, path: str) -> bool:
        """Best-effort remove; the error is logged and discarded."""
        try:
            self.remove(path)
            return True
        except RemoteNotFoundError:
            return False
        except (RemoteIOError, SessionClosedError) as exc:
            warn(f"[SSH] could not remove {path}: {exc}")
            return False

    def mkdir_all(self, path: str, mode: int = 0o755):
        """Create path and any missing parents (like mkdir -p)."""
        self._ensure_open()
        path = posixpath.normpath(path)
        pending = []
        current = path
        while current not in ("", "/", "."):
            try:
                attrs = self.stat(current)
            except RemoteNotFoundError:
                pending.append(current)
                current = posixpath.dirname(current)
                continue
            if not stat.S_ISDIR(attrs.st_mode or 0):
                raise RemoteIOError(f"remote path exists and is not a directory: {current}", path=current)
            break
        for directory in reversed(pending):
            try:
                self._sftp.mkdir(directory, mode)
            except (IOError, OSError, paramiko.SSHException) as exc:
                raise RemoteIOError(f"cannot create remote directory {directory}: {exc}",
                                    path=directory) from exc
            vlog(f"[SSH] mkdir {directory}")


def open_session(host: Optional[str] = None, port: Optional[int] = None, user: Optional[str] = None,
                 credential: Optional[Credential] = None,
                 host_key_policy: Optional[HostKeyPolicy] = None) -> RemoteSession:
    """Open a session using the active config profile for anything not given."""
    if credential is None:
        if _cfg.SSH_KEY_PATH:
            credential = PrivateKey.from_file(_cfg.SSH_KEY_PATH, _cfg.SSH_KEY_PASSPHRASE)
        elif _cfg.SSH_PASSWORD:
            credential = Password(_cfg.SSH_PASSWORD)
        else:
            raise CredentialError("no ssh_key or ssh_password configured")
    return RemoteSession.connect(
        host or _cfg.SSH_HOST,
        port or _cfg.SSH_PORT,
        user or _cfg.SSH_USER,
        credential,
        host_key_policy=host_key_policy,
    )
