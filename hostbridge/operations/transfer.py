"""
File transfer operations (single-file upload/download, recursive directory upload)
"""
import os
import posixpath
import stat
import time
from dataclasses import dataclass
from typing import Callable, Optional

import paramiko

from .. import config as _cfg
from ..core.session import RemoteSession
from ..errors import (
    HostBridgeError, IntegrityError, LocalIOError, LocalNotFoundError, RemoteIOError, StepError,
)
from ..utils.logging import log, vlog, warn
from .integrity import local_digest, remote_digest, verify as verify_digests


@dataclass
class TransferReport:
    """Outcome of one file transfer; returned to the caller, never persisted."""
    direction: str  # "upload" | "download"
    local_path: str
    remote_path: str
    size: int
    mode: int
    digest: Optional[str] = None
    elapsed: float = 0.0


def _local_stat(path: str) -> os.stat_result:
    try:
        return os.stat(path)
    except FileNotFoundError as exc:
        raise LocalNotFoundError(f"local path does not exist: {path}", path=path) from exc
    except OSError as exc:
        raise LocalIOError(f"cannot stat local path {path}: {exc}", path=path) from exc


def _require_remote_dir(session: RemoteSession, remote_dir: str):
    if not session.is_dir(remote_dir):
        raise RemoteIOError(f"remote path is not a directory: {remote_dir}", path=remote_dir)


def _copy_stream(src, dst, src_error, dst_error):
    """Copy src → dst chunk by chunk, tagging failures with the side they came from."""
    while True:
        try:
            chunk = src.read(_cfg.COPY_CHUNK_SIZE)
        except (OSError, paramiko.SSHException) as exc:
            raise src_error(exc) from exc
        if not chunk:
            return
        try:
            dst.write(chunk)
        except (OSError, paramiko.SSHException) as exc:
            raise dst_error(exc) from exc


# ── upload ───────────────────────────────────────────────────────────────────

def upload_file(session: RemoteSession, local_path, remote_dir: str,
                verify: Optional[bool] = None,
                on_remote_open: Optional[Callable[[str], None]] = None) -> TransferReport:
    """
    Upload local_path into the existing remote directory remote_dir.

    The remote directory is never created here.  After the copy the remote
    MD5 is compared with the local one (unless verify is False) and the local
    permission bits are applied to the remote file.  On a copy error or a
    digest mismatch the remote file is left where it is.

    on_remote_open, if given, is called with the remote path as soon as the
    remote file has been opened for writing; nothing on the remote side has
    been touched when an error is raised before that.
    """
    local_path = os.fspath(local_path)
    verify = _cfg.VERIFY_UPLOADS if verify is None else verify

    st = _local_stat(local_path)
    if stat.S_ISDIR(st.st_mode):
        raise LocalIOError(f"local path is a directory: {local_path}", path=local_path)
    _require_remote_dir(session, remote_dir)

    remote_path = posixpath.join(remote_dir, os.path.basename(local_path))
    vlog(f"  [UPLOAD] {local_path} → {remote_path}")
    started = time.monotonic()

    def read_failed(exc):
        warn(f"upload file error: {exc}")
        return LocalIOError(f"cannot read {local_path}: {exc}", path=local_path)

    def write_failed(exc):
        warn(f"upload file error: {exc}")
        return RemoteIOError(f"cannot write {remote_path}: {exc}", path=remote_path)

    try:
        src = open(local_path, "rb")
    except OSError as exc:
        raise LocalIOError(f"cannot open {local_path}: {exc}", path=local_path) from exc
    with src:
        try:
            with session.open(remote_path, "wb") as dst:
                if on_remote_open is not None:
                    on_remote_open(remote_path)
                _copy_stream(src, dst, read_failed, write_failed)
        except (OSError, paramiko.SSHException) as exc:
            # raised while flushing/closing the remote handle
            raise write_failed(exc) from exc

    digest = verify_digests(session, local_path, remote_path) if verify else None

    mode = stat.S_IMODE(st.st_mode)
    session.chmod(remote_path, mode)
    elapsed = time.monotonic() - started
    log(f"  [UPLOAD ✓] {local_path} uploaded!")
    return TransferReport("upload", local_path, remote_path, st.st_size, mode, digest, elapsed)


# ── download ─────────────────────────────────────────────────────────────────

def download_file(session: RemoteSession, remote_file: str, local_dir,
                  verify: Optional[bool] = None) -> TransferReport:
    """
    Download remote_file into local_dir (created if missing), copying the
    remote permission bits.  Verification is off unless asked for.
    """
    local_dir = os.fspath(local_dir)
    verify = _cfg.VERIFY_DOWNLOADS if verify is None else verify

    attrs = session.stat(remote_file)
    if stat.S_ISDIR(attrs.st_mode or 0):
        raise RemoteIOError(f"remote path is a directory: {remote_file}", path=remote_file)

    try:
        os.makedirs(local_dir, exist_ok=True)
    except OSError as exc:
        raise LocalIOError(f"cannot create local directory {local_dir}: {exc}", path=local_dir) from exc

    local_path = os.path.join(local_dir, posixpath.basename(remote_file))
    log(f"  [DOWNLOAD] {session.host}:{remote_file} start downloading")
    started = time.monotonic()

    def read_failed(exc):
        return RemoteIOError(f"cannot read {remote_file}: {exc}", path=remote_file)

    def write_failed(exc):
        return LocalIOError(f"cannot write {local_path}: {exc}", path=local_path)

    with session.open(remote_file, "rb") as src:
        try:
            dst = open(local_path, "wb")
        except OSError as exc:
            raise write_failed(exc) from exc
        with dst:
            _copy_stream(src, dst, read_failed, write_failed)

    mode = stat.S_IMODE(attrs.st_mode or 0)
    try:
        os.chmod(local_path, mode)
    except OSError as exc:
        raise LocalIOError(f"cannot chmod {local_path}: {exc}", path=local_path) from exc
    elapsed = time.monotonic() - started
    log(f"  [DOWNLOAD ✓] {session.host}:{remote_file} downloaded, costs {elapsed:.2f} seconds")

    digest = None
    if verify:
        digest = remote_digest(session, remote_file)
        copied = local_digest(local_path)
        if copied != digest:
            raise IntegrityError(local_path, remote_file, copied, digest)
        vlog(f"  [MD5 ✓] {local_path} {digest}")

    size = attrs.st_size if attrs.st_size is not None else os.path.getsize(local_path)
    return TransferReport("download", local_path, remote_file, size, mode, digest, elapsed)


# ── directory upload ─────────────────────────────────────────────────────────

def _list_local(local_dir: str) -> list[tuple[str, bool]]:
    """(path, is_dir) for each entry, ordered by name."""
    try:
        with os.scandir(local_dir) as it:
            entries = [(e.name, e.is_dir(follow_symlinks=False)) for e in it]
    except FileNotFoundError as exc:
        raise LocalNotFoundError(f"local directory does not exist: {local_dir}", path=local_dir) from exc
    except OSError as exc:
        raise LocalIOError(f"cannot list local directory {local_dir}: {exc}", path=local_dir) from exc
    entries.sort()
    return [(os.path.join(local_dir, name), is_dir) for name, is_dir in entries]


def _replicate_dir(session: RemoteSession, local_dir: str, remote_parent: str) -> list[tuple]:
    """Create remote_parent/<basename(local_dir)> and return the child tasks."""
    entries = _list_local(local_dir)
    _require_remote_dir(session, remote_parent)
    target = posixpath.join(remote_parent, os.path.basename(os.path.normpath(local_dir)))
    session.mkdir_all(target)
    log(f"  [UPLOAD] {local_dir}/ → {target}/ ({len(entries)} entries)")
    return [("dir" if is_dir else "file", path, target) for path, is_dir in entries]


def upload_directory(session: RemoteSession, local_dir, remote_dir: str,
                     verify: Optional[bool] = None) -> list[TransferReport]:
    """
    Replicate local_dir as remote_dir/<basename(local_dir)>.

    Pending work is kept on an explicit stack and processed depth-first in
    name order.  The first failing entry stops the walk and is raised as a
    StepError naming that entry; a problem with the top-level directory
    itself is raised unchanged.
    """
    local_dir = os.fspath(local_dir)
    reports: list[TransferReport] = []
    pending = [("dir", local_dir, remote_dir)]
    index = 0
    while pending:
        kind, local, parent = pending.pop()
        try:
            if kind == "dir":
                pending.extend(reversed(_replicate_dir(session, local, parent)))
            else:
                reports.append(upload_file(session, local, parent, verify=verify))
        except HostBridgeError as exc:
            if index == 0:
                raise
            warn(f"  [UPLOAD ✗] {local}: {exc}")
            raise StepError(local, index, exc) from exc
        index += 1
    return reports
