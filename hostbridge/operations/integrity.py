"""
Content digests (MD5) for transfer verification
"""
import hashlib
import re
import shlex
from typing import TYPE_CHECKING

from .. import config as _cfg
from ..errors import CommandError, IntegrityError, LocalIOError, LocalNotFoundError
from ..utils.logging import vlog

if TYPE_CHECKING:
    from ..core.session import RemoteSession

_MD5_HEX = re.compile(r"^[0-9a-fA-F]{32}$")


def local_digest(path) -> str:
    """Compute MD5 hash of a local file, streaming it in chunks"""
    h = hashlib.md5()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_cfg.COPY_CHUNK_SIZE), b""):
                h.update(chunk)
    except FileNotFoundError as exc:
        raise LocalNotFoundError(f"local file does not exist: {path}", path=str(path)) from exc
    except OSError as exc:
        raise LocalIOError(f"cannot read local file {path}: {exc}", path=str(path)) from exc
    return h.hexdigest()


def remote_digest(session: "RemoteSession", remote_path: str) -> str:
    """Return MD5 hex digest of a remote file using the remote digest command."""
    cmd = _cfg.REMOTE_DIGEST_COMMAND.format(path=shlex.quote(remote_path))
    result = session.execute(cmd).check()
    # md5sum output: "<hash>  <filename>"; awk already keeps only the first field
    fields = result.text.split()
    if not fields or not _MD5_HEX.match(fields[0]):
        raise CommandError(
            f"unexpected digest output for {remote_path}: {result.text.strip()!r}",
            command=cmd, exit_status=result.exit_status, output=result.output,
        )
    return fields[0].lower()


def verify(session: "RemoteSession", local_path, remote_path: str) -> str:
    """Compare local and remote digests; return the digest or raise IntegrityError."""
    src = local_digest(local_path)
    dst = remote_digest(session, remote_path)
    if src != dst:
        raise IntegrityError(str(local_path), remote_path, src, dst)
    vlog(f"  [MD5 ✓] {remote_path} {dst}")
    return dst
