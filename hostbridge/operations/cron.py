"""
Periodic-task (crontab) management
"""
import os
import posixpath
import re
import shlex
from typing import Iterable, Optional

from .. import config as _cfg
from ..core.session import RemoteCommandResult, RemoteSession
from ..errors import LocalNotFoundError
from ..utils.logging import log, vlog
from .transfer import upload_file


class EmptyTablePredicate:
    """
    Decides whether a failed `crontab -l` / `crontab -r` only means "no table".

    The wording differs between cron implementations and locales, so both the
    accepted exit codes and the output patterns are configurable.  A pattern
    must match the whole stripped output; `{user}` expands to the login name.
    """

    def __init__(self, patterns: Optional[Iterable[str]] = None,
                 exit_codes: Optional[Iterable[int]] = None):
        self.patterns = list(_cfg.CRON_EMPTY_PATTERNS if patterns is None else patterns)
        self.exit_codes = set(_cfg.CRON_EMPTY_EXIT_CODES if exit_codes is None else exit_codes)

    def __call__(self, result: RemoteCommandResult, user: str) -> bool:
        if result.ok or result.exit_status not in self.exit_codes:
            return False
        text = result.text.strip()
        for pattern in self.patterns:
            regex = pattern.replace("{user}", re.escape(user))
            if re.fullmatch(regex, text):
                return True
        return False


def install_periodic_task(session: RemoteSession, local_path) -> None:
    """
    Upload a crontab file to the remote home directory and install it as the
    user's table.  Once the staged copy has been opened for writing it is
    removed afterwards whatever happened; a failure while removing it is
    logged and never replaces the real error.  If the upload fails before
    that, a remote file of the same name is left alone.
    """
    local_path = os.fspath(local_path)
    if not os.path.isfile(local_path):
        raise LocalNotFoundError(f"local file does not exist: {local_path}", path=local_path)
    home = session.home_directory()
    staged = posixpath.join(home, os.path.basename(local_path))
    written = []
    try:
        upload_file(session, local_path, home, on_remote_open=written.append)
        session.execute(_cfg.CRONTAB_INSTALL.format(path=shlex.quote(staged))).check()
        log(f"[CRON] installed {local_path} for {session.user}@{session.host}")
    finally:
        if written and session.remove_quietly(staged):
            vlog(f"[CRON] removed staged file {staged}")


def list_periodic_tasks(session: RemoteSession, empty: Optional[EmptyTablePredicate] = None) -> str:
    """Return the current table, or "" when the user has none."""
    empty = empty or EmptyTablePredicate()
    result = session.execute(_cfg.CRONTAB_LIST)
    if empty(result, session.user):
        vlog(f"[CRON] no table for {session.user}")
        return ""
    return result.check().text


def clear_periodic_tasks(session: RemoteSession, empty: Optional[EmptyTablePredicate] = None) -> None:
    """Remove the user's whole table; an already-empty table is not an error."""
    empty = empty or EmptyTablePredicate()
    result = session.execute(_cfg.CRONTAB_CLEAR)
    if empty(result, session.user):
        vlog(f"[CRON] no table for {session.user}; nothing to clear")
        return
    result.check()
    log(f"[CRON] cleared table for {session.user}@{session.host}")
