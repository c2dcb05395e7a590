"""
Supervised service management (systemd by default)
"""
import os
import posixpath
import shlex
from typing import Optional

from .. import config as _cfg
from ..core.session import RemoteSession
from ..errors import InvalidArgument
from ..utils.logging import log
from .transfer import upload_file


class Supervisor:
    """Produces the remote command lines for one service manager."""

    name = "base"

    def install_commands(self, staged_path: str, unit: str) -> list[str]:
        raise NotImplementedError

    def start_command(self, unit: str) -> str:
        raise NotImplementedError

    def stop_command(self, unit: str) -> str:
        raise NotImplementedError

    def restart_command(self, unit: str) -> str:
        raise NotImplementedError


class SystemdSupervisor(Supervisor):
    name = "systemd"

    def __init__(self, unit_dir: Optional[str] = None, sudo: Optional[bool] = None):
        self.unit_dir = unit_dir or _cfg.SYSTEMD_UNIT_DIR
        self.sudo = _cfg.SYSTEMD_USE_SUDO if sudo is None else sudo

    def _cmd(self, *args: str) -> str:
        words = ["sudo"] if self.sudo else []
        words.extend(args)
        return " ".join(words)

    def install_commands(self, staged_path: str, unit: str) -> list[str]:
        return [
            self._cmd("mv", shlex.quote(staged_path), shlex.quote(self.unit_dir)),
            self._cmd("systemctl", "daemon-reload"),
            self._cmd("systemctl", "enable", shlex.quote(unit)),
        ]

    def start_command(self, unit: str) -> str:
        return self._cmd("systemctl", "start", shlex.quote(unit))

    def stop_command(self, unit: str) -> str:
        return self._cmd("systemctl", "stop", shlex.quote(unit))

    def restart_command(self, unit: str) -> str:
        return self._cmd("systemctl", "restart", shlex.quote(unit))


def service_name(local_path) -> str:
    """'/x/web.service' -> 'web'"""
    name = os.path.splitext(os.path.basename(os.fspath(local_path)))[0]
    if not name or name.startswith("."):
        raise InvalidArgument(f"cannot derive a service name from {local_path!r}")
    return name


def install_service(session: RemoteSession, local_path,
                    supervisor: Optional[Supervisor] = None) -> str:
    """
    Upload a unit file to the remote home directory, move it into the unit
    directory, reload the supervisor and enable the unit.  Stops at the first
    failing step.  Returns the unit name.
    """
    supervisor = supervisor or SystemdSupervisor()
    local_path = os.fspath(local_path)
    unit = service_name(local_path)
    home = session.home_directory()
    upload_file(session, local_path, home)
    staged = posixpath.join(home, os.path.basename(local_path))
    session.execute_sequence(supervisor.install_commands(staged, unit))
    log(f"[SERVICE] {unit} installed and enabled on {session.host}")
    return unit


def _control(session: RemoteSession, unit: str, build, action: str):
    if not unit or not unit.strip():
        raise InvalidArgument("no service name received")
    session.execute(build(unit)).check()
    log(f"[SERVICE] {unit} {action} on {session.host}")


def start_service(session: RemoteSession, unit: str, supervisor: Optional[Supervisor] = None):
    supervisor = supervisor or SystemdSupervisor()
    _control(session, unit, supervisor.start_command, "started")


def stop_service(session: RemoteSession, unit: str, supervisor: Optional[Supervisor] = None):
    supervisor = supervisor or SystemdSupervisor()
    _control(session, unit, supervisor.stop_command, "stopped")


def restart_service(session: RemoteSession, unit: str, supervisor: Optional[Supervisor] = None):
    supervisor = supervisor or SystemdSupervisor()
    _control(session, unit, supervisor.restart_command, "restarted")
