#!/usr/bin/env python3
"""
hostbridge: remote host management over one SSH session
=======================================================

Subcommands:
  init      Create a .hostbridge config file in the current directory.
  exec      Run one command remotely and print its combined output.
  run       Run several commands in order, stopping at the first failure.
  upload    Upload a file or directory tree (MD5-verified).
  download  Download a single file.
  digest    Print the MD5 of a local or remote file.
  cron      Install, list or clear the remote crontab.
  service   Install, start, stop or restart a systemd unit.

Run 'hostbridge <subcommand> --help' for more details.
"""
import sys
import argparse
import os
import shlex
from contextlib import contextmanager
from pathlib import Path


# ── init ─────────────────────────────────────────────────────────────────────

def cmd_init(args):
    """Create a .hostbridge profile file in the current directory."""
    from hostbridge import config as _cfg

    target = Path.cwd() / ".hostbridge"

    if target.exists() and not args.force:
        print(f"error: .hostbridge already exists in {Path.cwd()}", file=sys.stderr)
        print("Use --force to overwrite.", file=sys.stderr)
        sys.exit(1)

    global_cfg = _cfg.load_global_config()
    g_defaults = global_cfg.get("defaults", {})

    server = args.server or g_defaults.get("server", "example.com")
    if not args.server and sys.stdin.isatty():
        val = input(f"Server hostname [{server}]: ").strip()
        if val:
            server = val

    user = args.user or g_defaults.get("user", "root")
    if not args.user and sys.stdin.isatty():
        val = input(f"SSH user [{user}]: ").strip()
        if val:
            user = val

    port = args.port or int(g_defaults.get("port", 22))
    if not args.port and sys.stdin.isatty():
        val = input(f"SSH port [{port}]: ").strip()
        if val:
            try:
                port = int(val)
            except ValueError:
                print("error: port must be a number.", file=sys.stderr)
                sys.exit(1)

    ssh_key = args.ssh_key or g_defaults.get("ssh_key", "")
    policy = args.host_key_policy or g_defaults.get("host_key_policy", _cfg.HOST_KEY_POLICY)
    profile_name = args.profile or "default"

    def _yq(value: str) -> str:
        """Wrap a string in YAML single quotes, escaping embedded single quotes."""
        return "'" + value.replace("'", "''") + "'"

    lines = [
        "# .hostbridge: hostbridge project configuration",
        "#",
        "# profiles: list of remote hosts for this project.",
        "# Each profile has: name, server, port, user, ssh_key (or ssh_password).",
        "# host_key_policy: known_hosts (default), fingerprint, or accept-any (insecure).",
        "profiles:",
        f"  - name: {profile_name}",
        f"    server: {_yq(server)}",
        f"    port: {port}",
        f"    user: {_yq(user)}",
    ]
    if ssh_key:
        # Always use forward slashes to avoid YAML backslash escape issues
        ssh_key_yaml = str(ssh_key).replace("\\", "/")
        lines.append(f"    ssh_key: {_yq(ssh_key_yaml)}")
    lines += [
        f"    host_key_policy: {_yq(policy)}",
        f"    connect_timeout: {_cfg.CONNECT_TIMEOUT}",
    ]

    content = "\n".join(lines) + "\n"

    if args.dry_run:
        print(f"[dry-run] Would write {target}:")
        print(content)
        return

    target.write_text(content, encoding="utf-8")
    print(f"Created {target}")
    if args.verbose:
        print(content)


# ── shared plumbing ──────────────────────────────────────────────────────────

def _load_profile(args):
    """Apply the selected profile from the nearest .hostbridge (or the global config)."""
    import hostbridge.config as _cfg
    from hostbridge.utils.logging import set_verbose

    set_verbose(getattr(args, "verbose", False))

    path = _cfg.find_hostbridge()
    if path is not None:
        if args.verbose:
            print(f"[config] Using {path}", file=sys.stderr)
        data = _cfg.load_hostbridge_file(path)
    else:
        data = _cfg.load_global_config()
        if not data:
            print("error: no .hostbridge file found in this directory or any parent.", file=sys.stderr)
            print("Run 'hostbridge init' to create one.", file=sys.stderr)
            sys.exit(1)
        if args.verbose:
            print(f"[config] Using {_cfg.get_global_config_dir() / 'config.yaml'}", file=sys.stderr)
    _cfg.apply_profile(_cfg.get_profile(data, args.profile or "default"))


@contextmanager
def _session(args):
    from hostbridge.core import open_session, InsecureAcceptAnyPolicy

    _load_profile(args)
    policy = InsecureAcceptAnyPolicy() if args.insecure_accept_any_host_key else None
    with open_session(host_key_policy=policy) as session:
        yield session


# ── exec / run ───────────────────────────────────────────────────────────────

def cmd_exec(args):
    with _session(args) as session:
        result = session.execute(shlex.join(args.remote_command))
    sys.stdout.write(result.text)
    sys.stdout.flush()
    if not result.ok:
        sys.exit(result.exit_status if 0 < result.exit_status < 256 else 1)


def cmd_run(args):
    with _session(args) as session:
        results = session.execute_sequence(args.commands)
    for result in results:
        if args.verbose:
            print(f"$ {result.command}")
        sys.stdout.write(result.text)


# ── transfers ────────────────────────────────────────────────────────────────

def cmd_upload(args):
    from hostbridge.operations import upload_file, upload_directory

    verify = False if args.no_verify else None
    with _session(args) as session:
        if os.path.isdir(args.local):
            reports = upload_directory(session, args.local, args.remote_dir, verify=verify)
            print(f"{len(reports)} file(s) uploaded to {args.remote_dir}")
        else:
            report = upload_file(session, args.local, args.remote_dir, verify=verify)
            print(f"{report.remote_path} ({report.size} bytes, mode {oct(report.mode)})")


def cmd_download(args):
    from hostbridge.operations import download_file

    verify = True if args.verify else None
    with _session(args) as session:
        report = download_file(session, args.remote, args.local_dir, verify=verify)
    print(f"{report.local_path} ({report.size} bytes, {report.elapsed:.2f}s)")


def cmd_digest(args):
    from hostbridge.operations import local_digest, remote_digest

    if args.remote:
        with _session(args) as session:
            print(f"{remote_digest(session, args.path)}  {args.path}")
    else:
        print(f"{local_digest(args.path)}  {args.path}")


# ── cron ─────────────────────────────────────────────────────────────────────

def cmd_cron(args):
    from hostbridge.operations import (
        EmptyTablePredicate, install_periodic_task, list_periodic_tasks, clear_periodic_tasks,
    )

    sub = getattr(args, "cron_sub", None)
    if sub is None:
        print("error: a subcommand is required (install, list, clear).", file=sys.stderr)
        sys.exit(1)

    empty = EmptyTablePredicate(patterns=args.empty_pattern) if args.empty_pattern else None
    with _session(args) as session:
        if sub == "install":
            install_periodic_task(session, args.file)
        elif sub == "list":
            sys.stdout.write(list_periodic_tasks(session, empty))
        elif sub == "clear":
            clear_periodic_tasks(session, empty)


# ── service ──────────────────────────────────────────────────────────────────

def cmd_service(args):
    from hostbridge.operations import (
        SystemdSupervisor, install_service, start_service, stop_service, restart_service,
    )

    sub = getattr(args, "service_sub", None)
    if sub is None:
        print("error: a subcommand is required (install, start, stop, restart).", file=sys.stderr)
        sys.exit(1)

    with _session(args) as session:
        supervisor = SystemdSupervisor(unit_dir=args.unit_dir, sudo=False if args.no_sudo else None)
        if sub == "install":
            unit = install_service(session, args.file, supervisor)
            print(f"{unit} installed")
        elif sub == "start":
            start_service(session, args.name, supervisor)
        elif sub == "stop":
            stop_service(session, args.name, supervisor)
        elif sub == "restart":
            restart_service(session, args.name, supervisor)


# ── main ──────────────────────────────────────────────────────────────────────

def _remote_options(p):
    p.add_argument("--profile", metavar="NAME", default="default",
                   help="Profile to use (default: default)")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Show extra output")
    p.add_argument("--insecure-accept-any-host-key", action="store_true",
                   help="Trust any server host key (INSECURE; overrides host_key_policy)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hostbridge",
        description="Remote host management over one SSH session",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    # ── init ──────────────────────────────────────────────────────────────────
    init_p = subparsers.add_parser(
        "init",
        help="Create a .hostbridge config file in the current directory",
        description="Create a .hostbridge YAML config file for this project.",
    )
    init_p.add_argument("--server", metavar="HOST",
                        help="Remote server hostname or IP")
    init_p.add_argument("--user", metavar="NAME",
                        help="SSH username (default: root)")
    init_p.add_argument("--port", type=int, metavar="N",
                        help="SSH port (default: 22)")
    init_p.add_argument("--ssh-key", metavar="PATH",
                        help="Private key file")
    init_p.add_argument("--host-key-policy", choices=["known_hosts", "fingerprint", "accept-any"],
                        help="Host identity verification (default: known_hosts)")
    init_p.add_argument("--profile", metavar="NAME", default="default",
                        help="Profile name to create (default: default)")
    init_p.add_argument("--force", action="store_true",
                        help="Overwrite existing .hostbridge")
    init_p.add_argument("-n", "--dry-run", action="store_true",
                        help="Preview without writing files")
    init_p.add_argument("-v", "--verbose", action="store_true",
                        help="Show extra output")

    # ── exec / run ────────────────────────────────────────────────────────────
    exec_p = subparsers.add_parser("exec", help="Run one remote command")
    _remote_options(exec_p)
    exec_p.add_argument("remote_command", nargs=argparse.REMAINDER, metavar="CMD",
                        help="Command and arguments; each argument is shell-quoted as given")

    run_p = subparsers.add_parser("run", help="Run commands in order, stop at the first failure")
    _remote_options(run_p)
    run_p.add_argument("commands", nargs="+", metavar="CMD",
                       help="Each argument is one complete command line")

    # ── transfers ─────────────────────────────────────────────────────────────
    up_p = subparsers.add_parser("upload", help="Upload a file or directory tree")
    _remote_options(up_p)
    up_p.add_argument("local", metavar="LOCAL", help="Local file or directory")
    up_p.add_argument("remote_dir", metavar="REMOTE_DIR", help="Existing remote directory")
    up_p.add_argument("--no-verify", action="store_true",
                      help="Skip the MD5 comparison after each file")

    down_p = subparsers.add_parser("download", help="Download a single file")
    _remote_options(down_p)
    down_p.add_argument("remote", metavar="REMOTE_FILE", help="Remote file path")
    down_p.add_argument("local_dir", metavar="LOCAL_DIR", help="Local directory (created if missing)")
    down_p.add_argument("--verify", action="store_true",
                        help="Compare MD5 of the downloaded copy with the remote file")

    dig_p = subparsers.add_parser("digest", help="Print the MD5 of a file")
    _remote_options(dig_p)
    dig_p.add_argument("path", metavar="PATH")
    dig_p.add_argument("--remote", action="store_true", help="PATH is on the remote host")

    # ── cron ──────────────────────────────────────────────────────────────────
    cron_p = subparsers.add_parser("cron", help="Manage the remote crontab")
    _remote_options(cron_p)
    cron_p.add_argument("--empty-pattern", action="append", metavar="REGEX",
                        help="Output (regex, {user} allowed) meaning 'no crontab'; repeatable")
    cron_sub = cron_p.add_subparsers(dest="cron_sub", metavar="ACTION")
    cron_install = cron_sub.add_parser("install", help="Install FILE as the crontab")
    cron_install.add_argument("file", metavar="FILE")
    cron_sub.add_parser("list", help="Print the current crontab")
    cron_sub.add_parser("clear", help="Remove the whole crontab")

    # ── service ───────────────────────────────────────────────────────────────
    svc_p = subparsers.add_parser("service", help="Manage systemd units")
    _remote_options(svc_p)
    svc_p.add_argument("--unit-dir", metavar="PATH", default=None,
                       help="Unit directory (default: /usr/lib/systemd/system)")
    svc_p.add_argument("--no-sudo", action="store_true",
                       help="Do not prefix supervisor commands with sudo")
    svc_sub = svc_p.add_subparsers(dest="service_sub", metavar="ACTION")
    svc_install = svc_sub.add_parser("install", help="Upload, enable FILE (e.g. web.service)")
    svc_install.add_argument("file", metavar="FILE")
    for action in ("start", "stop", "restart"):
        a_p = svc_sub.add_parser(action, help=f"{action.capitalize()} a unit")
        a_p.add_argument("name", metavar="NAME")

    return parser


def main():
    """CLI entry point for hostbridge"""
    from hostbridge.errors import HostBridgeError

    parser = build_parser()
    args = parser.parse_args()

    handlers = {
        "init": cmd_init,
        "exec": cmd_exec,
        "run": cmd_run,
        "upload": cmd_upload,
        "download": cmd_download,
        "digest": cmd_digest,
        "cron": cmd_cron,
        "service": cmd_service,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)
    if args.command == "exec" and not args.remote_command:
        parser.error("exec requires a command")

    try:
        handler(args)
    except HostBridgeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
