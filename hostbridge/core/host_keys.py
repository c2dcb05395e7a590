"""
Host identity verification policies.

Every session is opened with exactly one of these.  The default,
KnownHostsPolicy, only trusts servers already present in known_hosts.
InsecureAcceptAnyPolicy trusts everything and has to be asked for by name.
"""
import base64
import hashlib
from typing import Iterable, Optional

import paramiko

from .. import config as _cfg
from ..errors import HostKeyError
from ..utils.logging import warn


def fingerprint(key: paramiko.PKey) -> str:
    """OpenSSH-style SHA256 fingerprint, e.g. 'SHA256:nThbg6kXUpJWGl7E1IGOCspRomTxdCARLviKw6E5SY8'."""
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


class HostKeyPolicy(paramiko.MissingHostKeyPolicy):
    """Base policy: loads any key sources it needs, then registers itself on the client."""

    name = "base"

    def install(self, client: paramiko.SSHClient):
        client.set_missing_host_key_policy(self)

    def missing_host_key(self, client, hostname, key):
        raise HostKeyError(
            f"host key for {hostname} is not trusted ({key.get_name()} {fingerprint(key)})",
            hostname=hostname, fingerprint=fingerprint(key),
        )


class KnownHostsPolicy(HostKeyPolicy):
    """Trust only keys listed in the system known_hosts (plus an optional extra file)."""

    name = "known_hosts"

    def __init__(self, filename: Optional[str] = None):
        self.filename = filename

    def install(self, client: paramiko.SSHClient):
        client.load_system_host_keys()
        if self.filename:
            try:
                client.load_host_keys(self.filename)
            except OSError as exc:
                raise HostKeyError(f"cannot read known_hosts file {self.filename}: {exc}") from exc
        super().install(client)


class FingerprintPolicy(HostKeyPolicy):
    """Trust a server only if its key fingerprint is one of the pinned values."""

    name = "fingerprint"

    def __init__(self, fingerprints: Iterable[str]):
        self.fingerprints = {f.strip() for f in fingerprints if f and f.strip()}

    def missing_host_key(self, client, hostname, key):
        fp = fingerprint(key)
        if fp in self.fingerprints:
            return
        raise HostKeyError(
            f"host key for {hostname} does not match any pinned fingerprint (got {fp})",
            hostname=hostname, fingerprint=fp,
        )


class InsecureAcceptAnyPolicy(HostKeyPolicy):
    """
    Accept every server key without verification.

    Vulnerable to man-in-the-middle attacks; only for throwaway hosts and tests.
    """

    name = "accept-any"

    def missing_host_key(self, client, hostname, key):
        warn(f"[SSH] accepting unverified host key for {hostname} "
             f"({key.get_name()} {fingerprint(key)}); insecure policy in use")


def resolve_host_key_policy(name: Optional[str] = None, known_hosts: Optional[str] = None,
                            fingerprints: Optional[Iterable[str]] = None) -> HostKeyPolicy:
    """Build the policy named in config (or by the caller)."""
    name = (name or _cfg.HOST_KEY_POLICY).strip().lower()
    if name in ("known_hosts", "known-hosts", "strict"):
        return KnownHostsPolicy(known_hosts if known_hosts is not None else _cfg.KNOWN_HOSTS_FILE)
    if name == "fingerprint":
        pins = list(fingerprints if fingerprints is not None else _cfg.HOST_FINGERPRINTS)
        if not pins:
            raise HostKeyError("fingerprint policy selected but no fingerprints configured")
        return FingerprintPolicy(pins)
    if name in ("accept-any", "insecure"):
        return InsecureAcceptAnyPolicy()
    raise HostKeyError(f"unknown host key policy: {name!r}")
