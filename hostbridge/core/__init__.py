"""Core functionality (session, host-key trust)"""
from .session import (
    RemoteSession, RemoteCommandResult, Password, PrivateKey, parse_private_key, open_session,
)
from .host_keys import (
    HostKeyPolicy, KnownHostsPolicy, FingerprintPolicy, InsecureAcceptAnyPolicy,
    resolve_host_key_policy, fingerprint,
)

__all__ = [
    "RemoteSession", "RemoteCommandResult", "Password", "PrivateKey", "parse_private_key",
    "open_session",
    "HostKeyPolicy", "KnownHostsPolicy", "FingerprintPolicy", "InsecureAcceptAnyPolicy",
    "resolve_host_key_policy", "fingerprint",
]
