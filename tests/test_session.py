"""
Tests for RemoteSession: connect, command execution, fail-fast sequences,
remote filesystem primitives and the close lifecycle.

Tests:
  - connect: credential parsing, timeouts, auth/transport/sftp failures
  - execute: one channel per call, combined output kept on non-zero exit
  - execute_sequence: empty input, stop at first failure
  - close: dual release, idempotent second close
  - host-key policies
"""
import base64
import hashlib
import io
import socket
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import paramiko

from hostbridge.core.host_keys import (
    FingerprintPolicy, InsecureAcceptAnyPolicy, KnownHostsPolicy, fingerprint,
    resolve_host_key_policy,
)
from hostbridge.core.session import (
    Password, PrivateKey, RemoteCommandResult, RemoteSession, parse_private_key,
)
from hostbridge.errors import (
    AuthError, CloseError, CommandError, ConnectError, CredentialError, HostKeyError,
    InvalidArgument, RemoteIOError, RemoteNotFoundError, SessionClosedError, StepError,
)
from tests.fakes import make_session


class FakeKey:
    def __init__(self, blob=b"server-key-blob", name="ssh-ed25519"):
        self.blob = blob
        self.name = name

    def asbytes(self):
        return self.blob

    def get_name(self):
        return self.name


# ── Tests: connect ────────────────────────────────────────────────────────────

class TestConnect(unittest.TestCase):

    def test_password_connect_uses_fixed_timeout(self):
        """connect passes the 5 s timeout to connect, banner and auth phases."""
        with mock.patch("paramiko.SSHClient") as client_cls:
            client = client_cls.return_value
            session = RemoteSession.connect("h.example", 2222, "bob", Password("pw"),
                                            host_key_policy=InsecureAcceptAnyPolicy())
        kw = client.connect.call_args.kwargs
        self.assertEqual(kw["hostname"], "h.example")
        self.assertEqual(kw["port"], 2222)
        self.assertEqual(kw["username"], "bob")
        self.assertEqual(kw["password"], "pw")
        self.assertEqual(kw["timeout"], 5)
        self.assertEqual(kw["banner_timeout"], 5)
        self.assertEqual(kw["auth_timeout"], 5)
        self.assertFalse(kw["allow_agent"])
        self.assertFalse(kw["look_for_keys"])
        client.open_sftp.assert_called_once()
        self.assertFalse(session.closed)

    def test_explicit_policy_is_installed(self):
        """The caller-supplied host key policy is registered on the client."""
        policy = InsecureAcceptAnyPolicy()
        with mock.patch("paramiko.SSHClient") as client_cls:
            RemoteSession.connect("h", 22, "u", Password("pw"), host_key_policy=policy)
        client_cls.return_value.set_missing_host_key_policy.assert_called_once_with(policy)

    def test_default_policy_loads_known_hosts(self):
        """Without a policy argument, system known_hosts are loaded (no silent accept-any)."""
        with mock.patch("paramiko.SSHClient") as client_cls:
            RemoteSession.connect("h", 22, "u", Password("pw"))
        client = client_cls.return_value
        client.load_system_host_keys.assert_called_once()
        policy = client.set_missing_host_key_policy.call_args.args[0]
        self.assertIsInstance(policy, KnownHostsPolicy)

    def test_auth_failure_raises_auth_error(self):
        with mock.patch("paramiko.SSHClient") as client_cls:
            client = client_cls.return_value
            client.connect.side_effect = paramiko.AuthenticationException("denied")
            with self.assertRaises(AuthError):
                RemoteSession.connect("h", 22, "u", Password("bad"),
                                      host_key_policy=InsecureAcceptAnyPolicy())
        client.close.assert_called_once()

    def test_timeout_raises_connect_error(self):
        with mock.patch("paramiko.SSHClient") as client_cls:
            client_cls.return_value.connect.side_effect = socket.timeout("timed out")
            with self.assertRaises(ConnectError) as ctx:
                RemoteSession.connect("h", 22, "u", Password("pw"),
                                      host_key_policy=InsecureAcceptAnyPolicy())
        self.assertNotIsInstance(ctx.exception, AuthError)

    def test_refused_raises_connect_error(self):
        with mock.patch("paramiko.SSHClient") as client_cls:
            client_cls.return_value.connect.side_effect = ConnectionRefusedError("refused")
            with self.assertRaises(ConnectError):
                RemoteSession.connect("h", 22, "u", Password("pw"),
                                      host_key_policy=InsecureAcceptAnyPolicy())

    def test_sftp_failure_closes_client(self):
        """If the file-transfer channel cannot be opened, nothing stays half-open."""
        with mock.patch("paramiko.SSHClient") as client_cls:
            client = client_cls.return_value
            client.open_sftp.side_effect = paramiko.SSHException("subsystem request failed")
            with self.assertRaises(ConnectError):
                RemoteSession.connect("h", 22, "u", Password("pw"),
                                      host_key_policy=InsecureAcceptAnyPolicy())
        client.close.assert_called_once()

    def test_host_key_rejection_propagates(self):
        with mock.patch("paramiko.SSHClient") as client_cls:
            client_cls.return_value.connect.side_effect = HostKeyError("untrusted", hostname="h")
            with self.assertRaises(HostKeyError):
                RemoteSession.connect("h", 22, "u", Password("pw"),
                                      host_key_policy=InsecureAcceptAnyPolicy())

    def test_bad_key_material_fails_before_network(self):
        """Unparsable key material raises CredentialError without creating a client."""
        with mock.patch("paramiko.SSHClient") as client_cls:
            with self.assertRaises(CredentialError):
                RemoteSession.connect("h", 22, "u", PrivateKey("not a key"),
                                      host_key_policy=InsecureAcceptAnyPolicy())
        client_cls.assert_not_called()

    def test_empty_key_material(self):
        with self.assertRaises(CredentialError):
            parse_private_key(PrivateKey(""))

    def test_parse_rsa_key(self):
        """PEM RSA material parses into a paramiko key."""
        key = paramiko.RSAKey.generate(2048)
        buf = io.StringIO()
        key.write_private_key(buf)
        parsed = parse_private_key(PrivateKey(buf.getvalue()))
        self.assertEqual(parsed.asbytes(), key.asbytes())

    def test_credential_repr_hides_secret(self):
        self.assertNotIn("hunter2", repr(Password("hunter2")))
        self.assertNotIn("BEGIN", repr(PrivateKey("-----BEGIN KEY-----")))


# ── Tests: command execution ──────────────────────────────────────────────────

class SessionTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)
        self.session, self.host, self.ssh, self.sftp = make_session(self.root)

    def tearDown(self):
        self.tmpdir.cleanup()


class TestExecute(SessionTestCase):

    def test_execute_returns_output_and_status(self):
        result = self.session.execute("echo hello")
        self.assertIsInstance(result, RemoteCommandResult)
        self.assertEqual(result.output, b"hello\n")
        self.assertEqual(result.exit_status, 0)
        self.assertTrue(result.ok)

    def test_each_execute_uses_its_own_channel(self):
        """Channels are never reused and are always closed after the result is read."""
        self.session.execute("echo a")
        self.session.execute("echo b")
        self.assertEqual(len(self.host.channels), 2)
        self.assertIsNot(self.host.channels[0], self.host.channels[1])
        self.assertTrue(all(c.closed for c in self.host.channels))
        self.assertTrue(all(c.combined for c in self.host.channels))

    def test_nonzero_exit_keeps_full_output(self):
        """A failing command is returned, not raised, so its output can be inspected."""
        result = self.session.execute("crontab -l")
        self.assertFalse(result.ok)
        self.assertEqual(result.exit_status, 1)
        self.assertEqual(result.text.strip(), "no crontab for alice")
        with self.assertRaises(CommandError) as ctx:
            result.check()
        self.assertEqual(ctx.exception.output, b"no crontab for alice\n")
        self.assertEqual(ctx.exception.exit_status, 1)

    def test_empty_command_rejected(self):
        with self.assertRaises(InvalidArgument):
            self.session.execute("")
        with self.assertRaises(InvalidArgument):
            self.session.execute("   ")
        self.assertEqual(self.host.commands, [])

    def test_timeout_is_applied_to_channel(self):
        self.session.execute("echo x", timeout=3)
        self.assertEqual(self.host.channels[0].timeout, 3)

    def test_closed_session_rejects_operations(self):
        self.session.close()
        with self.assertRaises(SessionClosedError):
            self.session.execute("echo x")
        with self.assertRaises(SessionClosedError):
            self.session.stat("/home/alice")

    def test_home_directory(self):
        self.assertEqual(self.session.home_directory(), "/home/alice")

    def test_home_directory_ignores_trailing_noise(self):
        """stderr from shell profiles shares the output with pwd."""
        self.host.override(r"cd;pwd", b"/home/alice\nstty: 'standard input': Inappropriate ioctl\n", 0)
        self.assertEqual(self.session.home_directory(), "/home/alice")

    def test_home_directory_rejects_relative_or_empty(self):
        self.host.override(r"cd;pwd", b"\n", 0)
        with self.assertRaises(CommandError):
            self.session.home_directory()
        self.host.overrides.clear()
        self.host.override(r"cd;pwd", b"home/alice\n", 0)
        with self.assertRaises(CommandError):
            self.session.home_directory()


class TestExecuteSequence(SessionTestCase):

    def test_empty_sequence_rejected(self):
        with self.assertRaises(InvalidArgument):
            self.session.execute_sequence([])

    def test_stops_at_first_failure(self):
        """c1 fails, so c2 must never run and the error must name c1."""
        with self.assertRaises(StepError) as ctx:
            self.session.execute_sequence(["false", "echo never"])
        self.assertEqual(self.host.commands, ["false"])
        self.assertEqual(ctx.exception.index, 0)
        self.assertEqual(ctx.exception.step, "false")
        self.assertIsInstance(ctx.exception.cause, CommandError)
        self.assertIn("false", str(ctx.exception))

    def test_failure_in_middle(self):
        with self.assertRaises(StepError) as ctx:
            self.session.execute_sequence(["echo one", "nosuchcmd", "echo three"])
        self.assertEqual(ctx.exception.index, 1)
        self.assertEqual(self.host.commands, ["echo one", "nosuchcmd"])
        self.assertEqual(ctx.exception.cause.exit_status, 127)

    def test_all_succeed(self):
        results = self.session.execute_sequence(["echo one", "echo two"])
        self.assertEqual([r.text for r in results], ["one\n", "two\n"])


# ── Tests: remote filesystem primitives ───────────────────────────────────────

class TestRemoteFilesystem(SessionTestCase):

    def test_stat_missing_is_not_found(self):
        with self.assertRaises(RemoteNotFoundError):
            self.session.stat("/nope")
        self.assertFalse(self.session.exists("/nope"))
        self.assertTrue(self.session.exists("/home/alice"))

    def test_is_dir(self):
        self.host.local("/home/alice/plain").write_text("x")
        self.assertTrue(self.session.is_dir("/home/alice"))
        self.assertFalse(self.session.is_dir("/home/alice/plain"))
        with self.assertRaises(RemoteNotFoundError):
            self.session.is_dir("/home/alice/missing")

    def test_stat_other_failure_is_remote_io(self):
        with mock.patch.object(self.sftp, "stat", side_effect=PermissionError(13, "denied")):
            with self.assertRaises(RemoteIOError) as ctx:
                self.session.stat("/root")
        self.assertNotIsInstance(ctx.exception, RemoteNotFoundError)

    def test_mkdir_all_creates_parents(self):
        self.session.mkdir_all("/home/alice/a/b/c")
        self.assertTrue(self.host.local("/home/alice/a/b/c").is_dir())
        # idempotent
        self.session.mkdir_all("/home/alice/a/b/c")

    def test_mkdir_all_refuses_file_in_path(self):
        self.host.local("/home/alice/file").write_text("x")
        with self.assertRaises(RemoteIOError):
            self.session.mkdir_all("/home/alice/file/sub")

    def test_remove_quietly_never_raises(self):
        self.assertFalse(self.session.remove_quietly("/home/alice/missing"))
        with mock.patch.object(self.sftp, "remove", side_effect=PermissionError(13, "denied")):
            self.assertFalse(self.session.remove_quietly("/home/alice/x"))


# ── Tests: close lifecycle ────────────────────────────────────────────────────

class TestClose(SessionTestCase):

    def test_close_twice_is_noop(self):
        self.session.close()
        self.session.close()
        self.assertTrue(self.session.closed)
        self.assertEqual(self.sftp.close_calls, 1)
        self.assertEqual(self.ssh.close_calls, 1)

    def test_close_attempts_both_releases(self):
        """An sftp close failure is reported, but the ssh connection is still closed."""
        self.sftp.close_error = OSError("sftp gone")
        with self.assertRaises(CloseError) as ctx:
            self.session.close()
        self.assertEqual(ctx.exception.channel, "sftp")
        self.assertEqual(self.ssh.close_calls, 1)
        self.assertTrue(self.session.closed)

    def test_first_error_wins(self):
        self.sftp.close_error = OSError("sftp gone")
        self.ssh.close_error = OSError("ssh gone")
        with self.assertRaises(CloseError) as ctx:
            self.session.close()
        self.assertEqual(ctx.exception.channel, "sftp")

    def test_context_manager_closes(self):
        with self.session as s:
            s.execute("echo x")
        self.assertTrue(self.session.closed)

    def test_close_error_does_not_mask_primary(self):
        self.sftp.close_error = OSError("sftp gone")
        with self.assertRaises(ValueError):
            with self.session:
                raise ValueError("primary")
        self.assertTrue(self.session.closed)


# ── Tests: host-key policies ──────────────────────────────────────────────────

class TestHostKeyPolicies(unittest.TestCase):

    def test_fingerprint_format(self):
        key = FakeKey(b"abc")
        expected = "SHA256:" + base64.b64encode(hashlib.sha256(b"abc").digest()).decode().rstrip("=")
        self.assertEqual(fingerprint(key), expected)

    def test_fingerprint_policy_accepts_pinned(self):
        key = FakeKey()
        policy = FingerprintPolicy([fingerprint(key)])
        self.assertIsNone(policy.missing_host_key(None, "h", key))

    def test_fingerprint_policy_rejects_other(self):
        policy = FingerprintPolicy(["SHA256:somethingelse"])
        with self.assertRaises(HostKeyError) as ctx:
            policy.missing_host_key(None, "h", FakeKey())
        self.assertEqual(ctx.exception.hostname, "h")

    def test_known_hosts_rejects_unknown(self):
        with self.assertRaises(HostKeyError):
            KnownHostsPolicy().missing_host_key(None, "h", FakeKey())

    def test_accept_any_accepts(self):
        self.assertIsNone(InsecureAcceptAnyPolicy().missing_host_key(None, "h", FakeKey()))

    def test_resolve_by_name(self):
        self.assertIsInstance(resolve_host_key_policy("known_hosts"), KnownHostsPolicy)
        self.assertIsInstance(resolve_host_key_policy("accept-any"), InsecureAcceptAnyPolicy)
        self.assertIsInstance(resolve_host_key_policy("fingerprint", fingerprints=["SHA256:x"]),
                              FingerprintPolicy)

    def test_resolve_rejects_bad_config(self):
        with self.assertRaises(HostKeyError):
            resolve_host_key_policy("fingerprint", fingerprints=[])
        with self.assertRaises(HostKeyError):
            resolve_host_key_policy("trust-me")


if __name__ == "__main__":
    unittest.main()
