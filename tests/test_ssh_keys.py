"""
Unit tests for SSH key helpers. ssh-keygen itself is never run.
"""

import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from errors import KeyGenerationError
from ssh_keys import generate_key_pair, looks_like_public_key, read_public_key

PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIGq1 alice@example.com"


class TestPublicKeyInput(unittest.TestCase):

    def test_literal_key_is_stripped(self):
        self.assertEqual(read_public_key(f"  {PUBLIC_KEY}\n"), PUBLIC_KEY)

    def test_key_file_is_read(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "id_ed25519.pub"
            path.write_text(PUBLIC_KEY + "\n")
            self.assertEqual(read_public_key(str(path)), PUBLIC_KEY)

    def test_looks_like_public_key(self):
        self.assertTrue(looks_like_public_key(PUBLIC_KEY))
        self.assertTrue(looks_like_public_key("ssh-rsa AAAAB3NzaC1yc2E"))
        self.assertFalse(looks_like_public_key("not-a-key"))
        self.assertFalse(looks_like_public_key("ssh-ed25519"))


class TestGenerateKeyPair(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)

    def fake_keygen(self, returncode=0, write_pub=True):
        def run(cmd, **kwargs):
            key_path = cmd[cmd.index("-f") + 1]
            if write_pub:
                Path(key_path + ".pub").write_text(PUBLIC_KEY + "\n")
            return subprocess.CompletedProcess(cmd, returncode, stdout="", stderr="boom")
        return run

    def test_generates_named_ed25519_key(self):
        with mock.patch("ssh_keys.subprocess.run", side_effect=self.fake_keygen()) as run:
            key_path, public_key = generate_key_pair("alice", "a@x.com", ssh_dir=self._tmp.name)

        self.assertEqual(public_key, PUBLIC_KEY)
        self.assertTrue(key_path.name.startswith("id_ed25519_gitea_alice_"))
        cmd = run.call_args[0][0]
        self.assertEqual(cmd[:3], ["ssh-keygen", "-t", "ed25519"])
        self.assertIn("a@x.com", cmd)

    def test_keygen_failure_raises(self):
        with mock.patch("ssh_keys.subprocess.run", side_effect=self.fake_keygen(returncode=1)):
            with self.assertRaises(KeyGenerationError) as ctx:
                generate_key_pair("alice", "a@x.com", ssh_dir=self._tmp.name)
        self.assertIn("boom", ctx.exception.message)

    def test_missing_keygen_raises(self):
        with mock.patch("ssh_keys.subprocess.run", side_effect=FileNotFoundError("ssh-keygen")):
            with self.assertRaises(KeyGenerationError):
                generate_key_pair("alice", "a@x.com", ssh_dir=self._tmp.name)

    def test_missing_public_key_file_raises(self):
        with mock.patch("ssh_keys.subprocess.run", side_effect=self.fake_keygen(write_pub=False)):
            with self.assertRaises(KeyGenerationError):
                generate_key_pair("alice", "a@x.com", ssh_dir=self._tmp.name)


if __name__ == '__main__':
    unittest.main()
