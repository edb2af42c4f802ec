"""
SSH public key helpers: read a key given on the command line, or
generate a fresh ed25519 pair with ssh-keygen.
"""

from __future__ import annotations

import logging
import os
import secrets
import subprocess
import time
from pathlib import Path
from typing import Optional

from errors import KeyGenerationError

logger = logging.getLogger(__name__)

KEY_PREFIXES = ("ssh-ed25519", "ssh-rsa", "ecdsa-sha2-", "sk-ssh-ed25519", "sk-ecdsa-sha2-", "ssh-dss")


def unique_id() -> str:
    """Timestamp plus 4 random bytes, hex encoded."""
    return str(int(time.time())).encode().hex() + secrets.token_hex(4)


def read_public_key(value: str) -> str:
    """
    Resolve the ssh_key argument: a path to a .pub file or the key itself.

    The key text is returned stripped; it is not validated here, Gitea is
    the judge of what it accepts.
    """
    candidate = Path(os.path.expanduser(value))
    if len(value) < 1024 and candidate.is_file():
        logger.info(f"Reading public key from {candidate}")
        return candidate.read_text(encoding="utf-8").strip()
    return value.strip()


def looks_like_public_key(key: str) -> bool:
    return key.startswith(KEY_PREFIXES) and len(key.split()) >= 2


def generate_key_pair(username: str, email: str, ssh_dir: Optional[str] = None) -> tuple[Path, str]:
    """
    Generate a passphrase-less ed25519 key pair.

    Args:
        username: Used in the file name
        email: Key comment
        ssh_dir: Target directory (default ~/.ssh)

    Returns:
        (private key path, public key text)

    Raises:
        KeyGenerationError: If ssh-keygen is missing or fails
    """
    directory = Path(ssh_dir) if ssh_dir else Path.home() / ".ssh"
    directory.mkdir(mode=0o700, parents=True, exist_ok=True)

    key_path = directory / f"id_ed25519_gitea_{username}_{unique_id()}"
    cmd = ["ssh-keygen", "-t", "ed25519", "-C", email, "-f", str(key_path), "-N", ""]
    logger.info(f"Generating SSH key {key_path}")

    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except FileNotFoundError as e:
        raise KeyGenerationError("ssh-keygen not found on PATH") from e

    if proc.returncode != 0:
        raise KeyGenerationError(f"ssh-keygen failed: {proc.stderr.strip() or proc.stdout.strip()}")

    pub_path = key_path.with_name(key_path.name + ".pub")
    try:
        public_key = pub_path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise KeyGenerationError(f"Could not read public key {pub_path}: {e}") from e

    return key_path, public_key
