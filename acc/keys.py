"""
acc Signing Keys

Ed25519 key resolution, generation and signature verification.

Key material is the 64-byte Ed25519 private key (32-byte seed followed by
the 32-byte public key). It is resolved in this order:

1. ACC_SIGNING_KEY      - base64 of the 64-byte private key
2. ACC_SIGNING_KEY_FILE - path to a file holding it (raw or base64)
3. <project>/.acc/keys/ed25519.key

Keys are resolved per signing operation and never cached.
"""

import base64
import hashlib
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey

from .errors import KeyResolutionError
from .util import b64d, b64e

logger = logging.getLogger(__name__)

ENV_SIGNING_KEY = "ACC_SIGNING_KEY"
ENV_SIGNING_KEY_FILE = "ACC_SIGNING_KEY_FILE"
KEY_FILE_RELPATH = os.path.join(".acc", "keys", "ed25519.key")

PRIVATE_KEY_SIZE = 64
SEED_SIZE = 32
KEY_ID_PREFIX = "ed25519:"
KEY_ID_HASH_CHARS = 26


def key_id(public_key: bytes) -> str:
    """
    Derive the stable key identifier for a public key.

    "ed25519:" + lowercase unpadded base32 of SHA-256(public key),
    truncated to 26 characters (34 characters total).
    """
    digest = hashlib.sha256(public_key).digest()
    encoded = base64.b32encode(digest).decode('ascii').rstrip('=').lower()
    return KEY_ID_PREFIX + encoded[:KEY_ID_HASH_CHARS]


@dataclass
class KeyInfo:
    """A resolved Ed25519 signing key."""
    signing_key: SigningKey
    verify_key: VerifyKey
    key_id: str
    source: str

    @property
    def public_key(self) -> bytes:
        return bytes(self.verify_key)

    @property
    def public_key_b64(self) -> str:
        return b64e(self.public_key)

    def private_key_bytes(self) -> bytes:
        """64-byte private key (seed || public key)."""
        return bytes(self.signing_key) + self.public_key

    def sign(self, payload: bytes) -> bytes:
        return self.signing_key.sign(payload).signature

    @classmethod
    def from_signing_key(cls, signing_key: SigningKey, source: str) -> 'KeyInfo':
        verify_key = signing_key.verify_key
        return cls(
            signing_key=signing_key,
            verify_key=verify_key,
            key_id=key_id(bytes(verify_key)),
            source=source,
        )


def parse_private_key(raw: bytes, source: str) -> KeyInfo:
    """
    Build a KeyInfo from 64 bytes of private key material.

    Raises:
        KeyResolutionError: wrong length or mismatched public half
    """
    if len(raw) != PRIVATE_KEY_SIZE:
        raise KeyResolutionError(
            f"{source}: invalid key size {len(raw)}, expected {PRIVATE_KEY_SIZE}"
        )
    try:
        signing_key = SigningKey(raw[:SEED_SIZE])
    except (CryptoError, ValueError, TypeError) as e:
        raise KeyResolutionError(f"{source}: invalid ed25519 seed: {e}") from e

    info = KeyInfo.from_signing_key(signing_key, source)
    if info.public_key != raw[SEED_SIZE:]:
        raise KeyResolutionError(f"{source}: public key does not match seed")
    return info


def _decode_key_material(data: bytes, source: str) -> bytes:
    """Raw 64-byte keys are used as-is, anything else must be base64."""
    if len(data) == PRIVATE_KEY_SIZE:
        return data
    try:
        return b64d(data.decode('ascii'))
    except (UnicodeDecodeError, ValueError) as e:
        raise KeyResolutionError(f"{source}: key is neither raw nor base64: {e}") from e


def load_key_file(path: str) -> KeyInfo:
    """Load a signing key from a file (raw 64 bytes or base64)."""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise KeyResolutionError(f"failed to read key file {path}: {e}") from e
    return parse_private_key(_decode_key_material(data, path), path)


def resolve_signing_key(
    project_root: str = ".",
    environ: Optional[Mapping[str, str]] = None
) -> KeyInfo:
    """
    Resolve the signing key from env var, env-named file, or project file.

    Args:
        project_root: Project directory containing .acc/
        environ: Environment mapping (defaults to os.environ)

    Raises:
        KeyResolutionError: if no channel yields a valid key
    """
    env = os.environ if environ is None else environ

    key_b64 = env.get(ENV_SIGNING_KEY, "")
    if key_b64:
        try:
            raw = b64d(key_b64)
        except ValueError as e:
            raise KeyResolutionError(f"{ENV_SIGNING_KEY}: {e}") from e
        return parse_private_key(raw, ENV_SIGNING_KEY)

    key_file = env.get(ENV_SIGNING_KEY_FILE, "")
    if key_file:
        return load_key_file(key_file)

    default_path = os.path.join(project_root, KEY_FILE_RELPATH)
    if os.path.exists(default_path):
        return load_key_file(default_path)

    raise KeyResolutionError(
        f"no signing key found (set {ENV_SIGNING_KEY}, {ENV_SIGNING_KEY_FILE}, "
        f"or create {default_path})"
    )


def write_key_file(path: str, info: KeyInfo) -> None:
    """
    Write a private key with 0600 permissions.

    Fails if the file already exists; existing keys are never replaced.
    """
    os.makedirs(os.path.dirname(path), mode=0o700, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(info.private_key_bytes())
    os.chmod(path, 0o600)


def ensure_signing_key(
    project_root: str = ".",
    environ: Optional[Mapping[str, str]] = None
) -> Tuple[KeyInfo, bool]:
    """
    Resolve the signing key, generating a project key if none exists.

    Returns:
        Tuple of (key, created) where created is True when a new key file
        was written
    """
    env = os.environ if environ is None else environ
    path = os.path.join(project_root, KEY_FILE_RELPATH)

    # A configured or existing key that fails to load is an error, not a
    # reason to generate a replacement.
    if env.get(ENV_SIGNING_KEY) or env.get(ENV_SIGNING_KEY_FILE) or os.path.exists(path):
        return resolve_signing_key(project_root, env), False

    info = KeyInfo.from_signing_key(SigningKey.generate(), path)
    try:
        write_key_file(path, info)
    except FileExistsError:
        return load_key_file(path), False
    except OSError as e:
        raise KeyResolutionError(f"failed to write key file {path}: {e}") from e

    logger.info("Generated signing key %s at %s", info.key_id, path)
    return info, True


def verify_ed25519(signature_b64: str, payload: bytes, public_key_b64: str) -> bool:
    """
    Verify an Ed25519 signature.

    Args:
        signature_b64: Base64-encoded signature
        payload: The signed data
        public_key_b64: Base64-encoded public key

    Returns:
        True if signature is valid, False otherwise
    """
    try:
        vk = VerifyKey(b64d(public_key_b64))
        vk.verify(payload, b64d(signature_b64))
        return True
    except (BadSignatureError, CryptoError, ValueError, TypeError):
        return False
