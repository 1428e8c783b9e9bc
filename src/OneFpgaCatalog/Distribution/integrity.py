# === NAVMAP v1 ===
# {
#   "module": "OneFpgaCatalog.Distribution.integrity",
#   "purpose": "Content hashing and detached Ed25519 signature verification for distributable artifacts",
#   "sections": [
#     {"id": "keys", "name": "Public Key Handling", "anchor": "KEY", "kind": "helpers"},
#     {"id": "hashing", "name": "Hashing Utilities", "anchor": "HAS", "kind": "api"},
#     {"id": "signatures", "name": "Signature Verification", "anchor": "SIG", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Integrity helpers for catalog artifacts.

Every file referenced by a manifest gets its ``size`` and digest recomputed from
the bytes on disk at build time; values found in the source tree are never
trusted.  Release files may additionally ship a detached ``<file>.sig``
signature produced with the official 1FPGA Ed25519 key.  A missing signature is
normal, but a signature that exists and does not verify aborts the build.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from pathlib import Path
from typing import Optional, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import load_pem_public_key

from .errors import ConfigError, SignatureError

__all__ = [
    "OFFICIAL_PUBLIC_KEY",
    "SIGNATURE_SUFFIX",
    "hash_and_size",
    "load_public_key",
    "md5_and_size",
    "signature_path",
    "verify_signature",
]

logger = logging.getLogger(__name__)

# The official 1FPGA public key. Updating this is risky.
OFFICIAL_PUBLIC_KEY = """
-----BEGIN PUBLIC KEY-----
MCowBQYDK2VwAyEA04SX9mHaW2D09TF5G7hOQrGgqf6uTUcRv4KOXhL4kCs=
-----END PUBLIC KEY-----
""".strip()

SIGNATURE_SUFFIX = ".sig"

_HASH_CHUNK_SIZE = 1 << 20

PublicKeyInput = Union[str, bytes, Ed25519PublicKey]


def load_public_key(key: PublicKeyInput = OFFICIAL_PUBLIC_KEY) -> Ed25519PublicKey:
    """Return an Ed25519 public key from PEM text or an already-loaded key."""

    if isinstance(key, Ed25519PublicKey):
        return key
    pem = key.encode("ascii") if isinstance(key, str) else key
    try:
        loaded = load_pem_public_key(pem)
    except ValueError as exc:
        raise ConfigError(f"Invalid PEM public key: {exc}") from exc
    if not isinstance(loaded, Ed25519PublicKey):
        raise ConfigError("Signature public key must be an Ed25519 key")
    return loaded


def hash_and_size(path: Union[str, Path], algorithm: str = "sha256") -> Tuple[int, str]:
    """Return ``(size, hexdigest)`` for the file at ``path``.

    Args:
        path: File to hash; symlinks are followed.
        algorithm: Any algorithm name accepted by :func:`hashlib.new`.

    Returns:
        Byte size and lowercase hexadecimal digest of the file content.
    """

    file_path = Path(path)
    try:
        hasher = hashlib.new(algorithm)
    except ValueError as exc:
        raise ConfigError(f"Unsupported hash algorithm {algorithm!r}") from exc
    size = 0
    with file_path.open("rb") as stream:
        for chunk in iter(lambda: stream.read(_HASH_CHUNK_SIZE), b""):
            size += len(chunk)
            hasher.update(chunk)
    return size, hasher.hexdigest()


def md5_and_size(path: Union[str, Path]) -> Tuple[int, str]:
    """Return ``(size, md5)``; the MiSTer downloader database records MD5 sums."""

    return hash_and_size(path, "md5")


def signature_path(path: Union[str, Path]) -> Path:
    """Return the detached signature location for ``path``."""

    file_path = Path(path)
    return file_path.with_name(file_path.name + SIGNATURE_SUFFIX)


def verify_signature(
    path: Union[str, Path],
    public_key: PublicKeyInput = OFFICIAL_PUBLIC_KEY,
) -> Optional[str]:
    """Verify the detached signature of ``path`` if one exists.

    Args:
        path: Artifact whose ``<path>.sig`` companion should be checked.
        public_key: PEM text or loaded key; defaults to the official key.

    Returns:
        The signature re-encoded as base64, or ``None`` when no ``.sig`` file
        exists next to the artifact.

    Raises:
        SignatureError: If the ``.sig`` file exists but does not verify.
    """

    sig_path = signature_path(path)
    if not sig_path.is_file():
        return None

    key = load_public_key(public_key)
    data = Path(path).read_bytes()
    signature = sig_path.read_bytes()
    try:
        key.verify(signature, data)
    except InvalidSignature as exc:
        logger.error(
            "signature verification failed",
            extra={"stage": "integrity", "extra_fields": {"artifact": str(path)}},
        )
        raise SignatureError(path) from exc

    return base64.b64encode(signature).decode("ascii")
