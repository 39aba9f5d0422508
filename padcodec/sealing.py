"""
Passphrase sealing of key material at rest.

A sealed key file holds a single token:

    PK1.<log2 n>.<salt>.<nonce>.<ciphertext>

(url-safe base64 without padding). The file key is derived with Scrypt and
expanded with HKDF-SHA256, the key material is encrypted with AES-256-GCM and
the key name is bound in as associated data, so a sealed file renamed to
another key name no longer opens.
"""

from __future__ import annotations

import base64
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import SealError

logger = logging.getLogger(__name__)

MAGIC = "PK1"
MAGIC_PREFIX = (MAGIC + ".").encode("ascii")

SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_MIN_LOG2_N = 14
SCRYPT_MAX_LOG2_N = 20

SCRYPT_PRESETS = {
    "low": 14,
    "medium": 16,
    "high": 18,
}
DEFAULT_STRENGTH = "medium"

SALT_LEN = 16
NONCE_LEN = 12
MIN_PASSPHRASE_LEN = 12

AAD_PREFIX = b"padcodec:PK1:"


def _b64u_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("ascii").rstrip("=")


def _b64u_decode(s: str) -> bytes:
    pad = "=" * ((4 - (len(s) % 4)) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


def _derive_key(passphrase: str, salt: bytes, log2_n: int) -> bytes:
    """
    Derive the 32-byte file key: Scrypt (memory-hard) followed by HKDF
    expansion bound to this file format.
    """
    if len(salt) != SALT_LEN:
        raise ValueError("Salt must be exactly 16 bytes.")
    if not SCRYPT_MIN_LOG2_N <= log2_n <= SCRYPT_MAX_LOG2_N:
        raise ValueError(f"scrypt cost 2^{log2_n} out of range")

    logger.debug(f"Deriving file key with Scrypt n=2^{log2_n}, r={SCRYPT_R}, p={SCRYPT_P}")
    kdf = Scrypt(salt=salt, length=32, n=2**log2_n, r=SCRYPT_R, p=SCRYPT_P)
    scrypt_key = kdf.derive(passphrase.encode("utf-8"))

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        info=b"padcodec sealed key",
    )
    return hkdf.derive(scrypt_key)


def is_sealed(data: bytes) -> bool:
    return data.startswith(MAGIC_PREFIX)


def seal(
    data: bytes,
    passphrase: str,
    *,
    aad: bytes = b"",
    scrypt_strength: Optional[str] = None,
) -> bytes:
    """Encrypt data under passphrase and return the sealed token as ASCII bytes."""
    if not passphrase or not passphrase.strip():
        raise ValueError("Passphrase is required.")
    if len(passphrase) < MIN_PASSPHRASE_LEN:
        logger.warning(
            f"Weak passphrase for sealed keys ({len(passphrase)}/{MIN_PASSPHRASE_LEN} chars recommended)"
        )
    strength = scrypt_strength or DEFAULT_STRENGTH
    if strength not in SCRYPT_PRESETS:
        raise ValueError(f"Unknown scrypt_strength: {strength}")
    log2_n = SCRYPT_PRESETS[strength]

    salt = os.urandom(SALT_LEN)
    nonce = os.urandom(NONCE_LEN)
    aes = AESGCM(_derive_key(passphrase, salt, log2_n))
    ct = aes.encrypt(nonce, data, AAD_PREFIX + aad)
    token = ".".join(
        [MAGIC, str(log2_n), _b64u_encode(salt), _b64u_encode(nonce), _b64u_encode(ct)]
    )
    return token.encode("ascii")


def unseal(token: bytes, passphrase: str, *, aad: bytes = b"") -> bytes:
    """Reverse seal(). Raises SealError on a wrong passphrase or a modified token."""
    if not passphrase or not passphrase.strip():
        raise SealError("Passphrase is required.")
    parts = token.decode("ascii", errors="replace").strip().split(".")
    if len(parts) != 5 or parts[0] != MAGIC:
        raise SealError("Sealed key format invalid (expected 5 parts).")
    try:
        log2_n = int(parts[1])
        salt = _b64u_decode(parts[2])
        nonce = _b64u_decode(parts[3])
        ct = _b64u_decode(parts[4])
    except ValueError as e:
        raise SealError(f"Failed to decode sealed key: {e}")
    if len(nonce) != NONCE_LEN:
        raise SealError("Invalid nonce size in sealed key.")
    try:
        key = _derive_key(passphrase, salt, log2_n)
    except ValueError as e:
        raise SealError(str(e))
    try:
        return AESGCM(key).decrypt(nonce, ct, AAD_PREFIX + aad)
    except InvalidTag:
        raise SealError("Wrong passphrase or sealed key was modified (authentication failed).")
