"""Symmetric encryption for discovery datagrams.

Every node on a segment shares one passphrase (the ``key`` option).  Two
schemes are available:

``aes-gcm`` (default)
    AES-256-GCM.  The key is derived once from the passphrase with
    PBKDF2-HMAC-SHA256 over a fixed domain salt, and every datagram carries a
    fresh random 96-bit nonce:  ``nonce (12) || ciphertext || tag (16)``.
    Tampering or a wrong passphrase fails authentication.

``legacy``
    Wire-compatible with Node's deprecated ``crypto.createCipher('aes256')``:
    key and IV come from OpenSSL ``EVP_BytesToKey`` (MD5, no salt, one
    round), the text is AES-256-CBC encrypted with PKCS7 padding, and the
    ciphertext travels as its latin-1 characters re-encoded as UTF-8.  The
    same passphrase always yields the same key *and* IV and there is no
    authentication tag, so use it only to talk to existing deployments.

A node with the wrong passphrase cannot decode anything it receives and
drops every datagram; mismatched nodes simply never see each other.
"""

from __future__ import annotations

import abc
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher as _Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

# Changing the salt rotates every derived key without touching passphrases.
_KDF_SALT = b"natatorium-discovery-v1"
_KDF_ITERATIONS = 100_000
_NONCE_BYTES = 12
_TAG_BYTES = 16

SCHEMES = ("aes-gcm", "legacy")


class Cipher(abc.ABC):
    """Turns envelope JSON text into datagram bytes and back."""

    scheme: str = ""

    @abc.abstractmethod
    def encrypt(self, text: str) -> bytes:
        """Encrypt UTF-8 *text* into datagram bytes."""

    @abc.abstractmethod
    def decrypt(self, datagram: bytes) -> str:
        """Decrypt datagram bytes.  Raises ``ValueError`` on any failure."""


# ------------------------------------------------------------------
# AES-256-GCM
# ------------------------------------------------------------------

def derive_key(passphrase: str) -> bytes:
    """Derive a 256-bit AES key from a shared passphrase."""
    return hashlib.pbkdf2_hmac(
        "sha256",
        passphrase.encode("utf-8"),
        _KDF_SALT,
        _KDF_ITERATIONS,
        dklen=32,
    )


class AESGCMCipher(Cipher):
    scheme = "aes-gcm"

    def __init__(self, passphrase: str) -> None:
        self._aesgcm = AESGCM(derive_key(passphrase))

    def encrypt(self, text: str) -> bytes:
        nonce = os.urandom(_NONCE_BYTES)
        return nonce + self._aesgcm.encrypt(nonce, text.encode("utf-8"), None)

    def decrypt(self, datagram: bytes) -> str:
        if len(datagram) < _NONCE_BYTES + _TAG_BYTES:
            raise ValueError(f"datagram too short for AES-GCM ({len(datagram)} bytes)")
        nonce, body = datagram[:_NONCE_BYTES], datagram[_NONCE_BYTES:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, body, None)
        except InvalidTag:
            raise ValueError("authentication failed (wrong key or tampered datagram)") from None
        return plaintext.decode("utf-8")


# ------------------------------------------------------------------
# Legacy AES-256-CBC (Node createCipher compatible)
# ------------------------------------------------------------------

def evp_bytes_to_key(passphrase: bytes, key_len: int = 32, iv_len: int = 16) -> tuple[bytes, bytes]:
    """OpenSSL ``EVP_BytesToKey`` with MD5, no salt and a single round."""
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        block = hashlib.md5(block + passphrase).digest()
        derived += block
    return derived[:key_len], derived[key_len:key_len + iv_len]


class LegacyCBCCipher(Cipher):
    scheme = "legacy"

    def __init__(self, passphrase: str) -> None:
        self._key, self._iv = evp_bytes_to_key(passphrase.encode("utf-8"))

    def _cipher(self) -> _Cipher:
        return _Cipher(algorithms.AES(self._key), modes.CBC(self._iv))

    def encrypt(self, text: str) -> bytes:
        padder = padding.PKCS7(128).padder()
        padded = padder.update(text.encode("utf-8")) + padder.finalize()
        encryptor = self._cipher().encryptor()
        raw = encryptor.update(padded) + encryptor.finalize()
        # Node emits a 'binary' string which Buffer() then writes as UTF-8.
        return raw.decode("latin-1").encode("utf-8")

    def decrypt(self, datagram: bytes) -> str:
        raw = datagram.decode("utf-8").encode("latin-1")
        decryptor = self._cipher().decryptor()
        padded = decryptor.update(raw) + decryptor.finalize()
        unpadder = padding.PKCS7(128).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")


def make_cipher(key: str | None, scheme: str = "aes-gcm") -> Cipher | None:
    """Return the cipher for *key*, or ``None`` when no key is configured."""
    if not key:
        return None
    if scheme == "aes-gcm":
        return AESGCMCipher(key)
    if scheme == "legacy":
        return LegacyCBCCipher(key)
    raise ValueError(f"Unknown cipher scheme: {scheme!r}. Expected one of {SCHEMES}")
