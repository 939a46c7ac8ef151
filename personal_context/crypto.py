"""
Field-level encryption of sensitive entity data using AES-256-CBC (cryptography).

Values are canonicalized to JSON, padded with PKCS7 and encrypted under a fresh
16-byte random IV on every call, so identical plaintexts never produce identical
envelopes. An HMAC-SHA256 tag over iv || ciphertext is appended to the
ciphertext; the MAC key is derived from the field key with HKDF, so the single
256-bit key held in memory is the only secret.

Stored form of one envelope (one text column):
    {"iv": "<32 lowercase hex chars>", "content": "<base64(ciphertext || tag)>"}

Any failure on the way back (corrupt JSON, bad hex/base64, tag mismatch, bad
padding, wrong key) raises DecryptError; partial plaintext is never returned.
"""
import base64
import binascii
import json
import os
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.hmac import HMAC
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from personal_context.errors import DecryptError

KEY_SIZE = 32
IV_SIZE = 16
TAG_SIZE = 32

_MAC_KEY_INFO = b"personal-context/envelope-mac"


@dataclass(frozen=True)
class Envelope:
    iv: str
    content: str

    def to_json(self) -> str:
        return json.dumps({"iv": self.iv, "content": self.content})

    @classmethod
    def from_json(cls, raw: str) -> "Envelope":
        """Parse a stored envelope column. Raises DecryptError if it is not a well-formed envelope."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise DecryptError("Corrupt envelope") from e
        if not isinstance(data, dict):
            raise DecryptError("Corrupt envelope")
        iv, content = data.get("iv"), data.get("content")
        if not isinstance(iv, str) or not isinstance(content, str):
            raise DecryptError("Corrupt envelope")
        return cls(iv=iv, content=content)


def canonical_json(value: Any) -> str:
    # ASCII escapes keep lone surrogates encodable as UTF-8
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


class FieldCipher:
    """Symmetric encrypt/decrypt of JSON-serializable values. The key lives only in process memory."""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError(f"Field key must be {KEY_SIZE} bytes, got {len(key)}")
        self._key = key
        self._mac_key = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=_MAC_KEY_INFO,
        ).derive(key)

    def __repr__(self) -> str:
        return "FieldCipher(key=<redacted>)"

    def _mac(self, iv: bytes, ciphertext: bytes) -> HMAC:
        h = HMAC(self._mac_key, hashes.SHA256())
        h.update(iv + ciphertext)
        return h

    def encrypt(self, value: Any) -> Envelope:
        """Encrypt a JSON-serializable value under a new random IV."""
        plaintext = canonical_json(value).encode("utf-8")
        iv = os.urandom(IV_SIZE)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        content = base64.b64encode(ciphertext + self._mac(iv, ciphertext).finalize()).decode("ascii")
        return Envelope(iv=iv.hex(), content=content)

    def decrypt(self, envelope: Envelope) -> Any:
        """Verify and decrypt an envelope. Raises DecryptError on any failure."""
        try:
            iv = binascii.unhexlify(envelope.iv)
            blob = base64.b64decode(envelope.content, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise DecryptError("Corrupt envelope encoding") from e
        if len(iv) != IV_SIZE or len(blob) <= TAG_SIZE:
            raise DecryptError("Corrupt envelope")

        ciphertext, tag = blob[:-TAG_SIZE], blob[-TAG_SIZE:]
        try:
            self._mac(iv, ciphertext).verify(tag)
        except InvalidSignature as e:
            raise DecryptError("Envelope authentication failed") from e

        try:
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return json.loads(plaintext.decode("utf-8"))
        except ValueError as e:
            # padding, block length, UTF-8 and JSON errors are all ValueError subclasses
            raise DecryptError("Failed to decrypt data") from e

    def seal(self, value: Any) -> str:
        """Encrypt a value and return the envelope as column text."""
        return self.encrypt(value).to_json()

    def unseal(self, raw: str) -> Any:
        """Decrypt envelope column text back into the original value."""
        return self.decrypt(Envelope.from_json(raw))

