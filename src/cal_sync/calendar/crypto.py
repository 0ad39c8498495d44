"""Encryption of OAuth tokens at rest.

Tokens are sealed with AES-256-GCM.  The key is derived from the
server-held secret with scrypt and a random salt generated for every
record, and every encryption uses a fresh random nonce.  The salt and nonce
travel with the ciphertext in a versioned text token::

    v1:<salt-hex>:<nonce-hex>:<ciphertext-hex>
"""

from __future__ import annotations

import functools
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from cal_sync.calendar.exceptions import AuthReason, CalendarAuthError

logger = logging.getLogger(__name__)

_VERSION = "v1"
_SALT_BYTES = 16
_NONCE_BYTES = 12
_KEY_BYTES = 32

# scrypt cost parameters (N=2**14, r=8, p=1).
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1


@functools.lru_cache(maxsize=256)
def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=_KEY_BYTES, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)
    return kdf.derive(secret.encode("utf-8"))


class TokenCipher:
    """Symmetric cipher for credentials stored in connection records.

    Args:
        secret: The server-held encryption secret.

    Raises:
        CalendarAuthError: With reason ``MISSING_SECRET`` if *secret* is
            empty.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise CalendarAuthError(AuthReason.MISSING_SECRET)
        self._secret = secret

    def __repr__(self) -> str:
        return "TokenCipher(secret='***')"

    def encrypt(self, plaintext: str) -> str:
        """Encrypt *plaintext* into a self-describing token.

        Args:
            plaintext: The token to protect.  Must not be empty.

        Returns:
            A ``v1:salt:nonce:ciphertext`` string (hex fields).
        """
        if not plaintext:
            raise ValueError("Cannot encrypt an empty token")

        salt = os.urandom(_SALT_BYTES)
        nonce = os.urandom(_NONCE_BYTES)
        key = _derive_key(self._secret, salt)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
        return ":".join([_VERSION, salt.hex(), nonce.hex(), ciphertext.hex()])

    def decrypt(self, token: str) -> str:
        """Decrypt a token produced by :meth:`encrypt`.

        Raises:
            CalendarAuthError: With reason ``CREDENTIAL_UNREADABLE`` if the
                token is malformed, was tampered with, or was sealed under a
                different secret.
        """
        parts = token.split(":")
        if len(parts) != 4 or parts[0] != _VERSION:
            logger.error("Stored credential has an unrecognised format")
            raise CalendarAuthError(AuthReason.CREDENTIAL_UNREADABLE)

        try:
            salt = bytes.fromhex(parts[1])
            nonce = bytes.fromhex(parts[2])
            ciphertext = bytes.fromhex(parts[3])
        except ValueError as exc:
            logger.error("Stored credential is not valid hex")
            raise CalendarAuthError(AuthReason.CREDENTIAL_UNREADABLE) from exc

        if len(salt) != _SALT_BYTES or len(nonce) != _NONCE_BYTES:
            raise CalendarAuthError(AuthReason.CREDENTIAL_UNREADABLE)

        key = _derive_key(self._secret, salt)
        try:
            plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
        except InvalidTag as exc:
            logger.error("Stored credential failed authentication")
            raise CalendarAuthError(AuthReason.CREDENTIAL_UNREADABLE) from exc
        return plaintext.decode("utf-8")
