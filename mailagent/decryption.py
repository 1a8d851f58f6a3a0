"""GnuPG decryption of alarm payloads via python-gnupg."""

from __future__ import annotations

import asyncio

import gnupg
import structlog
from pydantic import SecretStr

from .errors import DecryptionError
from .interface import Decryptor

logger = structlog.get_logger()


class GnupgDecryptor(Decryptor):
    """Decrypts with the secret keys in the GnuPG home directory.

    The passphrase is supplied through loopback pinentry, so no agent
    prompt is needed. The gpg subprocess runs in a worker thread.
    """

    def __init__(self, passphrase: SecretStr, *, gnupg_home: str | None = None) -> None:
        self._passphrase = passphrase
        self._gpg = gnupg.GPG(gnupghome=gnupg_home)

    async def decrypt(self, data: bytes) -> str:
        if not data:
            raise DecryptionError("nothing to decrypt")

        logger.debug("decrypting_payload", size_bytes=len(data))
        result = await asyncio.to_thread(
            self._gpg.decrypt,
            data,
            passphrase=self._passphrase.get_secret_value(),
        )
        if not result.ok:
            raise DecryptionError(f"gpg decryption failed: {result.status or 'unknown error'}")

        logger.debug("payload_decrypted", status=result.status, size_bytes=len(result.data))
        return result.data.decode("utf-8", errors="replace")
