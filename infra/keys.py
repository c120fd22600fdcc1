from __future__ import annotations

import base64

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from generator import config


class KeyDecryptionError(Exception):
    pass


class KeyBox:
    """Encrypts wallet private keys at rest with a passphrase-derived Fernet key."""

    def __init__(
        self,
        passphrase: str,
        *,
        salt: bytes = config.KEY_SALT,
        iterations: int = config.KEY_KDF_ITERATIONS,
    ) -> None:
        if not passphrase:
            raise ValueError("empty encryption passphrase")
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=int(iterations))
        self._fernet = Fernet(base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8"))))

    def encrypt(self, private_key: str) -> str:
        pk = private_key[2:] if private_key.startswith("0x") else private_key
        return self._fernet.encrypt(pk.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            raw = self._fernet.decrypt(token.encode("ascii"))
        except (InvalidToken, ValueError) as exc:
            raise KeyDecryptionError("cannot decrypt wallet key (wrong WALLET_ENCRYPTION_KEY?)") from exc
        return "0x" + raw.decode("utf-8")
