import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import LargeBinary
from sqlalchemy.types import TypeDecorator

from app.core.settings import settings


def settings_cipher(secret: str | None = None) -> Fernet:
    """Fernet cipher keyed from SECRET_KEY, used for credentials stored in app_settings."""
    material = f"app-settings:{secret or settings.secret_key}".encode("utf-8")
    return Fernet(base64.urlsafe_b64encode(hashlib.sha256(material).digest()))


class EncryptedString(TypeDecorator):
    """String column stored as a Fernet token; plaintext never reaches the database."""

    impl = LargeBinary
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or value == "":
            return None
        return settings_cipher().encrypt(str(value).encode("utf-8"))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return settings_cipher().decrypt(bytes(value)).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Stored credential cannot be decrypted with the current SECRET_KEY") from exc


__all__ = ["EncryptedString", "settings_cipher"]
