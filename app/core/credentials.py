"""Encryption for channel secrets (access tokens, session blobs)."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from app.config import get_settings


def _get_fernet() -> Fernet:
    """Get a Fernet instance with the credential master key."""
    settings = get_settings()
    key = settings.credential_master_key or settings.fernet_key
    if not key:
        raise ValueError(
            "CREDENTIAL_MASTER_KEY or FERNET_KEY must be set for credential encryption"
        )
    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_secret(value: Optional[str]) -> Optional[bytes]:
    if value is None:
        return None
    return _get_fernet().encrypt(value.encode())


def decrypt_secret(value: Optional[bytes]) -> Optional[str]:
    """Decrypt a stored secret. Raises ValueError if the key does not match."""
    if value is None:
        return None
    try:
        return _get_fernet().decrypt(value).decode()
    except InvalidToken as e:
        raise ValueError("Stored secret cannot be decrypted with the current key") from e


def encrypt_session_data(data: Dict[str, Any]) -> bytes:
    """Encrypt an opaque session credential blob."""
    return _get_fernet().encrypt(json.dumps(data).encode())


def decrypt_session_data(encrypted_data: bytes) -> Dict[str, Any]:
    """Decrypt an opaque session credential blob."""
    try:
        plaintext = _get_fernet().decrypt(encrypted_data)
    except InvalidToken as e:
        raise ValueError("Stored session cannot be decrypted with the current key") from e
    return json.loads(plaintext)
