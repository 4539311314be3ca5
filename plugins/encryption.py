"""
Credential encryption — encrypt / decrypt stored OAuth credentials.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The key comes from ``config.token_encryption_key``
(env var: ``TOKEN_ENCRYPTION_KEY``).

Without a key, credentials are stored as plaintext JSON and a warning is
logged once.  Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from config.settings import config
from plugins.schemas import OAuthCredentials

logger = logging.getLogger(__name__)

_fernet: Optional[Fernet] = None
_initialised = False


def _init_fernet() -> None:
    """Lazy-initialise the Fernet cipher once."""
    global _fernet, _initialised

    _initialised = True
    key = config.token_encryption_key
    if not key:
        logger.warning(
            "TOKEN_ENCRYPTION_KEY not set — plugin credentials will be stored as plaintext"
        )
        _fernet = None
        return

    _fernet = Fernet(key.encode() if isinstance(key, str) else key)
    logger.info("Credential encryption enabled (Fernet)")


def encrypt_credentials(credentials: OAuthCredentials) -> str:
    """Serialize credentials to JSON and encrypt them for storage."""
    if not _initialised:
        _init_fernet()

    plaintext = credentials.model_dump_json()
    if _fernet is None:
        return plaintext
    return _fernet.encrypt(plaintext.encode()).decode()


def decrypt_credentials(stored: str) -> OAuthCredentials:
    """
    Decrypt and parse credentials read from the database.

    Rows written before a key was configured hold plaintext JSON and are
    parsed as-is.
    """
    if not _initialised:
        _init_fernet()

    if _fernet is None or stored.lstrip().startswith("{"):
        return OAuthCredentials.model_validate_json(stored)

    try:
        plaintext = _fernet.decrypt(stored.encode()).decode()
    except InvalidToken:
        logger.error("Stored plugin credentials could not be decrypted with the configured key")
        raise
    return OAuthCredentials.model_validate_json(plaintext)


def is_encryption_enabled() -> bool:
    if not _initialised:
        _init_fernet()
    return _fernet is not None
