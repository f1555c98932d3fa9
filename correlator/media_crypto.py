#!/usr/bin/env python3
"""
Media decryption

Remote media is stored end-to-end encrypted. The per-message media key is
expanded with HKDF-SHA256 into an IV, an AES-256 key and a MAC key; the
download is the AES-CBC ciphertext followed by a truncated HMAC-SHA256 of
IV + ciphertext.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from correlator.errors import MediaDecryptionError

logger = logging.getLogger(__name__)

EXPANDED_KEY_LENGTH = 112
MAC_LENGTH = 10

# HKDF info strings per media kind
MEDIA_KEY_INFO = {
    "image": b"WhatsApp Image Keys",
    "sticker": b"WhatsApp Image Keys",
    "video": b"WhatsApp Video Keys",
    "gif": b"WhatsApp Video Keys",
    "audio": b"WhatsApp Audio Keys",
    "ptt": b"WhatsApp Audio Keys",
    "document": b"WhatsApp Document Keys",
}


@dataclass
class MediaLink:
    """Download descriptor of one remote media file.

    Attributes:
        hash: Declared media hash, the global dedup key
        url: Remote locator
        media_key: 32-byte key from the message row
        media_type: Media kind ("image", "video", "audio", "document", ...)
        file_name: Declared file name, when any
    """

    hash: str
    url: str
    media_key: Optional[bytes] = None
    media_type: str = "document"
    file_name: Optional[str] = None


def _expand_media_key(media_key: bytes, media_type: str) -> bytes:
    info = MEDIA_KEY_INFO.get(media_type.lower())
    if info is None:
        raise MediaDecryptionError(f"Unsupported media type: {media_type}")
    hkdf = HKDF(algorithm=hashes.SHA256(), length=EXPANDED_KEY_LENGTH, salt=None, info=info)
    return hkdf.derive(media_key)


def decrypt_media(encrypted: bytes, media_key: bytes, media_type: str) -> bytes:
    """Decrypt a downloaded media file.

    Args:
        encrypted: Raw downloaded bytes (ciphertext followed by the MAC)
        media_key: Media key of the message
        media_type: Media kind selecting the HKDF info string

    Returns:
        Plain media bytes

    Raises:
        MediaDecryptionError: If the MAC does not match or padding is invalid
    """
    if len(encrypted) <= MAC_LENGTH:
        raise MediaDecryptionError("Encrypted media is too short")

    expanded = _expand_media_key(media_key, media_type)
    iv, cipher_key, mac_key = expanded[:16], expanded[16:48], expanded[48:80]
    ciphertext, mac = encrypted[:-MAC_LENGTH], encrypted[-MAC_LENGTH:]

    expected = hmac.new(mac_key, iv + ciphertext, hashlib.sha256).digest()[:MAC_LENGTH]
    if not hmac.compare_digest(mac, expected):
        raise MediaDecryptionError("Media MAC mismatch")

    if len(ciphertext) % 16:
        raise MediaDecryptionError("Ciphertext is not block aligned")

    decryptor = Cipher(algorithms.AES(cipher_key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()

    unpadder = padding.PKCS7(128).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise MediaDecryptionError(f"Invalid padding: {e}") from e


def decrypt_file(src: Path, dst: Path, link: MediaLink) -> Path:
    """Decrypt a downloaded file into dst.

    Links without a media key are taken as plain content and copied as is.
    """
    data = Path(src).read_bytes()
    if link.media_key:
        data = decrypt_media(data, link.media_key, link.media_type)
    else:
        logger.debug(f"No media key for {link.hash}, keeping content as downloaded")
    Path(dst).write_bytes(data)
    return Path(dst)
