import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import ConfigurationFailure, IntegrityViolation
from .logging import get_logger

logger = get_logger(__name__)

KEY_LENGTH = 32     # AES-256
NONCE_LENGTH = 12   # Recommended for AES-GCM
TAG_LENGTH = 16     # 128-bit authentication tag
MIN_ENVELOPE_LENGTH = NONCE_LENGTH + TAG_LENGTH


def generate_key() -> str:
    """
    Generates a fresh 256-bit key, base64 encoded, suitable for PHI_ENCRYPTION_KEY.
    """
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("utf-8")


def decode_key(encoded_key: str | None) -> bytes:
    """
    Decodes and checks a base64 PHI key. Any problem is a ConfigurationFailure:
    there is no unencrypted operating mode.
    """
    if not encoded_key or not encoded_key.strip():
        raise ConfigurationFailure(
            "PHI_ENCRYPTION_KEY is not set. Encryption of PHI at rest is mandatory. "
            "Generate a key with: phiguard keys generate"
        )
    try:
        key = base64.b64decode(encoded_key, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationFailure("PHI_ENCRYPTION_KEY is not valid base64") from exc
    if len(key) != KEY_LENGTH:
        raise ConfigurationFailure(
            f"PHI_ENCRYPTION_KEY must be exactly {KEY_LENGTH} bytes (256 bits). "
            f"Current: {len(key)} bytes."
        )
    return key


class FieldCipher:
    """
    AES-256-GCM encryptor for individual PHI string values.

    Envelope format: base64(nonce[12] || ciphertext || tag[16]).
    Every call to encrypt draws a fresh random nonce, so equal plaintexts
    never produce equal envelopes.
    """

    def __init__(self, key: bytes, allow_legacy_plaintext: bool = True):
        if not isinstance(key, bytes) or len(key) != KEY_LENGTH:
            raise ConfigurationFailure(
                f"PHI encryption key must be exactly {KEY_LENGTH} bytes (256 bits)"
            )
        self._aesgcm = AESGCM(key)
        self.allow_legacy_plaintext = allow_legacy_plaintext

    @classmethod
    def from_settings(cls, settings) -> "FieldCipher":
        cipher = cls(
            decode_key(settings.PHI_ENCRYPTION_KEY),
            allow_legacy_plaintext=settings.PHI_ALLOW_LEGACY_PLAINTEXT,
        )
        logger.info("phi_encryption_initialized", legacy_plaintext=cipher.allow_legacy_plaintext)
        return cipher

    def encrypt(self, plaintext: str | None) -> str | None:
        if plaintext is None:
            return None
        nonce = os.urandom(NONCE_LENGTH)
        # AESGCM appends the tag to the ciphertext
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("utf-8")

    def decrypt(self, envelope: str | None) -> str | None:
        if envelope is None:
            return None
        try:
            combined = base64.b64decode(envelope, validate=True)
        except (binascii.Error, ValueError):
            return self._legacy(envelope, reason="not_base64")

        if len(combined) < MIN_ENVELOPE_LENGTH:
            return self._legacy(envelope, reason="too_short")

        nonce, sealed = combined[:NONCE_LENGTH], combined[NONCE_LENGTH:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, sealed, None)
        except InvalidTag as exc:
            logger.error("phi_integrity_violation")
            raise IntegrityViolation() from exc
        return plaintext.decode("utf-8")

    def is_envelope(self, value: str | None) -> bool:
        """True when value has envelope shape (valid base64, long enough)."""
        if value is None:
            return False
        try:
            combined = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return False
        return len(combined) >= MIN_ENVELOPE_LENGTH

    def _legacy(self, value: str, reason: str) -> str:
        if not self.allow_legacy_plaintext:
            logger.error("phi_legacy_plaintext_rejected", reason=reason)
            raise IntegrityViolation()
        logger.warning(
            "phi_legacy_plaintext_found",
            reason=reason,
            hint="run 'phiguard maintenance reencrypt' to encrypt existing records",
        )
        return value
