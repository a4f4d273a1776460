"""Transparent encryption of protected columns at the persistence boundary.

Every protected attribute is declared with ``PhiEncryptedString`` so business
code reads and writes plaintext while the database only ever holds envelopes.
Because envelopes are non-deterministic, equality lookups on a protected
column cannot be expressed as SQL; callers load the candidate rows and
compare decrypted values in memory.
"""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator

from .crypto import FieldCipher
from .errors import ConfigurationFailure


class FieldCodec:
    def __init__(self):
        self._cipher: Optional[FieldCipher] = None

    def bind(self, cipher: FieldCipher) -> None:
        self._cipher = cipher

    def unbind(self) -> None:
        self._cipher = None

    @property
    def cipher(self) -> FieldCipher:
        if self._cipher is None:
            raise ConfigurationFailure("PHI field codec used before a cipher was bound")
        return self._cipher

    def to_storage(self, value: Optional[str]) -> Optional[str]:
        return self.cipher.encrypt(value)

    def from_storage(self, value: Optional[str]) -> Optional[str]:
        return self.cipher.decrypt(value)


# Column types are built at import time and share this instance. The running
# application binds its cipher here, so one process serves one encryption key.
field_codec = FieldCodec()


class PhiEncryptedString(TypeDecorator):
    """String column stored as an AES-GCM envelope."""

    impl = String
    cache_ok = True

    def __init__(self, codec: FieldCodec = field_codec, **kwargs):
        super().__init__(**kwargs)
        self.codec = codec

    def process_bind_param(self, value, dialect):
        return self.codec.to_storage(value)

    def process_result_value(self, value, dialect):
        return self.codec.from_storage(value)

    def process_literal_param(self, value, dialect):
        # Inlining a protected value into rendered SQL would bypass encryption
        raise ConfigurationFailure("Protected columns cannot be rendered as SQL literals")
