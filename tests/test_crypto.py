import base64
import unittest

from phiguard.core.crypto import FieldCipher, KEY_LENGTH, decode_key, generate_key
from phiguard.core.errors import ConfigurationFailure, IntegrityViolation
from tests.support import make_settings


def _flip_byte(envelope: str, index: int) -> str:
    raw = bytearray(base64.b64decode(envelope))
    raw[index] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("utf-8")


class TestFieldCipher(unittest.TestCase):

    def setUp(self):
        self.cipher = FieldCipher(decode_key(generate_key()))

    def test_round_trip(self):
        for plaintext in ["123-45-6789", "", "Zoë Ångström", "x" * 500]:
            self.assertEqual(self.cipher.decrypt(self.cipher.encrypt(plaintext)), plaintext)

    def test_same_plaintext_gives_distinct_envelopes(self):
        first = self.cipher.encrypt("123-45-6789")
        second = self.cipher.encrypt("123-45-6789")

        self.assertNotEqual(first, second)
        self.assertEqual(self.cipher.decrypt(first), "123-45-6789")
        self.assertEqual(self.cipher.decrypt(second), "123-45-6789")

    def test_none_passes_through(self):
        self.assertIsNone(self.cipher.encrypt(None))
        self.assertIsNone(self.cipher.decrypt(None))

    def test_any_flipped_byte_is_an_integrity_violation(self):
        envelope = self.cipher.encrypt("123-45-6789")
        length = len(base64.b64decode(envelope))
        for index in range(length):
            with self.subTest(index=index):
                with self.assertRaises(IntegrityViolation):
                    self.cipher.decrypt(_flip_byte(envelope, index))

    def test_envelope_from_another_key_is_rejected(self):
        other = FieldCipher(decode_key(generate_key()))
        with self.assertRaises(IntegrityViolation):
            self.cipher.decrypt(other.encrypt("MRN-0001"))

    def test_legacy_plaintext_is_returned_unchanged(self):
        self.assertEqual(self.cipher.decrypt("123-45-6789"), "123-45-6789")
        # Valid base64 but shorter than nonce + tag
        self.assertEqual(self.cipher.decrypt("QUJDRA=="), "QUJDRA==")

    def test_legacy_plaintext_rejected_when_disabled(self):
        strict = FieldCipher(decode_key(generate_key()), allow_legacy_plaintext=False)
        with self.assertRaises(IntegrityViolation):
            strict.decrypt("123-45-6789")
        with self.assertRaises(IntegrityViolation):
            strict.decrypt("QUJDRA==")

    def test_is_envelope(self):
        self.assertTrue(self.cipher.is_envelope(self.cipher.encrypt("Doe")))
        self.assertFalse(self.cipher.is_envelope("Doe"))
        self.assertFalse(self.cipher.is_envelope("123-45-6789"))
        self.assertFalse(self.cipher.is_envelope(None))


class TestKeyConfiguration(unittest.TestCase):

    def test_generated_key_decodes_to_256_bits(self):
        self.assertEqual(len(decode_key(generate_key())), KEY_LENGTH)

    def test_missing_key(self):
        for value in [None, "", "   "]:
            with self.subTest(value=value):
                with self.assertRaises(ConfigurationFailure):
                    decode_key(value)

    def test_key_that_is_not_base64(self):
        with self.assertRaises(ConfigurationFailure):
            decode_key("not a base64 key!")

    def test_key_of_wrong_length(self):
        short_key = base64.b64encode(b"k" * 16).decode("utf-8")
        with self.assertRaises(ConfigurationFailure):
            decode_key(short_key)

    def test_raw_key_of_wrong_length(self):
        with self.assertRaises(ConfigurationFailure):
            FieldCipher(b"k" * 31)

    def test_from_settings(self):
        settings = make_settings(PHI_ALLOW_LEGACY_PLAINTEXT=False)
        cipher = FieldCipher.from_settings(settings)
        self.assertFalse(cipher.allow_legacy_plaintext)
        self.assertEqual(cipher.decrypt(cipher.encrypt("alice")), "alice")

    def test_from_settings_without_key(self):
        with self.assertRaises(ConfigurationFailure):
            FieldCipher.from_settings(make_settings(PHI_ENCRYPTION_KEY=""))


if __name__ == "__main__":
    unittest.main()
