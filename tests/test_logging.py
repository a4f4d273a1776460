import io
import unittest
from contextlib import redirect_stdout

from phiguard.core.logging import _redact_sensitive, configure_logging, get_logger


class TestRedaction(unittest.TestCase):

    def test_sensitive_keys_are_masked(self):
        event = _redact_sensitive(None, "info", {
            "event": "patient_updated",
            "ssn": "123-45-6789",
            "refresh_token": "abc",
            "patient_email": "alice@hospital.org",
            "patient_id": "42",
        })

        self.assertEqual(event["ssn"], "[redacted]")
        self.assertEqual(event["refresh_token"], "[redacted]")
        self.assertEqual(event["patient_email"], "[redacted]")
        self.assertEqual(event["patient_id"], "42")
        self.assertEqual(event["event"], "patient_updated")


class TestConsoleTracebacks(unittest.TestCase):

    def tearDown(self):
        configure_logging("WARNING")

    def test_frame_locals_are_not_rendered(self):
        configure_logging("INFO")
        output = io.StringIO()

        with redirect_stdout(output):
            logger = get_logger("tests.logging")
            try:
                decrypted = "987-65-4321"
                raise ValueError(f"bad value of length {len(decrypted)}")
            except ValueError:
                logger.exception("decrypt_failed")

        rendered = output.getvalue()
        self.assertIn("decrypt_failed", rendered)
        self.assertIn("ValueError", rendered)
        self.assertNotIn("987-65-4321", rendered)


if __name__ == "__main__":
    unittest.main()
