import threading
import unittest
from uuid import uuid4

from sqlmodel import select

from phiguard.auth.refresh import RefreshTokenStore, hash_token
from phiguard.core.errors import InvalidCredential
from phiguard.models.RefreshToken import RefreshToken
from tests.support import FakeClock, TemporaryDatabase


class TestRefreshTokenStore(unittest.TestCase):

    def setUp(self):
        self.db = TemporaryDatabase()
        self.clock = FakeClock()
        self.store = RefreshTokenStore(clock=self.clock)
        self.account_id = uuid4()

    def tearDown(self):
        self.db.close()

    def _issue(self, account_id=None):
        with self.db.session_factory() as session:
            return self.store.issue(session, account_id or self.account_id)

    def _verify(self, token):
        with self.db.session_factory() as session:
            return self.store.verify(session, token)

    def _rotate(self, token, account_id=None):
        with self.db.session_factory() as session:
            return self.store.rotate(session, token, account_id or self.account_id)

    def _rows(self):
        with self.db.session_factory() as session:
            return list(session.exec(select(RefreshToken)).all())

    def test_only_the_digest_is_stored(self):
        token = self._issue()
        rows = self._rows()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].token_hash, hash_token(token))
        self.assertNotEqual(rows[0].token_hash, token)

    def test_verify_active_token(self):
        token = self._issue()
        row = self._verify(token)
        self.assertEqual(row.account_id, self.account_id)
        self.assertFalse(row.revoked)

    def test_unknown_token_is_rejected(self):
        with self.assertRaises(InvalidCredential):
            self._verify("never-issued")

    def test_rotate_revokes_the_old_token(self):
        token_a = self._issue()
        token_b = self._rotate(token_a)

        self.assertNotEqual(token_a, token_b)
        with self.assertRaises(InvalidCredential):
            self._verify(token_a)
        self.assertEqual(self._verify(token_b).account_id, self.account_id)

    def test_rotated_token_cannot_be_rotated_again(self):
        token_a = self._issue()
        self._rotate(token_a)
        with self.assertRaises(InvalidCredential):
            self._rotate(token_a)
        self.assertEqual(len(self._rows()), 2)

    def test_rotate_for_another_account_is_rejected(self):
        token = self._issue()
        with self.assertRaises(InvalidCredential):
            self._rotate(token, account_id=uuid4())
        self.assertEqual(self._verify(token).account_id, self.account_id)

    def test_concurrent_rotation_has_a_single_winner(self):
        token = self._issue()
        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def attempt():
            barrier.wait()
            try:
                result = self._rotate(token)
            except InvalidCredential:
                result = None
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        winners = [o for o in outcomes if o is not None]
        self.assertEqual(len(outcomes), 2)
        self.assertEqual(len(winners), 1)
        self.assertEqual(self._verify(winners[0]).account_id, self.account_id)
        with self.assertRaises(InvalidCredential):
            self._verify(token)

    def test_expired_token_is_deleted_on_verify(self):
        token = self._issue()
        self.clock.advance(hours=24, seconds=1)

        with self.assertRaises(InvalidCredential):
            self._verify(token)
        self.assertEqual(self._rows(), [])

    def test_expired_token_cannot_be_rotated(self):
        token = self._issue()
        self.clock.advance(hours=25)
        with self.assertRaises(InvalidCredential):
            self._rotate(token)

    def test_revoke_all(self):
        first = self._issue()
        second = self._issue()
        other_account = self._issue(account_id=uuid4())

        with self.db.session_factory() as session:
            self.assertEqual(self.store.revoke_all(session, self.account_id), 2)

        for token in (first, second):
            with self.assertRaises(InvalidCredential):
                self._verify(token)
        self._verify(other_account)

    def test_purge_removes_revoked_rows(self):
        self._issue()
        with self.db.session_factory() as session:
            self.store.revoke_all(session, self.account_id)
        live = self._issue(account_id=uuid4())

        with self.db.session_factory() as session:
            self.assertEqual(self.store.purge(session), 1)

        remaining = self._rows()
        self.assertEqual([row.token_hash for row in remaining], [hash_token(live)])

    def test_purge_removes_expired_active_rows(self):
        self._issue()
        self.clock.advance(hours=25)
        still_active = self._issue()

        with self.db.session_factory() as session:
            self.assertEqual(self.store.purge(session), 1)
        self.assertEqual(self._verify(still_active).account_id, self.account_id)


if __name__ == "__main__":
    unittest.main()
