import hashlib
import secrets
from datetime import timedelta
from uuid import UUID

from sqlalchemy import delete, or_, update
from sqlmodel import Session, select

from ..core.clock import Clock, utcnow
from ..core.errors import InvalidCredential
from ..core.logging import get_logger
from ..models.RefreshToken import RefreshToken

logger = get_logger(__name__)

DEFAULT_REFRESH_TTL = timedelta(hours=24)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class RefreshTokenStore:
    """
    Long-lived opaque refresh tokens backed by the refresh_tokens table.

    States: Active -> Revoked (rotation, revoke_all) and Active -> Expired
    (noticed lazily by verify). Revoked and Expired are absorbing; the purge
    only reclaims storage and is not needed for them to be rejected.
    """

    def __init__(self, ttl: timedelta = DEFAULT_REFRESH_TTL, clock: Clock = utcnow):
        self.ttl = ttl
        self.clock = clock

    @classmethod
    def from_settings(cls, settings, clock: Clock = utcnow) -> "RefreshTokenStore":
        return cls(ttl=timedelta(minutes=settings.JWT_REFRESH_EXPIRATION_MINUTES), clock=clock)

    def _new_row(self, account_id: UUID) -> tuple[str, RefreshToken]:
        token = secrets.token_urlsafe(48)
        row = RefreshToken(
            token_hash=hash_token(token),
            account_id=account_id,
            expiry_date=self.clock() + self.ttl,
            revoked=False,
        )
        return token, row

    def issue(self, session: Session, account_id: UUID) -> str:
        token, row = self._new_row(account_id)
        session.add(row)
        session.commit()
        return token

    def verify(self, session: Session, token: str) -> RefreshToken:
        statement = select(RefreshToken).where(RefreshToken.token_hash == hash_token(token))
        row = session.exec(statement).first()
        if row is None or row.revoked:
            raise InvalidCredential("Invalid or revoked refresh token")

        if row.expiry_date <= self.clock():
            session.delete(row)
            session.commit()
            raise InvalidCredential("Invalid or revoked refresh token")
        return row

    def rotate(self, session: Session, old_token: str, account_id: UUID) -> str:
        """
        Revokes old_token and issues its successor in one unit of work.

        The revocation is a conditional UPDATE; only the caller that flips the
        row from active to revoked may continue, so of two concurrent
        rotations of the same token exactly one succeeds.
        """
        now = self.clock()
        result = session.exec(
            update(RefreshToken)
            .where(
                RefreshToken.token_hash == hash_token(old_token),
                RefreshToken.account_id == account_id,
                RefreshToken.revoked == False,  # noqa: E712
                RefreshToken.expiry_date > now,
            )
            .values(revoked=True)
        )
        if result.rowcount != 1:
            session.rollback()
            logger.warning("refresh_token_reuse_rejected", account_id=str(account_id))
            raise InvalidCredential("Invalid or revoked refresh token")

        token, row = self._new_row(account_id)
        session.add(row)
        session.commit()
        return token

    def revoke_all(self, session: Session, account_id: UUID) -> int:
        result = session.exec(
            update(RefreshToken)
            .where(RefreshToken.account_id == account_id, RefreshToken.revoked == False)  # noqa: E712
            .values(revoked=True)
        )
        session.commit()
        return result.rowcount

    def purge(self, session: Session) -> int:
        result = session.exec(
            delete(RefreshToken).where(
                or_(RefreshToken.expiry_date < self.clock(), RefreshToken.revoked == True)  # noqa: E712
            )
        )
        session.commit()
        return result.rowcount
