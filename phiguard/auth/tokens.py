import base64
import binascii
import secrets
from datetime import timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt

from ..core.clock import Clock, utcnow
from ..core.errors import ConfigurationFailure, InvalidCredential
from ..core.logging import get_logger

logger = get_logger(__name__)

ALGORITHM = "HS512"
MIN_SECRET_BYTES = 64          # 512 bits for HS512
MAX_ACCESS_TOKEN_TTL = timedelta(minutes=15)


def decode_secret(encoded_secret: str) -> bytes:
    try:
        key = base64.b64decode(encoded_secret, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationFailure("JWT_SECRET is not valid base64") from exc
    if len(key) < MIN_SECRET_BYTES:
        raise ConfigurationFailure(
            f"JWT_SECRET must be at least {MIN_SECRET_BYTES} bytes (512 bits) for {ALGORITHM}. "
            f"Current length: {len(key)} bytes. Generate one with: phiguard keys generate"
        )
    return key


def generate_secret() -> str:
    return base64.b64encode(secrets.token_bytes(MIN_SECRET_BYTES)).decode("utf-8")


class TokenIssuer:
    """
    Mints and validates short-lived HS512 access tokens.

    Tokens are stateless: there is no server-side record and no way to revoke
    one before it expires, which is why the lifetime is capped at 15 minutes.
    """

    def __init__(self, signing_key: bytes, issuer: str = "pms-api",
                 ttl: timedelta = MAX_ACCESS_TOKEN_TTL, clock: Clock = utcnow):
        if len(signing_key) < MIN_SECRET_BYTES:
            raise ConfigurationFailure(f"Signing key must be at least {MIN_SECRET_BYTES} bytes")
        if ttl <= timedelta(0) or ttl > MAX_ACCESS_TOKEN_TTL:
            raise ConfigurationFailure("Access token lifetime must be between 0 and 15 minutes")
        self._key = signing_key
        self.issuer = issuer
        self.ttl = ttl
        self.clock = clock

    @classmethod
    def from_settings(cls, settings, clock: Clock = utcnow) -> "TokenIssuer":
        if settings.JWT_SECRET:
            key = decode_secret(settings.JWT_SECRET)
        elif settings.is_production:
            raise ConfigurationFailure("JWT_SECRET is required when ENVIRONMENT is production")
        else:
            key = secrets.token_bytes(MIN_SECRET_BYTES)
            logger.warning(
                "jwt_secret_generated",
                hint="JWT_SECRET is not set. Tokens will not survive a restart. "
                     "DO NOT use this outside development.",
            )
        return cls(
            key,
            issuer=settings.JWT_ISSUER,
            ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            clock=clock,
        )

    def issue(self, subject: str, role: str) -> str:
        issued_at = self.clock().replace(tzinfo=timezone.utc)
        claims = {
            "sub": subject,
            "role": role,
            "iss": self.issuer,
            "iat": issued_at,
            "exp": issued_at + self.ttl,
        }
        return jwt.encode(claims, self._key, algorithm=ALGORITHM)

    def validate(self, token: str, expected_subject: Optional[str] = None) -> dict[str, Any]:
        """
        Returns the verified claims. Bad signature, wrong issuer, expiry and
        subject mismatch all raise the same InvalidCredential.
        """
        rejection = InvalidCredential("Invalid token")
        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                options={
                    "require_exp": True,
                    "require_iat": True,
                    "require_sub": True,
                    # Expiry is checked below against the injected clock
                    "verify_exp": False,
                },
            )
        except JWTError as exc:
            logger.info("access_token_rejected")
            raise rejection from exc

        now = self.clock().replace(tzinfo=timezone.utc).timestamp()
        expires_at = claims.get("exp")
        if not isinstance(expires_at, (int, float)) or expires_at <= now:
            logger.info("access_token_rejected", reason="expired")
            raise rejection

        if expected_subject is not None and claims.get("sub") != expected_subject:
            logger.info("access_token_rejected")
            raise rejection
        return claims

    def is_valid(self, token: str, expected_subject: Optional[str] = None) -> bool:
        try:
            self.validate(token, expected_subject)
        except InvalidCredential:
            return False
        return True
