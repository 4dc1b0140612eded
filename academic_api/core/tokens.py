from datetime import datetime, timedelta, timezone
from typing import List, Optional
from jose import JWTError, jwt
from pydantic import BaseModel
from .config import settings
import logging

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class TokenClaims(BaseModel):
    """Claims carried by an access or refresh token.

    ``teacher_id`` and ``student_id`` are only present when the account holds
    the matching role and has a linked profile.
    """

    account_id: Optional[int] = None
    roles: List[str] = []
    teacher_id: Optional[int] = None
    student_id: Optional[int] = None

    def to_payload(self) -> dict:
        payload = {"roles": list(self.roles)}
        # 'sub' must be a string (JWT requirement)
        if self.account_id is not None:
            payload["sub"] = str(self.account_id)
        if self.teacher_id is not None:
            payload["teacher_id"] = self.teacher_id
        if self.student_id is not None:
            payload["student_id"] = self.student_id
        return payload

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenClaims":
        sub = payload.get("sub")
        return cls(
            account_id=int(sub) if sub is not None else None,
            roles=payload.get("roles") or [],
            teacher_id=payload.get("teacher_id"),
            student_id=payload.get("student_id"),
        )


class TokenError(Exception):
    """Token could not be verified (bad signature, expired, wrong type, malformed)"""


class TokenCodec:
    def __init__(self, algorithm: str = "HS256"):
        self.algorithm = algorithm

    def sign(self, claims: TokenClaims, key: str, ttl: timedelta, token_type: str) -> str:
        to_encode = claims.to_payload()
        to_encode.update({
            "exp": datetime.now(timezone.utc) + ttl,
            "type": token_type,
        })
        return jwt.encode(to_encode, key, algorithm=self.algorithm)

    def verify(self, token: str, key: str, token_type: str) -> TokenClaims:
        try:
            payload = jwt.decode(token, key, algorithms=[self.algorithm])
        except JWTError as e:
            raise TokenError(str(e)) from e

        if payload.get("type") != token_type:
            raise TokenError(f"Expected {token_type} token, got {payload.get('type')}")

        try:
            return TokenClaims.from_payload(payload)
        except (TypeError, ValueError) as e:
            raise TokenError(f"Malformed claims: {e}") from e


codec = TokenCodec(settings.algorithm)


def create_access_token(claims: TokenClaims, expires_minutes: Optional[int] = None) -> str:
    minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    token = codec.sign(claims, settings.secret_key, timedelta(minutes=minutes), ACCESS_TOKEN_TYPE)
    logger.info(f"Created access token for account {claims.account_id} (ttl {minutes}m)")
    return token


def create_refresh_token(claims: TokenClaims, ttl: Optional[timedelta] = None) -> str:
    ttl = ttl if ttl is not None else timedelta(days=settings.refresh_token_expire_days)
    # Refresh tokens never carry profile ids; roles are re-read on every refresh
    refresh_claims = TokenClaims(account_id=claims.account_id, roles=claims.roles)
    token = codec.sign(refresh_claims, settings.refresh_secret_key, ttl, REFRESH_TOKEN_TYPE)
    logger.info(f"Created refresh token for account {claims.account_id}")
    return token


def decode_access_token(token: str) -> TokenClaims:
    return codec.verify(token, settings.secret_key, ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str) -> TokenClaims:
    return codec.verify(token, settings.refresh_secret_key, REFRESH_TOKEN_TYPE)
