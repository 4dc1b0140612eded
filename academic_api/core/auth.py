from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from passlib.context import CryptContext
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool
from .config import settings
from .database import get_db
from .errors import BadRequestError, ForbiddenError, NotFoundError, UnauthorizedError
from .tokens import TokenError, decode_access_token
from ..models.account import Account
from ..models.role import RoleName
import logging

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)
security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


async def hash_password(password: str) -> str:
    return await run_in_threadpool(get_password_hash, password)


async def check_password(plain_password: str, hashed_password: str) -> bool:
    return await run_in_threadpool(verify_password, plain_password, hashed_password)


@dataclass
class Identity:
    account_id: Optional[int]
    roles: List[str] = field(default_factory=list)

    def has_role(self, role: RoleName) -> bool:
        return role.value in self.roles


def roles_permitted(required: Iterable[str], held: Optional[Iterable[str]]) -> bool:
    """True when the caller holds at least one of the required roles"""
    if not held:
        return False
    held_set = set(held)
    return any(role in held_set for role in required)


async def get_current_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Identity:
    if credentials is None or not credentials.credentials:
        logger.warning(f"Missing bearer token on {request.url.path}")
        raise UnauthorizedError("Token not provided")

    try:
        claims = decode_access_token(credentials.credentials)
    except TokenError as e:
        logger.warning(f"Access token rejected on {request.url.path}: {e}")
        raise UnauthorizedError("Invalid token")

    identity = Identity(account_id=claims.account_id, roles=list(claims.roles or []))
    request.state.identity = identity
    return identity


async def require_active_account(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    if identity.account_id is None:
        raise BadRequestError("Token does not identify an account")

    result = await db.execute(select(Account.is_active).filter(Account.id == identity.account_id))
    row = result.first()

    if row is None:
        logger.warning(f"Token for unknown account {identity.account_id}")
        raise NotFoundError("Account not found")

    if not row.is_active:
        logger.warning(f"Inactive account {identity.account_id} denied")
        raise ForbiddenError("Account is disabled")

    return identity


def require_roles(*allowed: RoleName):
    """Build a dependency admitting active accounts holding any of ``allowed``"""
    required = [role.value for role in allowed]

    async def role_gate(identity: Identity = Depends(require_active_account)) -> Identity:
        if not roles_permitted(required, identity.roles):
            logger.warning(
                f"Access denied for account {identity.account_id}: roles {identity.roles}, "
                f"required one of {required}"
            )
            raise ForbiddenError("Access denied")
        return identity

    return role_gate


require_admin = require_roles(RoleName.ADMINISTRATOR)
require_teacher = require_roles(RoleName.TEACHER)
require_student = require_roles(RoleName.STUDENT)
require_grader = require_roles(RoleName.ADMINISTRATOR, RoleName.TEACHER)
