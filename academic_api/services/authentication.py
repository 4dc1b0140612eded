"""
Register / login / refresh over a request-scoped session.

The workflow keeps no state of its own: every call reads the current
accounts and roles from the store.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional
from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from ..core.auth import hash_password, check_password
from ..core.config import settings
from ..core.errors import (
    ConfigurationMissing, ConflictError, ForbiddenError, NotFoundError,
    UnauthorizedError, ValidationError,
)
from ..core.tokens import (
    TokenClaims, TokenError, create_access_token, create_refresh_token, decode_refresh_token,
)
from ..models.account import Account
from ..models.role import Role, RoleName, account_roles
from ..models.student import Student
from ..models.teacher import Teacher
import logging

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    access_token: str
    refresh_token: str
    account: Account
    roles: List[str]
    teacher: Optional[Teacher] = None
    student: Optional[Student] = None


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


async def load_roles(session: AsyncSession, account_id: int) -> List[str]:
    result = await session.execute(
        select(Role.name)
        .join(account_roles, Role.id == account_roles.c.role_id)
        .filter(account_roles.c.account_id == account_id)
        .order_by(Role.name)
    )
    return list(result.scalars().all())


async def find_teacher_profile(session: AsyncSession, account_id: int) -> Optional[Teacher]:
    result = await session.execute(select(Teacher).filter(Teacher.account_id == account_id))
    return result.scalar_one_or_none()


async def find_student_profile(session: AsyncSession, account_id: int) -> Optional[Student]:
    result = await session.execute(select(Student).filter(Student.account_id == account_id))
    return result.scalar_one_or_none()


class AuthenticationWorkflow:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_account(self, username: str, email: str, password: str, role: RoleName,
                             profile_factory: Optional[Callable[[Account], object]] = None,
                             sole_holder: bool = False) -> Account:
        """
        Insert account, role link and optional profile as one unit of work.

        Nothing is left behind when any step fails. With ``sole_holder`` the
        role row is locked and the insert is refused once any account holds it.
        """
        if _blank(username) or _blank(email) or _blank(password):
            raise ValidationError("All fields are required")

        db = self.session
        email = email.strip().lower()
        username = username.strip()

        try:
            role_query = select(Role).filter(Role.name == role.value)
            if sole_holder:
                role_query = role_query.with_for_update()
            role_result = await db.execute(role_query)
            db_role = role_result.scalar_one_or_none()
            if db_role is None:
                logger.error(f"Role '{role.value}' is not provisioned")
                raise ConfigurationMissing(f"Role {role.value} does not exist")

            if sole_holder:
                holder = await db.execute(
                    select(account_roles.c.account_id).filter(account_roles.c.role_id == db_role.id).limit(1)
                )
                if holder.first() is not None:
                    logger.warning(f"Refused second {role.value} account: {username}")
                    raise ConflictError(f"{role.value} already exists")

            existing = await db.execute(
                select(Account.id).filter(or_(Account.username == username, Account.email == email))
            )
            if existing.first() is not None:
                logger.warning(f"Duplicate username or email on account creation: {username}")
                raise ConflictError("Username or email already exists")

            hashed_password = await hash_password(password)

            account = Account(
                username=username,
                email=email,
                hashed_password=hashed_password,
                is_active=True
            )
            db.add(account)
            await db.flush()

            await db.execute(account_roles.insert().values(account_id=account.id, role_id=db_role.id))

            if profile_factory is not None:
                db.add(profile_factory(account))

            await db.commit()
            await db.refresh(account)
            logger.info(f"Created account {account.id} ({username}) with role {role.value}")
            return account

        except IntegrityError as e:
            await db.rollback()
            logger.warning(f"Integrity error creating account {username}: {e}")
            raise ConflictError("Username or email already exists")
        except Exception:
            await db.rollback()
            raise

    async def register(self, username: Optional[str], email: Optional[str],
                       password: Optional[str]) -> Account:
        return await self.create_account(
            username, email, password, RoleName.STUDENT,
            profile_factory=lambda account: Student(email=account.email, account_id=account.id),
        )

    async def login(self, username: str, password: str) -> LoginResult:
        db = self.session

        result = await db.execute(
            select(Account).filter(Account.username == username.strip(), Account.is_active.is_(True))
        )
        account = result.scalar_one_or_none()
        if account is None:
            logger.warning(f"Login for unknown or inactive user: {username}")
            raise NotFoundError("User not found or inactive")

        if not await check_password(password, account.hashed_password):
            logger.warning(f"Wrong password for user: {username}")
            raise UnauthorizedError("Incorrect password")

        roles = await load_roles(db, account.id)
        if not roles:
            logger.warning(f"Login refused, account {account.id} has no roles")
            raise ForbiddenError("User has no assigned roles")

        claims = TokenClaims(account_id=account.id, roles=roles)
        teacher = None
        student = None

        if RoleName.TEACHER.value in roles:
            teacher = await find_teacher_profile(db, account.id)
            if teacher is not None:
                claims.teacher_id = teacher.id

        if RoleName.STUDENT.value in roles:
            student = await find_student_profile(db, account.id)
            if student is not None:
                claims.student_id = student.id

        logger.info(f"Login successful for account {account.id} with roles {roles}")
        return LoginResult(
            access_token=create_access_token(claims),
            refresh_token=create_refresh_token(claims),
            account=account,
            roles=roles,
            teacher=teacher,
            student=student
        )

    async def refresh(self, refresh_token: Optional[str]) -> str:
        if _blank(refresh_token):
            raise UnauthorizedError("Refresh token required")

        try:
            claims = decode_refresh_token(refresh_token)
        except TokenError as e:
            logger.warning(f"Refresh token rejected: {e}")
            raise ForbiddenError("Invalid or expired refresh token")

        if claims.account_id is None:
            raise ForbiddenError("Invalid or expired refresh token")

        # Roles inside the refresh token may be stale
        roles = await load_roles(self.session, claims.account_id)
        if not roles:
            logger.warning(f"Refresh refused, account {claims.account_id} has no roles")
            raise ForbiddenError("User has no assigned roles")

        return create_access_token(
            TokenClaims(account_id=claims.account_id, roles=roles),
            expires_minutes=settings.refreshed_access_token_expire_minutes
        )

    async def admin_exists(self) -> bool:
        result = await self.session.execute(
            select(account_roles.c.account_id)
            .join(Role, Role.id == account_roles.c.role_id)
            .filter(Role.name == RoleName.ADMINISTRATOR.value)
            .limit(1)
        )
        return result.first() is not None
