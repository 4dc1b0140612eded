from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from pydantic import BaseModel, EmailStr
from typing import List, Optional
from ..core.database import get_db
from ..core.auth import Identity, require_active_account
from ..core.errors import InternalError, NotFoundError
from ..models.account import Account
from ..models.role import RoleName
from ..services.authentication import AuthenticationWorkflow, load_roles
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


class RegisterRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None


class RegisterAdminRequest(BaseModel):
    username: str
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    username: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class AccountSummary(BaseModel):
    id: int
    username: str
    email: str
    roles: List[str]


class TeacherProfile(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str

    class Config:
        from_attributes = True


class StudentProfile(BaseModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: str

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    message: str
    access_token: str
    refresh_token: str
    token_type: str
    account: AccountSummary
    teacher: Optional[TeacherProfile] = None
    student: Optional[StudentProfile] = None


class RefreshResponse(BaseModel):
    access_token: str
    token_type: str


class MessageResponse(BaseModel):
    message: str


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """
    Register a new account as Student. No token is issued; log in afterwards.
    """
    try:
        logger.info(f"Registration attempt for username: {request.username}")
        await AuthenticationWorkflow(db).register(request.username, request.email, request.password)
        return MessageResponse(message="Registration successful as Student")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Registration error for {request.username}: {e}")
        raise InternalError("Registration failed")


@router.post("/login", response_model=LoginResponse)
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    """
    Authenticate an account and return access and refresh tokens
    """
    try:
        logger.info(f"Login attempt for username: {request.username}")
        result = await AuthenticationWorkflow(db).login(request.username, request.password)

        return LoginResponse(
            message="Login successful",
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            token_type="bearer",
            account=AccountSummary(
                id=result.account.id,
                username=result.account.username,
                email=result.account.email,
                roles=result.roles
            ),
            teacher=TeacherProfile.model_validate(result.teacher) if result.teacher else None,
            student=StudentProfile.model_validate(result.student) if result.student else None
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Login error for {request.username}: {e}")
        raise InternalError("Authentication failed")


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_token(request: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """
    Exchange a refresh token for a new short-lived access token
    """
    try:
        access_token = await AuthenticationWorkflow(db).refresh(request.refresh_token)
        return RefreshResponse(access_token=access_token, token_type="bearer")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Refresh token error: {e}")
        raise InternalError("Could not refresh token")


@router.post("/register-admin", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def register_admin(request: RegisterAdminRequest, db: AsyncSession = Depends(get_db)):
    """
    Register the first administrator (only if no administrator exists)
    """
    try:
        logger.info(f"Admin registration attempt for username: {request.username}")
        await AuthenticationWorkflow(db).create_account(
            request.username, request.email, request.password, RoleName.ADMINISTRATOR, sole_holder=True
        )
        return MessageResponse(message="Administrator registered successfully")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Admin registration error for {request.username}: {e}")
        await db.rollback()
        raise InternalError("Registration failed")


@router.get("/check-admin-exists")
async def check_admin_exists(db: AsyncSession = Depends(get_db)):
    """
    Check if any administrator exists in the system
    """
    try:
        return {"admin_exists": await AuthenticationWorkflow(db).admin_exists()}
    except Exception as e:
        logger.error(f"Error checking admin existence: {e}")
        raise InternalError("Could not check admin status")


@router.post("/logout", response_model=MessageResponse)
async def logout():
    """
    Logout endpoint (client-side token removal)
    """
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=AccountSummary)
async def get_current_account(identity: Identity = Depends(require_active_account),
                              db: AsyncSession = Depends(get_db)):
    """
    Get the caller's account, with roles read from the store
    """
    try:
        result = await db.execute(select(Account).filter(Account.id == identity.account_id))
        account = result.scalar_one_or_none()
        if not account:
            raise NotFoundError("Account not found")

        return AccountSummary(
            id=account.id,
            username=account.username,
            email=account.email,
            roles=await load_roles(db, account.id)
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting current account: {e}")
        raise InternalError("Could not get account information")
