import logging
import re

from fastapi import APIRouter, status
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from app.config import Settings
from app.models.user import User
from app.schemas.auth import (
    CredentialsRequest,
    AuthResponse,
    AuthStatusResponse,
    MessageResponse,
    UserInfo,
)
from app.core.security import hash_password_async, verify_password_async
from app.core.exceptions import (
    BadRequestException,
    UnauthorizedException,
    ForbiddenException,
    ConflictException,
)
from app.dependencies import AppSettings, ClientIP, DbSession, Session

router = APIRouter()
logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[a-z0-9_]+$")
INVALID_CREDENTIALS = "Invalid username or password"


def normalize_username(username: str) -> str:
    return username.strip().lower()


def validate_credentials(username: str, password: str, settings: Settings) -> None:
    """Raise 400 with a specific reason when username/password break the rules."""
    if len(username) < settings.username_min_length:
        raise BadRequestException(
            f"Username must be at least {settings.username_min_length} characters"
        )
    if len(username) > settings.username_max_length:
        raise BadRequestException(
            f"Username must be at most {settings.username_max_length} characters"
        )
    if not USERNAME_PATTERN.match(username):
        raise BadRequestException("Username can only contain letters, numbers, and underscores")
    if len(password) < settings.password_min_length:
        raise BadRequestException(
            f"Password must be at least {settings.password_min_length} characters"
        )
    if len(password) > settings.password_max_length:
        raise BadRequestException(
            f"Password must be at most {settings.password_max_length} characters"
        )


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new local account",
)
async def register(
    request: CredentialsRequest,
    db: DbSession,
    session: Session,
    settings: AppSettings,
    client_ip: ClientIP,
):
    """
    Register a new user account and sign it in.

    - **username**: 3-50 chars, letters, numbers and underscore (stored lowercase)
    - **password**: 8-128 characters

    At most `max_accounts_per_ip` accounts can be created from one address.
    """
    username = normalize_username(request.username)
    validate_credentials(username, request.password, settings)

    # Enforce the per-IP account cap
    result = await db.execute(
        select(func.count()).select_from(User).where(User.signup_ip == client_ip)
    )
    if (result.scalar() or 0) >= settings.max_accounts_per_ip:
        logger.warning("Signup rejected: account limit reached for address")
        raise ForbiddenException(
            "Too many accounts created from this network",
            code="IP_LIMIT_REACHED",
        )

    # Check if username already exists
    result = await db.execute(
        select(User).where(User.username == username)
    )
    if result.scalar_one_or_none():
        raise ConflictException("Username already taken", code="USERNAME_TAKEN")

    user = User(
        username=username,
        password_hash=await hash_password_async(request.password),
        signup_ip=client_ip,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictException("Username already taken", code="USERNAME_TAKEN")
    await db.refresh(user)

    session.login(user.id, user.username)
    logger.info(f"Registered user {user.id}")

    return AuthResponse(user=UserInfo(id=user.id, username=user.username))


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Sign in with username and password",
)
async def login(request: CredentialsRequest, db: DbSession, session: Session, settings: AppSettings):
    """
    Authenticate a local user.

    Unknown usernames and wrong passwords produce the same 401 so the
    endpoint cannot be used to probe which usernames exist.
    """
    username = normalize_username(request.username)

    user = None
    if username and len(request.password) <= settings.password_max_length:
        result = await db.execute(
            select(User).where(User.username == username)
        )
        user = result.scalar_one_or_none()

    password_ok = await verify_password_async(
        request.password,
        user.password_hash if user else None,
    )
    if not user or not password_ok:
        raise UnauthorizedException(INVALID_CREDENTIALS, code="INVALID_CREDENTIALS")

    session.login(user.id, user.username)
    logger.info(f"User {user.id} signed in")

    return AuthResponse(user=UserInfo(id=user.id, username=user.username))


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Sign out of the local account",
)
async def logout(session: Session):
    """Clear the local account from the session. A Spotify login stays."""
    session.logout()
    return MessageResponse()


@router.get(
    "/status",
    response_model=AuthStatusResponse,
    summary="Local sign-in status",
)
async def auth_status(session: Session):
    if not session.is_authenticated:
        return AuthStatusResponse(authenticated=False)
    return AuthStatusResponse(
        authenticated=True,
        user=UserInfo(id=session.user_id, username=session.username),
    )
