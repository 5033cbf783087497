from datetime import datetime, timezone

import pydantic
from fastapi import APIRouter, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.api.deps import get_client_address, get_current_user
from storefront.core.config import settings
from storefront.core.exceptions import DuplicateAccount, InvalidCredentials, SessionError
from storefront.core.rate_limiter import limiter
from storefront.core.security import (
    create_access_token,
    decode_token,
    hash_password,
    verify_password,
)
from storefront.db.session import get_db
from storefront.middleware.csrf import CSRF_COOKIE_NAME, generate_csrf_token, set_csrf_cookie
from storefront.models.activity_log import ActivityType
from storefront.models.token_blacklist import TokenBlacklist
from storefront.models.user import User
from storefront.schemas.user import UserCreate, UserLogin, UserResponse
from storefront.services.activity_service import ActivityService
from storefront.utils.clock import utcnow
from storefront.utils.response import dump, success

router = APIRouter()


def _blacklist_token(db: Session, payload: dict, reason: str) -> None:
    jti = payload.get("jti")
    user_id = payload.get("sub")
    exp = payload.get("exp")
    if not jti or not user_id or not exp:
        return

    existing = db.query(TokenBlacklist).filter(TokenBlacklist.jti == jti).first()
    if existing:
        return

    db.add(
        TokenBlacklist(
            jti=jti,
            user_id=int(user_id),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc).replace(tzinfo=None),
            reason=reason,
        )
    )


def _should_use_secure_cookies(request: Request) -> bool:
    if settings.ENVIRONMENT != "production":
        return False
    return request.url.scheme == "https"


def _set_auth_cookie(
    response: JSONResponse,
    access_token: str,
    request: Request,
) -> None:
    secure = _should_use_secure_cookies(request)
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path="/",
    )


@router.get("/csrf-token")
def get_csrf_token():
    token = generate_csrf_token()
    response = JSONResponse(content=success(message="CSRF token set"))
    set_csrf_cookie(response, token)
    return response


@router.post(
    "/register",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Register user account",
    responses={
        201: {"description": "Registration successful"},
        409: {"description": "Username or email already registered"},
        422: {"description": "Validation error"},
    },
)
@limiter.limit("5/minute")
def register(request: Request, user_in: UserCreate, db: Session = Depends(get_db)):
    existing_user = (
        db.query(User)
        .filter((User.username == user_in.username) | (User.email == user_in.email))
        .first()
    )
    if existing_user:
        raise DuplicateAccount()

    user = User(
        username=user_in.username,
        email=user_in.email,
        password_hash=hash_password(user_in.password),
    )
    try:
        db.add(user)
        db.flush()
        ActivityService.record_for(
            db,
            user,
            ActivityType.REGISTER,
            {"email": user.email},
            get_client_address(request),
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateAccount() from None

    db.refresh(user)
    return success(data=dump(UserResponse, user), message="Registration successful")


@router.post(
    "/login",
    response_model=dict,
    summary="Login user",
    description="""
Authenticates a user and sets `access_token` as an httpOnly cookie.
Accepts either a JSON body or a form post.
""",
    responses={
        200: {"description": "Login successful"},
        401: {"description": "Invalid credentials"},
    },
)
@limiter.limit("5/minute")
async def login(request: Request, db: Session = Depends(get_db)):
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        payload = await request.json()
    else:
        form = await request.form()
        payload = dict(form)
    if not isinstance(payload, dict):
        payload = {}

    try:
        credentials = UserLogin(**payload)
    except pydantic.ValidationError as exc:
        raise RequestValidationError(exc.errors()) from None

    user = db.query(User).filter(User.username == credentials.username).first()

    if not user or not verify_password(credentials.password, user.password_hash):
        raise InvalidCredentials()

    if not user.is_active:
        raise InvalidCredentials("Account is inactive")

    # Rotate session version to invalidate all previously issued tokens.
    if settings.ENVIRONMENT == "production":
        user.session_version += 1
    user.last_login = utcnow()
    ActivityService.record_for(db, user, ActivityType.LOGIN, {}, get_client_address(request))
    db.commit()
    db.refresh(user)

    access_token = create_access_token(
        data={
            "sub": str(user.id),
            "role": user.role.value,
            "session_version": user.session_version,
        }
    )

    response = JSONResponse(
        content=success(
            data={
                "user": {
                    "id": user.id,
                    "username": user.username,
                    "role": user.role.value,
                },
                "access_token": access_token,
            },
            message="Login successful",
        )
    )
    _set_auth_cookie(response, access_token, request)
    return response


@router.post("/logout")
def logout(request: Request, db: Session = Depends(get_db)):
    tokens = [request.cookies.get("access_token")]
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        tokens.append(auth_header.split(" ", 1)[1])

    user = None
    for token in dict.fromkeys(tokens):
        if not token:
            continue
        try:
            payload = decode_token(token)
        except SessionError:
            # Expired or forged tokens need no revocation
            continue
        _blacklist_token(db, payload, reason="logout")
        if user is None and payload.get("type") == "access":
            user = db.query(User).filter(User.id == int(payload["sub"])).first()

    if user is not None:
        ActivityService.record_for(db, user, ActivityType.LOGOUT, {}, get_client_address(request))

    try:
        db.commit()
    except IntegrityError:
        db.rollback()

    response = JSONResponse(content=success(message="Logout successful"))
    secure = _should_use_secure_cookies(request)
    response.delete_cookie(key="access_token", path="/", samesite="lax", secure=secure)
    response.delete_cookie(key=CSRF_COOKIE_NAME, path="/", samesite="lax", secure=secure)
    return response


@router.get("/me", response_model=dict)
def read_me(current_user: User = Depends(get_current_user)):
    return success(data=dump(UserResponse, current_user))
