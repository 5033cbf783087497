import ipaddress
from typing import Optional

import structlog
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.exceptions import PermissionDenied, SessionError, SessionRevoked
from storefront.core.security import decode_token
from storefront.db.session import get_db
from storefront.models.token_blacklist import TokenBlacklist
from storefront.models.user import User
from storefront.utils.clock import utcnow

logger = structlog.get_logger()


def _is_token_revoked(db: Session, jti: Optional[str]) -> bool:
    if not jti:
        return True
    return (
        db.query(TokenBlacklist)
        .filter(
            TokenBlacklist.jti == jti,
            TokenBlacklist.expires_at > utcnow(),
        )
        .first()
        is not None
    )


def get_client_address(request: Request) -> Optional[str]:
    """Source address recorded in the activity log."""
    direct_ip = request.client.host if request.client else None
    if not settings.TRUST_PROXY_HEADERS:
        return direct_ip

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        for candidate in (ip.strip() for ip in forwarded_for.split(",")):
            try:
                ipaddress.ip_address(candidate)
                return candidate
            except ValueError:
                continue
    return direct_ip


def extract_token(request: Request) -> Optional[str]:
    token = request.cookies.get("access_token")
    if token:
        return token
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return None


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """Get current authenticated user from cookie or bearer token."""
    token = extract_token(request)
    if not token:
        raise SessionError()

    payload = decode_token(token)
    if payload.get("type") != "access":
        raise SessionError("Invalid token type")

    if _is_token_revoked(db, payload.get("jti")):
        raise SessionRevoked("Token has been revoked")

    user_id = payload.get("sub")
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise SessionError("Invalid authentication credentials") from None

    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise SessionError("Invalid authentication credentials")

    raw_session_version = payload.get("session_version", 0)
    try:
        token_session_version = int(raw_session_version)
    except (TypeError, ValueError):
        token_session_version = -1
    if token_session_version != user.session_version:
        raise SessionRevoked()

    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


def require_admin(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> User:
    action_name = f"{request.method} {request.url.path}"
    if not current_user.is_admin:
        logger.warning("admin_access_denied", action=action_name, user_id=current_user.id)
        raise PermissionDenied()

    logger.info(
        "admin_action",
        action=action_name,
        admin_user_id=current_user.id,
        client_ip=get_client_address(request),
    )
    return current_user
