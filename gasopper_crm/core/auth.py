from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from gasopper_crm.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    role: str
    role_id: int
    jti: str | None = None


@dataclass
class IssuedToken:
    access_token: str
    token_id: str
    issued_at: datetime
    expires_at: datetime


def issue_token(
    *,
    user_id: int,
    role: str,
    role_id: int,
    email: str,
    name: str,
    employee_id: str,
) -> IssuedToken:
    settings = get_settings()
    issued_at = datetime.now(timezone.utc)
    expires_at = issued_at + timedelta(minutes=settings.jwt_expire_minutes)
    token_id = str(uuid.uuid4())
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "role": role,
        "role_id": role_id,
        "email": email,
        "name": name,
        "employee_id": employee_id,
        "jti": token_id,
        "iat": issued_at,
        "exp": expires_at,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return IssuedToken(access_token=token, token_id=token_id, issued_at=issued_at, expires_at=expires_at)


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""


async def get_current_user(request: Request) -> AuthUser:
    token = bearer_token(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing bearer token")

    try:
        payload = decode_token(token)
        subject = str(payload["sub"])
        role_id = int(payload["role_id"])
    except (JWTError, KeyError, TypeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token") from exc

    return AuthUser(sub=subject, role=str(payload.get("role", "")), role_id=role_id, jti=payload.get("jti"))
