"""Caller checks for media endpoints.

Identity itself is established upstream; this module only decides whether a
bearer token may upload, delete or sign private keys.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.backend.src.core.config import get_settings

UPLOADER_ROLES = frozenset({"super_admin", "admin", "moderator"})
PRIVATE_READER_ROLES = UPLOADER_ROLES | {"school_admin"}

_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    id: str
    role: str


def get_optional_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(_scheme),
) -> Caller | None:
    """Return the caller for a valid service token, otherwise ``None``."""

    if credentials is None:
        return None
    expected = get_settings().upload_api_token
    if not expected or not secrets.compare_digest(credentials.credentials, expected):
        return None
    return Caller(id="service", role="admin")


def get_current_caller(caller: Caller | None = Depends(get_optional_caller)) -> Caller:
    if caller is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return caller


def require_uploader(caller: Caller = Depends(get_current_caller)) -> Caller:
    """Ensure the caller may upload or delete media."""

    if caller.role not in UPLOADER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Uploader role required",
        )
    return caller


def can_read_private(caller: Caller | None) -> bool:
    return caller is not None and caller.role in PRIVATE_READER_ROLES


__all__ = [
    "Caller",
    "can_read_private",
    "get_current_caller",
    "get_optional_caller",
    "require_uploader",
]
