from typing import Annotated
import logging

from fastapi import Cookie, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.core.security import subject_from_token
from giftcircle.db.session import get_db
from giftcircle.models.models import Profile
from giftcircle.services.profiles import ensure_profile


DbSessionDep = Annotated[AsyncSession, Depends(get_db)]
logger = logging.getLogger("giftcircle.auth")


def _token_from_request(request: Request, access_token: str | None) -> str | None:
    token = access_token
    if not token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    return token


async def get_current_user_id(
    request: Request,
    access_token: str | None = Cookie(default=None, alias="access_token"),
) -> str:
    token = _token_from_request(request, access_token)
    if not token:
        logger.info(
            "Auth token missing path=%s ip=%s",
            request.url.path,
            request.client.host if request.client else None,
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user_id = subject_from_token(token)
    if user_id is None:
        logger.info("Auth token invalid path=%s", request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user_id


async def get_optional_user_id(
    request: Request,
    access_token: str | None = Cookie(default=None, alias="access_token"),
) -> str | None:
    return subject_from_token(_token_from_request(request, access_token))


CurrentUserIdDep = Annotated[str, Depends(get_current_user_id)]
OptionalUserIdDep = Annotated[str | None, Depends(get_optional_user_id)]


async def get_current_profile(user_id: CurrentUserIdDep, db: DbSessionDep) -> Profile:
    """The caller's profile; created on the first authenticated request."""
    return await ensure_profile(db, user_id)


CurrentProfileDep = Annotated[Profile, Depends(get_current_profile)]
