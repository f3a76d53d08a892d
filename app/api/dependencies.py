from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, WebSocket, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from app.core import messages as text
from app.core.security import user_id_from_token
from app.realtime import ChatStore, FetchError, RealtimeContext


logger = logging.getLogger("app.dependencies")

# Tokens are issued by the accounts service; tokenUrl only documents the flow
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


def get_current_user_id(token: Annotated[str, Depends(oauth2_scheme)]) -> str:
    try:
        return user_id_from_token(token)
    except JWTError as e:
        logger.debug("Rejected bearer token: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=text.AUTH_TOKEN_INVALID,
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_realtime(request: Request) -> RealtimeContext:
    return request.app.state.realtime


def get_realtime_ws(websocket: WebSocket) -> RealtimeContext:
    return websocket.app.state.realtime


def get_store(realtime: Annotated[RealtimeContext, Depends(get_realtime)]) -> ChatStore:
    return realtime.store


async def require_channel_member(
    channel_id: str,
    store: Annotated[ChatStore, Depends(get_store)],
    current_user_id: Annotated[str, Depends(get_current_user_id)],
) -> str:
    """Current user id, provided they belong to the ``channel_id`` path parameter."""
    try:
        is_member = await store.is_channel_member(channel_id, current_user_id)
    except FetchError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=text.CHAT_MEMBERSHIP_UNAVAILABLE,
        )
    if not is_member:
        logger.info(
            "Rejected non-member",
            extra={"channel_id": channel_id, "user_id": current_user_id},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=text.CHAT_NOT_CHANNEL_MEMBER,
        )
    return current_user_id
