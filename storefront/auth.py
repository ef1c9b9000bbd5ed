"""
Storefront - 認証

Bearer トークンの検証は外部の認証サービスに委譲する。
認証サービスは {"userId": ..., "roles": [...]} を返し、
管理者かどうかは roles の "admin" クレームだけで判定する。
"""

import logging

import httpx
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import config
from .errors import AuthenticationError, PermissionDeniedError
from .models import Principal

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class AuthClient:
    def __init__(
        self,
        base_url: str = config.AUTH_SERVICE_URL,
        timeout: float = config.AUTH_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def verify(self, token: str) -> Principal:
        """トークンを検証してプリンシパルを返す。"""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(
                    f"{self.base_url}/verify",
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            logger.error("Auth service unreachable: %s", e)
            raise AuthenticationError("Authentication service unavailable") from e

        if resp.status_code in (401, 403):
            raise AuthenticationError("Invalid token")
        if resp.status_code >= 400:
            logger.error("Auth service returned %s", resp.status_code)
            raise AuthenticationError("Authentication service unavailable")

        try:
            data = resp.json()
        except ValueError as e:
            logger.error("Auth service returned a non-JSON body")
            raise AuthenticationError("Authentication service unavailable") from e
        if not isinstance(data, dict):
            logger.error("Auth service returned an unexpected body")
            raise AuthenticationError("Authentication service unavailable")
        if not data.get("userId"):
            raise AuthenticationError("Invalid token")
        roles = data.get("roles") or []
        if not isinstance(roles, list):
            roles = []
        return Principal(user_id=str(data["userId"]), roles=[str(r) for r in roles])


async def get_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    """FastAPI 依存関係: リクエストのプリンシパルを解決する。"""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    auth_client: AuthClient = request.app.state.auth_client
    try:
        return await auth_client.verify(credentials.credentials)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e


def ensure_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise PermissionDeniedError(f"User {principal.user_id} lacks the admin role")


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    try:
        ensure_admin(principal)
    except PermissionDeniedError as e:
        logger.warning("%s", e)
        raise HTTPException(status_code=403, detail="Forbidden") from e
    return principal
