import abc
import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any, NoReturn, Optional

from aiohttp import hdrs, web
from aiohttp_security import (
    AbstractAuthorizationPolicy,
    AbstractIdentityPolicy,
    check_authorized,
    check_permission,
)
from aiohttp_security import setup as setup_aiohttp_security
from neuro_logging import trace

from .config import TokenGrant
from .errors import UnauthorizedError
from .resolver import RootPath


logger = logging.getLogger(__name__)


class AuthPermission(str, Enum):
    SAFE_DRIVE_ACCESS = "SAFE_DRIVE_ACCESS"


ROOT_PERMISSIONS: Mapping[RootPath, Optional[AuthPermission]] = {
    RootPath.APP: None,
    RootPath.DRIVE: AuthPermission.SAFE_DRIVE_ACCESS,
}


class TokenValidator(abc.ABC):
    """Opaque bearer token validation."""

    @abc.abstractmethod
    async def validate(self, token: str) -> Optional[TokenGrant]:
        pass


class StaticTokenValidator(TokenValidator):
    def __init__(self, tokens: Mapping[str, TokenGrant]) -> None:
        self._tokens = dict(tokens)

    async def validate(self, token: str) -> Optional[TokenGrant]:
        return self._tokens.get(token)


class BearerIdentityPolicy(AbstractIdentityPolicy):
    """Treat the bearer token itself as the identity."""

    async def identify(self, request: web.Request) -> Optional[str]:
        header = request.headers.get(hdrs.AUTHORIZATION, "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer":
            return None
        return token.strip() or None

    async def remember(
        self,
        request: web.Request,
        response: web.StreamResponse,
        identity: str,
        **kwargs: Any,
    ) -> None:
        pass

    async def forget(self, request: web.Request, response: web.StreamResponse) -> None:
        pass


class TokenAuthorizationPolicy(AbstractAuthorizationPolicy):
    def __init__(self, validator: TokenValidator) -> None:
        self._validator = validator

    async def authorized_userid(self, identity: str) -> Optional[str]:
        grant = await self._validator.validate(identity)
        return grant.identity if grant else None

    async def permits(
        self, identity: Optional[str], permission: Any, context: Any = None
    ) -> bool:
        if identity is None:
            return False
        grant = await self._validator.validate(identity)
        if grant is None:
            return False
        return str(permission) in grant.permissions


def setup_security(app: web.Application, validator: TokenValidator) -> None:
    setup_aiohttp_security(
        app, BearerIdentityPolicy(), TokenAuthorizationPolicy(validator)
    )


class PermissionChecker:
    @trace
    async def authorize(self, request: web.Request) -> str:
        """Return the identity the request's bearer token was issued to."""
        try:
            return await check_authorized(request)
        except web.HTTPUnauthorized:
            self._raise_unauthorized()

    @trace
    async def check_root_access(self, request: web.Request, root: RootPath) -> None:
        permission = ROOT_PERMISSIONS[root]
        if permission is None:
            return
        logger.info("Checking %s for %s", permission.value, root.value)
        try:
            await check_permission(request, permission.value)
        except (web.HTTPUnauthorized, web.HTTPForbidden):
            self._raise_unauthorized()

    def _raise_unauthorized(self) -> NoReturn:
        raise UnauthorizedError()
