"""
Security module for the avatar host service.

Provides the auth gate: a middleware placed ahead of routing that lets public
read paths through and requires 'Authorization: Bearer <token>' everywhere else.
"""

import logging
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .errors import (
    AuthError,
    InvalidCredential,
    MalformedCredential,
    MissingCredential,
    error_response,
)

logger = logging.getLogger("avatar_host.security")

BEARER_PREFIX = "Bearer "

# Public read access: avatar downloads and the stats page
PUBLIC_PREFIXES = ("/avatars/",)
PUBLIC_PATHS = frozenset({"/stats"})


def is_public_path(path: str) -> bool:
    """True if requests to this path skip credential checks."""
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


def check_credential(authorization: Optional[str], secret: str) -> None:
    """
    Validate an Authorization header against the shared secret.

    Args:
        authorization: raw header value, or None if the header is absent
        secret: configured bearer token

    Raises:
        MissingCredential: no header
        MalformedCredential: header is not a Bearer credential
        InvalidCredential: token does not match
    """
    if authorization is None:
        raise MissingCredential()
    if not authorization.startswith(BEARER_PREFIX):
        raise MalformedCredential()
    # Plain equality, not constant-time.
    if authorization[len(BEARER_PREFIX):] != secret:
        raise InvalidCredential()


class AuthGateMiddleware(BaseHTTPMiddleware):
    """
    Rejects non-public requests without a valid bearer token.

    Rejections are answered here with 401 and never reach a route handler.
    """

    def __init__(self, app, secret: str):
        super().__init__(app)
        self.secret = secret

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if is_public_path(path):
            return await call_next(request)

        try:
            check_credential(request.headers.get("Authorization"), self.secret)
        except AuthError as e:
            logger.info("Rejected %s %s: %s", request.method, path, e.detail)
            return error_response(e)

        return await call_next(request)
