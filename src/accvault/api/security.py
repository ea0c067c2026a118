# accvault API Security - Bearer authentication and error mapping
#
# Route handlers are out of scope for this package; this module gives any
# FastAPI app the two pieces it needs to host the vault contract:
#
#   - A dependency that reads ``Authorization: Bearer <token>`` and resolves
#     it through AuthService (every request hits the database)
#   - Exception handlers that turn accvault errors into generic JSON
#     responses with a machine-readable ``kind``. Internal details are
#     logged, never returned.

import logging
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.responses import JSONResponse

from ..auth.service import AuthService, UserSummary, require_admin
from ..exceptions import AuthenticationError, ValidationError, VaultError

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "authentication": status.HTTP_401_UNAUTHORIZED,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "validation": status.HTTP_400_BAD_REQUEST,
    "integrity": 422,
    "vault_locked": status.HTTP_423_LOCKED,
}


async def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    """
    FastAPI dependency extracting the bearer token.

    Raises:
        AuthenticationError: Header missing or not a Bearer credential
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Unauthorized")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise AuthenticationError("Unauthorized")
    return token


def current_user_dependency(auth: AuthService) -> Callable[..., UserSummary]:
    """
    Build a dependency resolving the caller to a UserSummary.

    Usage in routes:
        current_user = current_user_dependency(auth_service)

        @app.get("/me")
        def me(user: UserSummary = Depends(current_user)):
            return user.to_dict()
    """
    def current_user(token: str = Depends(bearer_token)) -> UserSummary:
        return auth.authenticate(token)

    return current_user


def admin_user_dependency(auth: AuthService) -> Callable[..., UserSummary]:
    """Like current_user_dependency, but rejects non-admins with 403."""
    current_user = current_user_dependency(auth)

    def admin_user(user: UserSummary = Depends(current_user)) -> UserSummary:
        require_admin(user)
        return user

    return admin_user


async def vault_error_handler(request: Request, exc: VaultError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.info(
        "%s %s rejected: kind=%s status=%d",
        request.method, request.url.path, exc.kind, status_code,
    )
    body = {"error": exc.message, "kind": exc.kind}
    # Only validation problems are actionable by the caller
    if isinstance(exc, ValidationError) and exc.details is not None:
        body["details"] = exc.details
    return JSONResponse(status_code=status_code, content=body)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "kind": "internal"},
    )


def install_error_handlers(app: FastAPI) -> None:
    """Register accvault exception handlers on ``app``."""
    app.add_exception_handler(VaultError, vault_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
