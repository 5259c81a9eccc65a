from typing import Annotated, Optional
from fastapi import Depends, Request, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.auth.entity.entity import AuthContext
from app.auth.service.auth_service import AuthService


# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    """Get auth service from app state."""
    if not hasattr(request.app.state, "auth_service"):
        raise RuntimeError("Auth service not initialized. Ensure main.py startup wires app.state.*")
    return request.app.state.auth_service


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthContext:
    """
    Dependency to get the authenticated caller from the bearer token.

    Usage:
        @router.get("/protected")
        async def protected_route(current_user: CurrentUserDep):
            user_id = current_user.user_id
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    auth_service = get_auth_service(request)
    return await auth_service.verify_token(credentials.credentials)


async def get_optional_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[AuthContext]:
    """
    Dependency for routes that work with or without auth.
    Returns None if no token is provided or the token is invalid.
    """
    if not credentials:
        return None
    auth_service = get_auth_service(request)
    try:
        return await auth_service.verify_token(credentials.credentials)
    except HTTPException:
        return None


# Type aliases for cleaner dependency injection
CurrentUserDep = Annotated[AuthContext, Depends(get_current_user)]
OptionalCurrentUserDep = Annotated[Optional[AuthContext], Depends(get_optional_current_user)]
