"""
Auth API: login, refresh (with rotation) and me, the endpoints the session client talks to.
Used for local development and end-to-end tests. Port 3001 to match the client's default base URL.
"""
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from auth_api.config import ACCESS_TOKEN_EXPIRES, API_PREFIX
from auth_api.tokens import issue_access_token, issue_refresh_token, rotate_refresh_token, verify_access_token
from auth_api.users import authenticate, get_user, seed_from_env

logger = logging.getLogger(__name__)
router = APIRouter(prefix=f"{API_PREFIX}/auth")
security = HTTPBearer(auto_error=False)


class LoginRequest(BaseModel):
    username: str
    password: str


class RefreshRequest(BaseModel):
    refreshToken: str | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Seed the optional dev user from env on startup."""
    seed_from_env()
    yield


@router.post("/login")
def login(body: LoginRequest):
    user = authenticate(body.username, body.password)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"error": "invalid_grant", "error_description": "Invalid username or password"},
        )
    logger.info("login ok: user_id=%s", user.id)
    return {
        "accessToken": issue_access_token(user.id),
        "refreshToken": issue_refresh_token(user.id),
        "expiresIn": ACCESS_TOKEN_EXPIRES,
        "user": user.public(),
    }


@router.post("/refresh")
def refresh(body: RefreshRequest):
    """Exchange a refresh token for a new pair. The presented refresh token is revoked (rotation)."""
    if not body.refreshToken:
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_request", "error_description": "Refresh token required"},
        )
    user_id, new_refresh_token = rotate_refresh_token(body.refreshToken)
    if get_user(user_id) is None:
        raise HTTPException(status_code=404, detail={"error": "not_found", "error_description": "User not found"})
    logger.info("refresh ok: user_id=%s (refresh token rotated)", user_id)
    return {
        "accessToken": issue_access_token(user_id),
        "refreshToken": new_refresh_token,
        "expiresIn": ACCESS_TOKEN_EXPIRES,
    }


def current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> int:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail={"error": "invalid_request", "error_description": "Authorization header missing"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return verify_access_token(credentials.credentials)


@router.get("/me")
def me(user_id: Annotated[int, Depends(current_user_id)]):
    user = get_user(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail={"error": "invalid_token", "error_description": "User not found"})
    return {"user": user.public()}


app = FastAPI(title="Auth API", version="0.1.0", lifespan=lifespan)
app.include_router(router, tags=["auth"])


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "auth_api"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "auth_api.main:app",
        host="127.0.0.1",
        port=3001,
        reload=True,
    )
