"""Auth API - account sign-up, sign-in and the current user."""

from fastapi import APIRouter, HTTPException

from app.auth import AuthClient, AuthError, AuthorizedUser, end_auth_session
from app.libs.editor_session import close_editor_context
from app.libs.models import LoginModel, SignupModel

router = APIRouter()


@router.post("/auth/signup")
async def signup(body: SignupModel):
    """Create an account and return its bearer token."""
    try:
        token = await AuthClient().sign_up(body.email, body.password, body.display_name)
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"access_token": token, "token_type": "bearer"}


@router.post("/auth/login")
async def login(body: LoginModel):
    try:
        token = await AuthClient().sign_in(body.email, body.password)
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"access_token": token, "token_type": "bearer"}


@router.get("/auth/me")
async def me(user: AuthorizedUser):
    return {
        "uid": user.sub,
        "email": user.email,
        "display_name": user.name,
        "is_admin": user.is_admin,
    }


@router.post("/auth/logout")
async def logout(user: AuthorizedUser):
    """Tokens are stateless; signing out ends the server-side sessions of the user."""
    end_auth_session(user.sub)
    close_editor_context(user.sub)
    return {"success": True}
