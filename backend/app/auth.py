"""Authentication - email/password accounts and bearer tokens.

Passwords are stored as bcrypt hashes in the ``users`` collection; sessions
carry an HS256 token whose ``sub`` claim is the user id.

Routers depend on ``AuthorizedUser`` (any signed-in user) or ``AdminUser``.
Long-lived session objects use ``AuthClient`` to observe sign-in changes.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Annotated, Callable, Dict, List, Optional

import jwt
from fastapi import Depends, Header, HTTPException
from passlib.context import CryptContext
from pydantic import BaseModel

from app.libs.document_store import SERVER_TIMESTAMP, DocumentStore, get_document_store
from app.libs.settings import get_settings

logger = logging.getLogger("stylo.auth")

JWT_ALG = "HS256"
USERS_COLLECTION = "users"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class AuthError(Exception):
    """Raised for failed sign-in, sign-up or token checks"""
    def __init__(self, message: str, status_code: int = 401):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class User(BaseModel):
    """Signed-in user as seen by the API"""
    sub: str
    email: str
    display_name: Optional[str] = None
    is_admin: bool = False

    @property
    def name(self) -> str:
        return self.display_name or self.email


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=JWT_ALG)


def decode_access_token(token: str) -> str:
    """Return the user id carried by a token."""
    try:
        payload = jwt.decode(token, get_settings().jwt_secret, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthError("Could not validate credentials")
    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Invalid token")
    return user_id


def _user_from_document(user_id: str, data: Dict) -> User:
    return User(
        sub=user_id,
        email=data.get("email", ""),
        display_name=data.get("displayName"),
        is_admin=bool(data.get("isAdmin", False)),
    )


AuthListener = Callable[[Optional[User]], None]


class AuthClient:
    """
    Account operations plus auth-state notifications.

    Listeners receive the new ``User`` after sign-in/up and ``None`` after
    sign-out. ``on_auth_state_changed`` fires immediately with the current state.
    """

    def __init__(self, store: Optional[DocumentStore] = None):
        self.store = store or get_document_store()
        self.current_user: Optional[User] = None
        self._listeners: List[AuthListener] = []

    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self.current_user)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_user(self, user: Optional[User]) -> None:
        self.current_user = user
        for listener in list(self._listeners):
            listener(user)

    async def find_by_email(self, email: str) -> Optional[User]:
        results = await self.store.query(USERS_COLLECTION, where=[("email", "==", email.strip().lower())], limit=1)
        if not results:
            return None
        return _user_from_document(results[0].id, results[0].data)

    async def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> str:
        """
        Create an account and sign it in.

        Returns:
            Access token for the new user

        Raises:
            AuthError: If the email is already registered
        """
        email = email.strip().lower()
        existing = await self.store.query(USERS_COLLECTION, where=[("email", "==", email)], limit=1)
        if existing:
            raise AuthError("Email already registered", status_code=400)
        user_id = await self.store.add(USERS_COLLECTION, {
            "email": email,
            "displayName": display_name or email.split("@")[0],
            "passwordHash": hash_password(password),
            "isAdmin": False,
            "createdAt": SERVER_TIMESTAMP,
        })
        logger.info("Registered user %s", user_id)
        user = User(sub=user_id, email=email, display_name=display_name or email.split("@")[0])
        self._set_user(user)
        return create_access_token({"sub": user_id})

    async def sign_in(self, email: str, password: str) -> str:
        email = email.strip().lower()
        results = await self.store.query(USERS_COLLECTION, where=[("email", "==", email)], limit=1)
        if not results or not verify_password(password, results[0].data.get("passwordHash", "")):
            raise AuthError("Invalid credentials")
        self._set_user(_user_from_document(results[0].id, results[0].data))
        return create_access_token({"sub": results[0].id})

    async def verify_token(self, token: str) -> User:
        """Resolve a bearer token to its user, signing that user in."""
        user_id = decode_access_token(token)
        snapshot = await self.store.get(f"{USERS_COLLECTION}/{user_id}")
        if not snapshot.exists:
            self.sign_out()
            raise AuthError("User not found")
        user = _user_from_document(user_id, snapshot.data)
        if self.current_user != user:
            self._set_user(user)
        return user

    def sign_out(self) -> None:
        if self.current_user is not None:
            self._set_user(None)


# One client per signed-in user
_sessions: Dict[str, AuthClient] = {}


def get_auth_session(user_id: str) -> AuthClient:
    client = _sessions.get(user_id)
    if client is None:
        client = AuthClient()
        _sessions[user_id] = client
    return client


def end_auth_session(user_id: str) -> None:
    """Sign the user out, notifying every listener of that session."""
    client = _sessions.pop(user_id, None)
    if client is not None:
        client.sign_out()


# Dependencies

def get_bearer_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return authorization.split(" ", 1)[1]


async def get_current_user(token: str = Depends(get_bearer_token)) -> User:
    try:
        user_id = decode_access_token(token)
        return await get_auth_session(user_id).verify_token(token)
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


async def get_admin_user(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


AuthorizedUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(get_admin_user)]
