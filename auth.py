import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from config import ACCESS_TOKEN_EXPIRE_MINUTES, BCRYPT_ROUNDS, JWT_ALGORITHM, JWT_SECRET_KEY
from models.user_model import MAX_PASSWORD_BYTES, Role
from mongo import get_db

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class AuthError(Exception):
    pass


class CurrentUser(BaseModel):
    uid: str
    email: str
    name: str
    role: Optional[Role] = None
    profile: Optional[Dict[str, Any]] = None
    token_id: str
    token_expires: datetime


def new_uid() -> str:
    return uuid.uuid4().hex


def hash_password(password: str) -> str:
    password_bytes = password.encode("utf-8")
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password_bytes, salt).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    password_bytes = password.encode("utf-8")
    # Signup never stores a longer password, so it cannot match
    if len(password_bytes) > MAX_PASSWORD_BYTES:
        return False
    return bcrypt.checkpw(password_bytes, hashed_password.encode("utf-8"))


def create_access_token(uid: str, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": uid, "jti": uuid.uuid4().hex, "iat": now, "exp": expire}
    return jwt.encode(claims, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    try:
        claims = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        raise AuthError(f"Invalid token: {e}")
    if not claims.get("sub") or not claims.get("jti"):
        raise AuthError("Invalid token: missing claims")
    return claims


def resolve_token(token: str, db) -> CurrentUser:
    """
    Map a bearer token to the signed-in identity and its profile.

    The profile is ``None`` when the identity exists but its profile
    document does not (e.g. it was removed after signup).
    """
    claims = decode_access_token(token)
    if db.revoked_tokens.find_one({"_id": claims["jti"]}):
        raise AuthError("Token has been revoked")

    identity = db.identities.find_one({"_id": claims["sub"]})
    if not identity:
        raise AuthError("Unknown user")

    profile = db.users.find_one({"_id": identity["_id"]}, {"_id": 0})
    role = None
    if profile and profile.get("role") in (Role.PATIENT.value, Role.DOCTOR.value):
        role = Role(profile["role"])

    return CurrentUser(
        uid=identity["_id"],
        email=identity["email"],
        name=(profile or {}).get("name") or identity.get("displayName", ""),
        role=role,
        profile=profile,
        token_id=claims["jti"],
        token_expires=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
    )


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db=Depends(get_db),
) -> CurrentUser:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        return resolve_token(credentials.credentials, db)
    except AuthError as e:
        logger.info(f"Rejected token: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate credentials")


def get_optional_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db=Depends(get_db),
) -> Optional[CurrentUser]:
    if credentials is None:
        return None
    try:
        return resolve_token(credentials.credentials, db)
    except AuthError:
        return None


def get_current_user(identity: CurrentUser = Depends(get_current_identity)) -> CurrentUser:
    if identity.role is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Profile not found")
    return identity


def require_role(role: Role):
    def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role != role:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Only a {role.value} can do this",
            )
        return user

    return dependency
