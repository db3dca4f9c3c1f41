import logging

from fastapi import APIRouter, Depends, HTTPException
from pymongo.errors import DuplicateKeyError

from auth import (
    CurrentUser,
    create_access_token,
    get_current_identity,
    hash_password,
    new_uid,
    verify_password,
)
from models.user_model import LoginRequest, Role, SignupRequest
from mongo import get_db, serialize, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def build_profile(uid: str, data: SignupRequest, email: str) -> dict:
    profile = {
        "_id": uid,
        "uid": uid,
        "name": data.name,
        "email": email,
        "role": data.role.value,
        "createdAt": utcnow(),
    }
    # Add role-specific fields
    if data.role == Role.DOCTOR:
        profile["specialization"] = data.specialization or ""
        profile["clinicAddress"] = data.clinicAddress or ""
        profile["availableHours"] = {}
    else:
        profile["age"] = None
        profile["contactInfo"] = ""
    return profile


def session_payload(user: CurrentUser) -> dict:
    return {
        "user": {"uid": user.uid, "email": user.email, "name": user.name},
        "role": user.role.value if user.role else None,
        "profile": serialize(user.profile),
    }


@router.post("/signup", status_code=201, operation_id="signup")
def signup(data: SignupRequest, db=Depends(get_db)):
    normalized_email = data.email.strip().lower()
    uid = new_uid()
    try:
        db.identities.insert_one({
            "_id": uid,
            "email": normalized_email,
            "displayName": data.name,
            "passwordHash": hash_password(data.password),
            "createdAt": utcnow(),
        })
    except DuplicateKeyError:
        raise HTTPException(
            status_code=409,
            detail="This email is already registered. Please login or use a different email.",
        )

    try:
        profile = build_profile(uid, data, normalized_email)
        db.users.insert_one(profile)
    except Exception as e:
        logging.error(f"Error creating profile for {uid}: {str(e)}")
        db.identities.delete_one({"_id": uid})
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")

    logger.info(f"New {data.role.value} signed up: {uid}")
    return {
        "message": "Your account has been created.",
        "access_token": create_access_token(uid),
        "token_type": "bearer",
        "profile": serialize(profile),
    }


@router.post("/login", operation_id="login")
def login(data: LoginRequest, db=Depends(get_db)):
    identity = db.identities.find_one({"email": data.email.strip().lower()})
    if not identity or not verify_password(data.password, identity["passwordHash"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    profile = db.users.find_one({"_id": identity["_id"]})
    return {
        "access_token": create_access_token(identity["_id"]),
        "token_type": "bearer",
        "profile": serialize(profile),
    }


@router.post("/logout", operation_id="logout")
def logout(user: CurrentUser = Depends(get_current_identity), db=Depends(get_db)):
    db.revoked_tokens.update_one(
        {"_id": user.token_id},
        {"$set": {"uid": user.uid, "expiresAt": user.token_expires.replace(tzinfo=None)}},
        upsert=True,
    )
    return {"message": "You have been successfully logged out."}


@router.get("/session", operation_id="get_session")
def get_session(user: CurrentUser = Depends(get_current_identity)):
    return session_payload(user)
