from typing import Optional

from fastapi import APIRouter, Depends

from auth import CurrentUser, get_current_user, get_optional_identity
from navigation import home_for, initials, menu_for

router = APIRouter(prefix="/navigation", tags=["navigation"])


@router.get("/home", operation_id="home_redirect")
def home_redirect(identity: Optional[CurrentUser] = Depends(get_optional_identity)):
    role = identity.role if identity else None
    return {"redirect": home_for(identity is not None, role)}


@router.get("/menu", operation_id="navigation_menu")
def navigation_menu(user: CurrentUser = Depends(get_current_user)):
    return {
        "user": {"name": user.name, "initials": initials(user.name), "role": user.role.value},
        "items": menu_for(user.role),
    }
