from typing import List, NamedTuple, Optional, Tuple

from models.user_model import Role

BOTH = (Role.DOCTOR, Role.PATIENT)


class NavItem(NamedTuple):
    href: str
    label: str
    roles: Tuple[Role, ...]
    sub_items: Tuple["NavItem", ...] = ()


NAV_ITEMS = [
    NavItem("/dashboard", "Dashboard", BOTH),
    NavItem("/appointments", "Appointments", BOTH, (
        NavItem("/appointments/schedule", "Schedule", (Role.DOCTOR,)),
        NavItem("/appointments/requests", "Requests", (Role.DOCTOR,)),
        NavItem("/appointments/book", "Book", (Role.PATIENT,)),
        NavItem("/appointments/history", "History", BOTH),
    )),
    NavItem("/messages", "Messages", BOTH),
    NavItem("/records", "Medical Records", (Role.PATIENT,)),
    NavItem("/patients", "My Patients", (Role.DOCTOR,)),
]


def menu_for(role: Optional[Role]) -> List[dict]:
    """Menu entries visible to ``role``, hrefs prefixed with the role segment."""
    if role is None:
        return []

    def render(item: NavItem) -> dict:
        entry = {"href": f"/{role.value}{item.href}", "label": item.label}
        if item.sub_items:
            entry["subItems"] = [render(sub) for sub in item.sub_items if role in sub.roles]
        return entry

    return [render(item) for item in NAV_ITEMS if role in item.roles]


def home_for(signed_in: bool, role: Optional[Role]) -> str:
    if signed_in and role == Role.DOCTOR:
        return "/doctor/dashboard"
    if signed_in and role == Role.PATIENT:
        return "/patient/dashboard"
    return "/login"


def initials(name: Optional[str]) -> str:
    if not name or not name.strip():
        return "?"
    return "".join(part[0] for part in name.split()).upper()[:2]
