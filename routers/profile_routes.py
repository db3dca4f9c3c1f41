import re
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from auth import CurrentUser, get_current_user
from lifecycle import AVAILABLE_SLOTS, OPEN_STATUSES
from models.user_model import DoctorProfileUpdate, PatientProfileUpdate, Role
from mongo import get_db, serialize
from navigation import initials

logger = logging.getLogger(__name__)

router = APIRouter(tags=["profiles"])


def parse_age(value):
    if value is None or value == "":
        return None
    try:
        age = int(str(value).strip())
    except ValueError:
        raise HTTPException(status_code=400, detail="Please enter a valid number for age.")
    if age < 0:
        raise HTTPException(status_code=400, detail="Please enter a valid number for age.")
    return age


@router.get("/profile", operation_id="get_profile")
def get_profile(user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    return {"profile": serialize(db.users.find_one({"_id": user.uid}))}


@router.put("/profile/doctor", operation_id="update_doctor_profile")
def update_doctor_profile(
    data: DoctorProfileUpdate,
    user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    if user.role != Role.DOCTOR:
        raise HTTPException(status_code=403, detail="Only a doctor can do this")
    changes = data.model_dump(exclude_unset=True)
    for field in ("specialization", "clinicAddress"):
        if field in changes:
            changes[field] = (changes[field] or "").strip()
            if not changes[field]:
                raise HTTPException(
                    status_code=400,
                    detail="Specialization and Clinic Address are required for doctors.",
                )
    if "availableHours" in changes and changes["availableHours"] is None:
        changes["availableHours"] = {}
    return _update_profile(db, user, changes)


@router.put("/profile/patient", operation_id="update_patient_profile")
def update_patient_profile(
    data: PatientProfileUpdate,
    user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    if user.role != Role.PATIENT:
        raise HTTPException(status_code=403, detail="Only a patient can do this")
    changes = data.model_dump(exclude_unset=True)
    if "age" in changes:
        changes["age"] = parse_age(changes["age"])
    return _update_profile(db, user, changes)


def _update_profile(db, user: CurrentUser, changes: dict):
    if "name" in changes:
        changes["name"] = (changes["name"] or "").strip()
        if len(changes["name"]) < 2:
            raise HTTPException(status_code=400, detail="Name must be at least 2 characters.")
    if changes:
        db.users.update_one({"_id": user.uid}, {"$set": changes})
        if "name" in changes:
            db.identities.update_one({"_id": user.uid}, {"$set": {"displayName": changes["name"]}})
        logger.info(f"Profile updated for {user.uid}: {sorted(changes)}")
    return {
        "message": "Your profile has been successfully updated.",
        "profile": serialize(db.users.find_one({"_id": user.uid})),
    }


@router.get("/doctors", operation_id="list_doctors")
def list_doctors(search: Optional[str] = None, db=Depends(get_db)):
    query = {"role": Role.DOCTOR.value}
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"specialization": pattern}]

    doctors = []
    for doctor in db.users.find(query).sort("name", 1):
        doctors.append({
            "id": doctor["_id"],
            "name": doctor.get("name", ""),
            "initials": initials(doctor.get("name")),
            "specialization": doctor.get("specialization", ""),
            "clinicAddress": doctor.get("clinicAddress", ""),
        })
    return {"count": len(doctors), "doctors": doctors}


@router.get("/doctors/{doctor_id}/slots", operation_id="available_slots")
def available_slots(doctor_id: str, day: str = Query(alias="date"), db=Depends(get_db)):
    doctor = db.users.find_one({"_id": doctor_id, "role": Role.DOCTOR.value})
    if not doctor:
        raise HTTPException(status_code=404, detail="Doctor not found")
    try:
        requested = date.fromisoformat(day)
    except ValueError:
        raise HTTPException(status_code=400, detail="Please select a valid date (YYYY-MM-DD).")

    if requested < date.today():
        return {"doctorId": doctor_id, "date": day, "slots": []}

    taken = {
        apt["time"]
        for apt in db.appointments.find(
            {"doctorId": doctor_id, "date": day, "status": {"$in": OPEN_STATUSES}},
            {"time": 1},
        )
    }
    return {
        "doctorId": doctor_id,
        "date": day,
        "slots": [slot for slot in AVAILABLE_SLOTS if slot not in taken],
    }
