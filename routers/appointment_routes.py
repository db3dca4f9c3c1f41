import re
import uuid
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo.errors import DuplicateKeyError

from auth import CurrentUser, get_current_user, require_role
from lifecycle import (
    HISTORY_STATUSES,
    OPEN_STATUSES,
    ActionNotAllowed,
    InvalidTransition,
    SchedulingError,
    day_bounds,
    next_status,
    slot_key,
    validate_slot,
)
from models.appointment_model import (
    AppointmentStatus,
    BookAppointmentRequest,
    CompleteAppointmentRequest,
    RescheduleRequest,
)
from models.user_model import Role
from mongo import get_db, serialize, utcnow
from navigation import initials
from realtime import appointments_topic, hub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["appointments"])


def publish_appointment(appointment: dict):
    hub.publish(
        appointments_topic(Role.PATIENT, appointment["patientId"]),
        appointments_topic(Role.DOCTOR, appointment["doctorId"]),
    )


def appointments_for(db, user: CurrentUser):
    """Doctors see newest requests first, patients the most recent slot first."""
    if user.role == Role.DOCTOR:
        cursor = db.appointments.find({"doctorId": user.uid}).sort("createdAt", -1)
    else:
        cursor = db.appointments.find({"patientId": user.uid}).sort([("startsAt", -1), ("createdAt", -1)])
    return [serialize(apt) for apt in cursor]


def ensure_slot_free(db, doctor_id: str, day: str, time: str, exclude_id: Optional[str] = None):
    query = {"doctorId": doctor_id, "date": day, "time": time, "status": {"$in": OPEN_STATUSES}}
    if exclude_id:
        query["_id"] = {"$ne": exclude_id}
    if db.appointments.find_one(query):
        raise HTTPException(status_code=409, detail="No slot available")


def load_for_participant(db, appointment_id: str, user: CurrentUser) -> dict:
    appointment = db.appointments.find_one({"_id": appointment_id})
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    if user.uid not in (appointment["patientId"], appointment["doctorId"]):
        raise HTTPException(status_code=403, detail="You are not part of this appointment")
    return appointment


def transition(db, appointment: dict, action: str, user: CurrentUser, extra: Optional[dict] = None) -> dict:
    try:
        status = next_status(action, appointment["status"], user.role)
    except ActionNotAllowed as e:
        raise HTTPException(status_code=403, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))

    changes = {"status": status, "updatedAt": utcnow()}
    changes.update(extra or {})
    update = {"$set": changes}
    if status not in OPEN_STATUSES:
        update["$unset"] = {"slotKey": ""}
    # Guard against a concurrent change of status between read and write
    try:
        result = db.appointments.update_one(
            {"_id": appointment["_id"], "status": appointment["status"]},
            update,
        )
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="No slot available")
    if result.matched_count == 0:
        raise HTTPException(status_code=409, detail="Appointment was changed by someone else, please reload")

    appointment.update(changes)
    if status not in OPEN_STATUSES:
        appointment.pop("slotKey", None)
    publish_appointment(appointment)
    logger.info(f"Appointment {appointment['_id']} {action} by {user.role.value} {user.uid} -> {status}")
    return serialize(appointment)


@router.post("/appointments", status_code=201, operation_id="book_appointment")
def book_appointment(
    data: BookAppointmentRequest,
    user: CurrentUser = Depends(require_role(Role.PATIENT)),
    db=Depends(get_db),
):
    if not data.doctorId or not data.date or not data.time:
        raise HTTPException(status_code=400, detail="Please select a doctor, date, and time.")

    doctor = db.users.find_one({"_id": data.doctorId, "role": Role.DOCTOR.value})
    if not doctor:
        raise HTTPException(status_code=404, detail="Doctor not found")

    try:
        starts_at = validate_slot(data.date, data.time)
    except SchedulingError as e:
        raise HTTPException(status_code=400, detail=str(e))

    ensure_slot_free(db, data.doctorId, data.date, data.time)

    try:
        now = utcnow()
        appointment = {
            "_id": f"apt{uuid.uuid4().hex[:12]}",
            "patientId": user.uid,
            "patientName": user.name or "Patient",
            "doctorId": doctor["_id"],
            "doctorName": doctor.get("name", ""),
            "date": data.date,
            "time": data.time,
            "startsAt": starts_at,
            "reason": (data.reason or "").strip(),
            "status": AppointmentStatus.PENDING.value,
            "slotKey": slot_key(doctor["_id"], data.date, data.time),
            "notes": None,
            "createdAt": now,
            "updatedAt": now,
        }
        db.appointments.insert_one(appointment)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="No slot available")
    except Exception as e:
        logging.error(f"Error in book_appointment: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")

    publish_appointment(appointment)
    return {
        "message": f"Your appointment request for {data.date} at {data.time} with {appointment['doctorName']} has been sent.",
        "appointment": serialize(appointment),
    }


@router.get("/appointments", operation_id="list_appointments")
def list_appointments(user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    appointments = appointments_for(db, user)
    return {"count": len(appointments), "appointments": appointments}


@router.get("/appointments/requests", operation_id="list_requests")
def list_requests(user: CurrentUser = Depends(require_role(Role.DOCTOR)), db=Depends(get_db)):
    cursor = db.appointments.find(
        {"doctorId": user.uid, "status": AppointmentStatus.PENDING.value}
    ).sort("createdAt", -1)
    requests = [serialize(apt) for apt in cursor]
    return {"count": len(requests), "requests": requests}


@router.get("/appointments/schedule", operation_id="doctor_schedule")
def doctor_schedule(
    day: Optional[str] = Query(None, alias="date"),
    user: CurrentUser = Depends(require_role(Role.DOCTOR)),
    db=Depends(get_db),
):
    day = day or date.today().isoformat()
    try:
        start, end = day_bounds(day)
    except SchedulingError as e:
        raise HTTPException(status_code=400, detail=str(e))

    cursor = db.appointments.find({
        "doctorId": user.uid,
        "status": AppointmentStatus.CONFIRMED.value,
        "startsAt": {"$gte": start, "$lt": end},
    }).sort("startsAt", 1)
    appointments = [serialize(apt) for apt in cursor]
    return {"date": day, "count": len(appointments), "appointments": appointments}


@router.get("/appointments/history", operation_id="appointment_history")
def appointment_history(
    search: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    if user.role == Role.PATIENT:
        history = appointments_for(db, user)
        return {"count": len(history), "history": history}

    query = {"doctorId": user.uid, "status": {"$in": HISTORY_STATUSES}}
    if search and search.strip():
        query["patientName"] = {"$regex": "^" + re.escape(search.strip()), "$options": "i"}
    cursor = db.appointments.find(query).sort("startsAt", -1)
    history = [serialize(apt) for apt in cursor]
    return {"count": len(history), "history": history}


@router.get("/patients", operation_id="list_patients")
def list_patients(
    search: Optional[str] = None,
    user: CurrentUser = Depends(require_role(Role.DOCTOR)),
    db=Depends(get_db),
):
    today = date.today().isoformat()
    patients = {}
    for apt in db.appointments.find({"doctorId": user.uid}).sort("startsAt", 1):
        entry = patients.setdefault(apt["patientId"], {
            "id": apt["patientId"],
            "name": apt.get("patientName", ""),
            "initials": initials(apt.get("patientName")),
            "lastAppointment": None,
            "nextAppointment": None,
        })
        # Sorted ascending: later matches overwrite "last", first match wins "next"
        if apt["date"] <= today and apt["status"] != AppointmentStatus.REJECTED.value:
            entry["lastAppointment"] = apt["date"]
        if apt["date"] >= today and apt["status"] in OPEN_STATUSES and entry["nextAppointment"] is None:
            entry["nextAppointment"] = apt["date"]

    result = sorted(patients.values(), key=lambda p: p["name"].lower())
    if search:
        result = [p for p in result if search.strip().lower() in p["name"].lower()]
    return {"count": len(result), "patients": result}


@router.post("/appointments/{appointment_id}/approve", operation_id="approve_appointment")
def approve_appointment(appointment_id: str, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    appointment = load_for_participant(db, appointment_id, user)
    return {
        "message": f"Appointment confirmed for {appointment['patientName']}.",
        "appointment": transition(db, appointment, "approve", user),
    }


@router.post("/appointments/{appointment_id}/reject", operation_id="reject_appointment")
def reject_appointment(appointment_id: str, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    appointment = load_for_participant(db, appointment_id, user)
    return {
        "message": "Appointment request rejected.",
        "appointment": transition(db, appointment, "reject", user),
    }


@router.post("/appointments/{appointment_id}/cancel", operation_id="cancel_appointment")
def cancel_appointment(appointment_id: str, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    appointment = load_for_participant(db, appointment_id, user)
    return {
        "message": "Appointment canceled.",
        "appointment": transition(db, appointment, "cancel", user),
    }


@router.post("/appointments/{appointment_id}/complete", operation_id="complete_appointment")
def complete_appointment(
    appointment_id: str,
    data: Optional[CompleteAppointmentRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    appointment = load_for_participant(db, appointment_id, user)
    notes = (data.notes or "").strip() if data else ""
    return {
        "message": "Appointment marked as completed.",
        "appointment": transition(db, appointment, "complete", user, {"notes": notes or None}),
    }


@router.post("/appointments/{appointment_id}/reschedule", operation_id="reschedule_appointment")
def reschedule_appointment(
    appointment_id: str,
    data: RescheduleRequest,
    user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    appointment = load_for_participant(db, appointment_id, user)
    try:
        starts_at = validate_slot(data.date, data.time)
    except SchedulingError as e:
        raise HTTPException(status_code=400, detail=str(e))
    ensure_slot_free(db, appointment["doctorId"], data.date, data.time, exclude_id=appointment_id)

    moved = transition(db, appointment, "reschedule", user, {
        "date": data.date,
        "time": data.time,
        "startsAt": starts_at,
        "slotKey": slot_key(appointment["doctorId"], data.date, data.time),
    })
    return {"message": f"Appointment moved to {data.date} at {data.time}.", "appointment": moved}


@router.delete("/appointments/{appointment_id}", operation_id="withdraw_appointment")
def withdraw_appointment(appointment_id: str, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    appointment = load_for_participant(db, appointment_id, user)
    try:
        next_status("withdraw", appointment["status"], user.role)
    except ActionNotAllowed as e:
        raise HTTPException(status_code=403, detail=str(e))
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))

    result = db.appointments.delete_one({"_id": appointment_id, "status": AppointmentStatus.PENDING.value})
    if result.deleted_count == 0:
        raise HTTPException(status_code=409, detail="Appointment was changed by someone else, please reload")
    publish_appointment(appointment)
    return {"message": "Appointment request withdrawn.", "id": appointment_id}


@router.get("/appointments/{appointment_id}", operation_id="get_appointment")
def get_appointment(appointment_id: str, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    return {"appointment": serialize(load_for_participant(db, appointment_id, user))}
