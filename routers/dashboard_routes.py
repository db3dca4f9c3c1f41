from datetime import date, datetime

from fastapi import APIRouter, Depends

from auth import CurrentUser, get_current_user
from lifecycle import OPEN_STATUSES, day_bounds
from models.appointment_model import AppointmentStatus
from models.user_model import Role
from mongo import get_db, serialize

router = APIRouter(tags=["dashboard"])


def doctor_summary(db, user: CurrentUser) -> dict:
    start, end = day_bounds(date.today().isoformat())
    return {
        "todayAppointments": db.appointments.count_documents({
            "doctorId": user.uid,
            "status": AppointmentStatus.CONFIRMED.value,
            "startsAt": {"$gte": start, "$lt": end},
        }),
        "pendingRequests": db.appointments.count_documents({
            "doctorId": user.uid,
            "status": AppointmentStatus.PENDING.value,
        }),
        "conversations": db.conversations.count_documents({"doctorId": user.uid}),
        "patients": len(db.appointments.distinct("patientId", {"doctorId": user.uid})),
    }


def patient_summary(db, user: CurrentUser) -> dict:
    upcoming = db.appointments.find_one(
        {
            "patientId": user.uid,
            "status": {"$in": OPEN_STATUSES},
            "startsAt": {"$gte": datetime.combine(date.today(), datetime.min.time())},
        },
        sort=[("startsAt", 1)],
    )
    return {
        "nextAppointment": serialize(upcoming),
        "records": db.records.count_documents({"patientId": user.uid}),
        "unreadConversations": db.conversations.count_documents({
            "patientId": user.uid,
            "unread.patient": {"$gt": 0},
        }),
    }


@router.get("/dashboard", operation_id="get_dashboard")
def get_dashboard(user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    if user.role == Role.DOCTOR:
        summary = doctor_summary(db, user)
    else:
        summary = patient_summary(db, user)
    return {"role": user.role.value, "name": user.name, "summary": summary}
