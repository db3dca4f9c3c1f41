import uuid
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile

from auth import CurrentUser, get_current_user, require_role
from models.user_model import Role
from mongo import get_db, serialize, utcnow
from storage import EmptyRecordError, RecordFileStore, RecordTooLargeError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["records"])


def get_record_store(db=Depends(get_db)) -> RecordFileStore:
    return RecordFileStore(db)


def record_view(record: dict) -> dict:
    view = serialize(record)
    view.pop("fileId", None)
    view["url"] = f"/records/{record['_id']}/download"
    return view


def content_disposition(filename: str) -> str:
    # Header values are latin-1; non-ASCII names go in the RFC 5987 filename* parameter
    fallback = filename.encode("ascii", "replace").decode("ascii").replace("\\", "_").replace('"', "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def load_patient(db, patient_id: str) -> dict:
    patient = db.users.find_one({"_id": patient_id})
    if not patient or patient.get("role") != Role.PATIENT.value:
        raise HTTPException(status_code=404, detail="Patient not found")
    return patient


def ensure_treating_doctor(db, doctor_id: str, patient_id: str):
    if not db.appointments.find_one({"doctorId": doctor_id, "patientId": patient_id}):
        raise HTTPException(status_code=403, detail="You have no appointments with this patient")


def can_access(db, user: CurrentUser, record: dict) -> bool:
    if user.uid in (record["patientId"], record.get("uploadedBy")):
        return True
    if user.role == Role.DOCTOR:
        return db.appointments.find_one({"doctorId": user.uid, "patientId": record["patientId"]}) is not None
    return False


@router.post("/records", status_code=201, operation_id="upload_record")
def upload_record(
    file: UploadFile = File(...),
    type: Optional[str] = Form(None),
    patientId: Optional[str] = Form(None),
    user: CurrentUser = Depends(get_current_user),
    store: RecordFileStore = Depends(get_record_store),
    db=Depends(get_db),
):
    if user.role == Role.PATIENT:
        if patientId and patientId != user.uid:
            raise HTTPException(status_code=403, detail="Patients can only upload their own records")
        patient_id = user.uid
    else:
        if not patientId:
            raise HTTPException(status_code=400, detail="patientId is required")
        load_patient(db, patientId)
        ensure_treating_doctor(db, user.uid, patientId)
        patient_id = patientId

    try:
        data = store.read_upload(file.file)
    except EmptyRecordError:
        raise HTTPException(status_code=400, detail="Please select a file to upload.")
    except RecordTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))

    name = file.filename or "record"
    content_type = file.content_type or "application/octet-stream"
    file_id = None
    try:
        file_id = store.save(data, name, content_type)
        record = {
            "_id": f"rec{uuid.uuid4().hex[:12]}",
            "patientId": patient_id,
            "name": name,
            "type": (type or "").strip() or content_type,
            "contentType": content_type,
            "size": len(data),
            "uploadDate": utcnow(),
            "fileId": file_id,
            "uploadedBy": user.uid,
            "uploaderRole": user.role.value,
        }
        db.records.insert_one(record)
    except Exception as e:
        logging.error(f"Error in upload_record: {str(e)}")
        if file_id:
            store.delete(file_id)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")

    logger.info(f"Record {record['_id']} uploaded for patient {patient_id} by {user.uid}")
    return {"message": f"{name} has been uploaded.", "record": record_view(record)}


@router.get("/records", operation_id="list_my_records")
def list_my_records(user: CurrentUser = Depends(require_role(Role.PATIENT)), db=Depends(get_db)):
    records = [record_view(r) for r in db.records.find({"patientId": user.uid}).sort("uploadDate", -1)]
    return {"count": len(records), "records": records}


@router.get("/patients/{patient_id}/records", operation_id="list_patient_records")
def list_patient_records(
    patient_id: str,
    user: CurrentUser = Depends(require_role(Role.DOCTOR)),
    db=Depends(get_db),
):
    patient = load_patient(db, patient_id)
    ensure_treating_doctor(db, user.uid, patient_id)
    records = [record_view(r) for r in db.records.find({"patientId": patient_id}).sort("uploadDate", -1)]
    return {
        "patient": {"id": patient_id, "name": patient.get("name", "")},
        "count": len(records),
        "records": records,
    }


@router.get("/records/{record_id}/download", operation_id="download_record")
def download_record(
    record_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: RecordFileStore = Depends(get_record_store),
    db=Depends(get_db),
):
    record = db.records.find_one({"_id": record_id})
    if not record:
        raise HTTPException(status_code=404, detail="Record not found")
    if not can_access(db, user, record):
        raise HTTPException(status_code=403, detail="You cannot access this record")
    try:
        data, filename, content_type = store.open(record["fileId"])
    except FileNotFoundError:
        logger.warning(f"Record {record_id} has no stored file {record['fileId']}")
        raise HTTPException(status_code=404, detail="Record file is missing")
    return Response(
        content=data,
        media_type=content_type,
        headers={"Content-Disposition": content_disposition(filename)},
    )


@router.delete("/records/{record_id}", operation_id="delete_record")
def delete_record(
    record_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: RecordFileStore = Depends(get_record_store),
    db=Depends(get_db),
):
    record = db.records.find_one({"_id": record_id})
    if not record:
        raise HTTPException(status_code=404, detail="Record not found")
    if record.get("uploadedBy") != user.uid:
        raise HTTPException(status_code=403, detail="Only the uploader can delete this record")
    db.records.delete_one({"_id": record_id})
    store.delete(record["fileId"])
    return {"message": f"{record['name']} has been deleted.", "id": record_id}
