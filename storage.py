import uuid
import logging

from bson import Binary

from config import MAX_RECORD_BYTES

logger = logging.getLogger(__name__)


class EmptyRecordError(ValueError):
    pass


class RecordTooLargeError(ValueError):
    pass


class RecordFileStore:
    """Keeps uploaded record bytes in the ``record_files`` collection."""

    def __init__(self, db, max_bytes: int = MAX_RECORD_BYTES):
        self.files = db["record_files"]
        self.max_bytes = max_bytes

    def read_upload(self, stream) -> bytes:
        raw = stream.read(self.max_bytes + 1)
        if not raw:
            raise EmptyRecordError("Empty file")
        if len(raw) > self.max_bytes:
            raise RecordTooLargeError(f"File exceeds {self.max_bytes} bytes")
        return raw

    def save(self, data: bytes, filename: str, content_type: str) -> str:
        file_id = f"file{uuid.uuid4().hex[:12]}"
        self.files.insert_one({
            "_id": file_id,
            "filename": filename,
            "contentType": content_type,
            "length": len(data),
            "data": Binary(data),
        })
        logger.info(f"Stored record file {file_id} ({len(data)} bytes)")
        return file_id

    def open(self, file_id: str):
        stored = self.files.find_one({"_id": file_id})
        if not stored:
            raise FileNotFoundError(file_id)
        return bytes(stored["data"]), stored["filename"], stored["contentType"]

    def delete(self, file_id: str):
        self.files.delete_one({"_id": file_id})
