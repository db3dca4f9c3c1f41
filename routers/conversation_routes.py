import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pymongo import ReturnDocument

from auth import CurrentUser, get_current_user
from models.conversation_model import OpenConversationRequest, SendMessageRequest
from models.user_model import Role
from mongo import get_db, serialize, utcnow
from realtime import conversations_topic, hub, messages_topic

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["messages"])


def conversation_key(patient_id: str, doctor_id: str) -> str:
    return f"conv-{patient_id}-{doctor_id}"


def counterpart_role(role: Role) -> Role:
    return Role.DOCTOR if role == Role.PATIENT else Role.PATIENT


def conversation_view(conversation: dict, user: CurrentUser) -> dict:
    """A conversation as seen by one participant."""
    view = serialize(conversation)
    view["lastMessageText"] = conversation.get("lastMessageText") or ""
    view["unread"] = (conversation.get("unread") or {}).get(user.role.value, 0)
    other = counterpart_role(user.role).value
    view["counterpartId"] = conversation[f"{other}Id"]
    view["counterpartName"] = conversation.get(f"{other}Name") or other.capitalize()
    return view


def conversations_for(db, user: CurrentUser, search: Optional[str] = None):
    field = f"{user.role.value}Id"
    cursor = db.conversations.find({field: user.uid}).sort("updatedAt", -1)
    views = [conversation_view(conversation, user) for conversation in cursor]
    if search and search.strip():
        term = search.strip().lower()
        views = [view for view in views if term in view["counterpartName"].lower()]
    return views


def messages_for(db, conversation_id: str):
    cursor = db.messages.find({"conversationId": conversation_id}).sort([("createdAt", 1), ("_id", 1)])
    return [serialize(message) for message in cursor]


def load_conversation(db, conversation_id: str, user: CurrentUser) -> dict:
    conversation = db.conversations.find_one({"_id": conversation_id})
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if user.uid not in (conversation["patientId"], conversation["doctorId"]):
        raise HTTPException(status_code=403, detail="You are not part of this conversation")
    return conversation


def publish_conversation(conversation: dict):
    hub.publish(
        conversations_topic(Role.PATIENT, conversation["patientId"]),
        conversations_topic(Role.DOCTOR, conversation["doctorId"]),
    )


@router.get("", operation_id="list_conversations")
def list_conversations(
    search: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    conversations = conversations_for(db, user, search)
    return {"count": len(conversations), "conversations": conversations}


@router.post("", operation_id="open_conversation")
def open_conversation(
    data: OpenConversationRequest,
    user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    other_role = counterpart_role(user.role)
    counterpart = db.users.find_one({"_id": data.counterpartId})
    if not counterpart:
        raise HTTPException(status_code=404, detail="User not found")
    if counterpart.get("role") != other_role.value:
        raise HTTPException(status_code=400, detail="Conversations are between a patient and a doctor")

    if user.role == Role.PATIENT:
        patient, doctor = db.users.find_one({"_id": user.uid}), counterpart
    else:
        patient, doctor = counterpart, db.users.find_one({"_id": user.uid})

    now = utcnow()
    # One thread per pair: both participants opening at once upsert the same key
    conversation = db.conversations.find_one_and_update(
        {"_id": conversation_key(patient["_id"], doctor["_id"])},
        {"$setOnInsert": {
            "patientId": patient["_id"],
            "doctorId": doctor["_id"],
            "patientName": patient.get("name", ""),
            "doctorName": doctor.get("name", ""),
            "lastMessageText": "",
            "unread": {Role.PATIENT.value: 0, Role.DOCTOR.value: 0},
            "createdAt": now,
            "updatedAt": now,
        }},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    publish_conversation(conversation)
    return {"conversation": conversation_view(conversation, user)}


@router.get("/{conversation_id}/messages", operation_id="list_messages")
def list_messages(conversation_id: str, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    load_conversation(db, conversation_id, user)
    messages = messages_for(db, conversation_id)
    return {"count": len(messages), "messages": messages}


@router.post("/{conversation_id}/messages", status_code=201, operation_id="send_message")
def send_message(
    conversation_id: str,
    data: SendMessageRequest,
    user: CurrentUser = Depends(get_current_user),
    db=Depends(get_db),
):
    text = data.text.strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message text is required")
    conversation = load_conversation(db, conversation_id, user)

    try:
        now = utcnow()
        message = {
            "conversationId": conversation_id,
            "senderId": user.uid,
            "senderRole": user.role.value,
            "senderName": user.name or user.role.value.capitalize(),
            "text": text,
            "createdAt": now,
        }
        db.messages.insert_one(message)
        db.conversations.update_one(
            {"_id": conversation_id},
            {
                "$set": {"lastMessageText": text, "updatedAt": now},
                "$inc": {f"unread.{counterpart_role(user.role).value}": 1},
            },
        )
    except Exception as e:
        logging.error(f"Error in send_message: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")

    hub.publish(messages_topic(conversation_id))
    publish_conversation(conversation)
    return {"message": serialize(message)}


@router.post("/{conversation_id}/read", operation_id="mark_conversation_read")
def mark_read(conversation_id: str, user: CurrentUser = Depends(get_current_user), db=Depends(get_db)):
    load_conversation(db, conversation_id, user)
    db.conversations.update_one({"_id": conversation_id}, {"$set": {f"unread.{user.role.value}": 0}})
    hub.publish(conversations_topic(user.role, user.uid))
    return {"conversationId": conversation_id, "unread": 0}
