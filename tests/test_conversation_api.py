"""
API tests for conversations, messages and their live streams.
"""

import time

import pytest
from starlette.websockets import WebSocketDisconnect


@pytest.fixture
def conversation(client, patient, doctor):
    response = client.post("/conversations", json={"counterpartId": doctor["uid"]}, headers=patient["headers"])
    assert response.status_code == 200, response.text
    return response.json()["conversation"]


def send(client, conversation, user, text):
    return client.post(
        f"/conversations/{conversation['id']}/messages",
        json={"text": text},
        headers=user["headers"],
    )


class TestConversations:
    def test_open_from_either_side_is_the_same_thread(self, client, conversation, patient, doctor):
        again = client.post("/conversations", json={"counterpartId": patient["uid"]}, headers=doctor["headers"])
        view = again.json()["conversation"]

        assert view["id"] == conversation["id"]
        assert view["counterpartName"] == "Alice Smith"
        assert conversation["counterpartName"] == "Emily Carter"
        assert conversation["unread"] == 0

    def test_same_role_is_rejected(self, client, patient, register):
        other = register("patient")
        response = client.post("/conversations", json={"counterpartId": other["uid"]}, headers=patient["headers"])
        assert response.status_code == 400

    def test_unknown_counterpart(self, client, patient):
        response = client.post("/conversations", json={"counterpartId": "ghost"}, headers=patient["headers"])
        assert response.status_code == 404

    def test_list_newest_activity_first(self, client, patient, register):
        first = register("doctor", name="Adam First")
        second = register("doctor", name="Zed Second")
        conv_first = client.post("/conversations", json={"counterpartId": first["uid"]}, headers=patient["headers"])
        client.post("/conversations", json={"counterpartId": second["uid"]}, headers=patient["headers"])
        time.sleep(0.01)
        send(client, conv_first.json()["conversation"], patient, "Hello again")

        body = client.get("/conversations", headers=patient["headers"]).json()
        assert [c["counterpartName"] for c in body["conversations"]] == ["Adam First", "Zed Second"]
        assert body["conversations"][0]["lastMessageText"] == "Hello again"

        searched = client.get("/conversations?search=zed", headers=patient["headers"]).json()
        assert searched["count"] == 1


class TestMessages:
    def test_send_and_list(self, client, conversation, patient, doctor):
        response = send(client, conversation, patient, "  Hello doctor  ")
        assert response.status_code == 201
        message = response.json()["message"]
        assert message["text"] == "Hello doctor"
        assert message["senderRole"] == "patient"
        assert message["senderName"] == "Alice Smith"

        send(client, conversation, doctor, "Hello Alice")
        body = client.get(f"/conversations/{conversation['id']}/messages", headers=doctor["headers"]).json()
        assert [m["text"] for m in body["messages"]] == ["Hello doctor", "Hello Alice"]

    def test_empty_text(self, client, conversation, patient):
        response = send(client, conversation, patient, "   ")
        assert response.status_code == 400
        assert response.json()["detail"] == "Message text is required"

    def test_outsider_cannot_read_or_write(self, client, conversation, register):
        outsider = register("doctor")
        assert send(client, conversation, outsider, "hi").status_code == 403
        response = client.get(f"/conversations/{conversation['id']}/messages", headers=outsider["headers"])
        assert response.status_code == 403

    def test_unread_counts_and_mark_read(self, client, conversation, patient, doctor):
        send(client, conversation, patient, "One")
        send(client, conversation, patient, "Two")

        doctor_view = client.get("/conversations", headers=doctor["headers"]).json()["conversations"][0]
        patient_view = client.get("/conversations", headers=patient["headers"]).json()["conversations"][0]
        assert doctor_view["unread"] == 2
        assert patient_view["unread"] == 0

        response = client.post(f"/conversations/{conversation['id']}/read", headers=doctor["headers"])
        assert response.json()["unread"] == 0
        doctor_view = client.get("/conversations", headers=doctor["headers"]).json()["conversations"][0]
        assert doctor_view["unread"] == 0


class TestLiveStreams:
    def test_message_stream_pushes_new_messages(self, client, conversation, patient, doctor):
        url = f"/ws/conversations/{conversation['id']}/messages?token={doctor['token']}"
        with client.websocket_connect(url) as websocket:
            first = websocket.receive_json()
            assert first == {"conversationId": conversation["id"], "messages": []}

            send(client, conversation, patient, "Are you there?")
            update = websocket.receive_json()
            assert [m["text"] for m in update["messages"]] == ["Are you there?"]

    def test_conversation_stream_reflects_unread(self, client, conversation, patient, doctor):
        with client.websocket_connect(f"/ws/conversations?token={doctor['token']}") as websocket:
            assert websocket.receive_json()["conversations"][0]["unread"] == 0

            send(client, conversation, patient, "Ping")
            assert websocket.receive_json()["conversations"][0]["unread"] == 1

    def test_appointment_stream(self, client, book, patient, doctor, future_day):
        with client.websocket_connect(f"/ws/appointments?token={doctor['token']}") as websocket:
            assert websocket.receive_json() == {"appointments": []}

            book(patient, doctor, future_day)
            update = websocket.receive_json()
            assert update["appointments"][0]["status"] == "pending"

    def test_stream_requires_token(self, client, conversation):
        with client.websocket_connect(f"/ws/conversations/{conversation['id']}/messages") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc:
                websocket.receive_json()
        assert exc.value.code == 4401

    def test_outsider_stream_is_closed(self, client, conversation, register):
        outsider = register("doctor")
        url = f"/ws/conversations/{conversation['id']}/messages?token={outsider['token']}"
        with client.websocket_connect(url) as websocket:
            with pytest.raises(WebSocketDisconnect) as exc:
                websocket.receive_json()
        assert exc.value.code == 4403

    def test_failing_snapshot_closes_stream(self, client, conversation, doctor, monkeypatch):
        def unavailable(db, conversation_id):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr("routers.live_routes.messages_for", unavailable)
        url = f"/ws/conversations/{conversation['id']}/messages?token={doctor['token']}"
        with client.websocket_connect(url) as websocket:
            with pytest.raises(WebSocketDisconnect) as exc:
                websocket.receive_json()
        assert exc.value.code == 1011
