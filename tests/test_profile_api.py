"""
API tests for profiles, the doctor directory and open slots.
"""

from datetime import date, timedelta

from lifecycle import AVAILABLE_SLOTS


class TestProfile:
    def test_get_own_profile(self, client, patient):
        profile = client.get("/profile", headers=patient["headers"]).json()["profile"]
        assert profile["id"] == patient["uid"]
        assert profile["name"] == "Alice Smith"

    def test_patient_update(self, client, patient, mock_db):
        response = client.put(
            "/profile/patient",
            json={"name": "Alice Brown", "age": "42", "contactInfo": "555-0100"},
            headers=patient["headers"],
        )

        assert response.status_code == 200
        profile = response.json()["profile"]
        assert profile["age"] == 42
        assert profile["contactInfo"] == "555-0100"
        identity = mock_db.identities.find_one({"_id": patient["uid"]})
        assert identity["displayName"] == "Alice Brown"

    def test_blank_age_clears_it(self, client, patient):
        client.put("/profile/patient", json={"age": 30}, headers=patient["headers"])
        response = client.put("/profile/patient", json={"age": ""}, headers=patient["headers"])
        assert response.json()["profile"]["age"] is None

    def test_invalid_age(self, client, patient):
        response = client.put("/profile/patient", json={"age": "forty"}, headers=patient["headers"])
        assert response.status_code == 400
        assert response.json()["detail"] == "Please enter a valid number for age."

    def test_short_name(self, client, patient):
        response = client.put("/profile/patient", json={"name": " A "}, headers=patient["headers"])
        assert response.status_code == 400

    def test_doctor_update(self, client, doctor):
        response = client.put(
            "/profile/doctor",
            json={"clinicAddress": "99 New Road", "availableHours": {"monday": "9-5"}},
            headers=doctor["headers"],
        )
        profile = response.json()["profile"]
        assert profile["clinicAddress"] == "99 New Road"
        assert profile["availableHours"] == {"monday": "9-5"}
        assert profile["specialization"] == "Cardiologist"

    def test_doctor_cannot_clear_required_fields(self, client, doctor):
        for change in ({"specialization": "  "}, {"clinicAddress": None}):
            response = client.put("/profile/doctor", json=change, headers=doctor["headers"])
            assert response.status_code == 400

        profile = client.get("/profile", headers=doctor["headers"]).json()["profile"]
        assert profile["specialization"] == "Cardiologist"
        assert profile["clinicAddress"] == "1 Main Street"

    def test_wrong_role(self, client, patient, doctor):
        assert client.put("/profile/doctor", json={"name": "Hacker"}, headers=patient["headers"]).status_code == 403
        assert client.put("/profile/patient", json={"age": 3}, headers=doctor["headers"]).status_code == 403

    def test_renamed_patient_shows_in_new_bookings(self, client, book, patient, doctor, future_day):
        client.put("/profile/patient", json={"name": "Alice Brown"}, headers=patient["headers"])
        assert book(patient, doctor, future_day)["patientName"] == "Alice Brown"


class TestDoctorDirectory:
    def test_lists_doctors_only(self, client, doctor, patient):
        body = client.get("/doctors").json()
        assert body["count"] == 1
        entry = body["doctors"][0]
        assert entry == {
            "id": doctor["uid"],
            "name": "Emily Carter",
            "initials": "EC",
            "specialization": "Cardiologist",
            "clinicAddress": "1 Main Street",
        }

    def test_search_by_name_or_specialization(self, client, doctor, register):
        register("doctor", name="John Doe", specialization="Dermatologist")

        assert [d["name"] for d in client.get("/doctors?search=cardio").json()["doctors"]] == ["Emily Carter"]
        assert [d["name"] for d in client.get("/doctors?search=john").json()["doctors"]] == ["John Doe"]
        assert client.get("/doctors?search=(").json()["count"] == 0


class TestSlots:
    def test_all_slots_free(self, client, doctor, future_day):
        body = client.get(f"/doctors/{doctor['uid']}/slots?date={future_day}").json()
        assert body["slots"] == AVAILABLE_SLOTS

    def test_booked_slot_is_hidden(self, client, book, patient, doctor, future_day):
        book(patient, doctor, future_day, time="10:00 AM")
        slots = client.get(f"/doctors/{doctor['uid']}/slots?date={future_day}").json()["slots"]
        assert "10:00 AM" not in slots
        assert len(slots) == len(AVAILABLE_SLOTS) - 1

    def test_canceled_slot_is_free_again(self, client, book, patient, doctor, future_day):
        appointment = book(patient, doctor, future_day, time="10:00 AM")
        client.post(f"/appointments/{appointment['id']}/cancel", headers=patient["headers"])
        slots = client.get(f"/doctors/{doctor['uid']}/slots?date={future_day}").json()["slots"]
        assert "10:00 AM" in slots

    def test_past_date_has_no_slots(self, client, doctor):
        yesterday = (date.today() - timedelta(days=1)).isoformat()
        assert client.get(f"/doctors/{doctor['uid']}/slots?date={yesterday}").json()["slots"] == []

    def test_bad_date(self, client, doctor):
        assert client.get(f"/doctors/{doctor['uid']}/slots?date=soon").status_code == 400

    def test_unknown_doctor(self, client, patient, future_day):
        assert client.get(f"/doctors/{patient['uid']}/slots?date={future_day}").status_code == 404
