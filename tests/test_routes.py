"""HTTP surface tests against an in-memory database."""

import httpx
import pytest
import pytest_asyncio

from auth import create_access_token
from main import create_app


def bearer(actor_id, role):
    return {"Authorization": f"Bearer {create_access_token(actor_id, role)}"}


USER = bearer("user1", "user")
OTHER_USER = bearer("user2", "user")
DOCTOR = bearer("doc1", "doctor")
HOSPITAL = bearer("hosp1", "hospital")
ADMIN = bearer("admin1", "admin")

BOOKING = {"providerId": "doc1", "providerType": "doctor", "slotDate": "1_6_2026", "slotTime": "10:00 am"}


@pytest_asyncio.fixture
async def client(seeded_db):
    app = create_app(db=seeded_db, run_scheduler=False)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def book(client, headers=USER, **overrides):
    response = await client.post("/book-appointment", json={**BOOKING, **overrides}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["appointmentId"]


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestBookAppointment:
    @pytest.mark.asyncio
    async def test_book(self, client, seeded_db):
        response = await client.post("/book-appointment", json=BOOKING, headers=USER)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["appointmentId"].startswith("apt")
        assert body["appointment"]["_id"] == body["appointmentId"]
        assert body["appointment"]["status"] == "pending"
        assert body["appointment"]["userId"] == "user1"
        assert body["appointment"]["docData"]["name"] == "Dr. Asha Rao"

        doctor = await seeded_db["doctors"].find_one({"_id": "doc1"})
        assert doctor["slots_booked"]["1_6_2026"] == ["10:00 am"]

    @pytest.mark.asyncio
    async def test_conflict(self, client):
        await book(client)
        response = await client.post("/book-appointment", json=BOOKING, headers=OTHER_USER)

        assert response.status_code == 409
        assert response.json() == {"success": False, "message": "Selected slot is not available"}

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.post("/book-appointment", json=BOOKING)
        assert response.status_code == 401
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_bad_token(self, client):
        response = await client.post("/book-appointment", json=BOOKING, headers={"Authorization": "Bearer junk"})
        assert response.status_code == 401
        assert response.json()["message"] == "Token invalid or expired"

    @pytest.mark.asyncio
    async def test_providers_cannot_book(self, client):
        response = await client.post("/book-appointment", json=BOOKING, headers=DOCTOR)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_cannot_book_for_someone_else(self, client):
        response = await client.post("/book-appointment", json={**BOOKING, "userId": "user2"}, headers=USER)
        assert response.status_code == 403
        assert response.json()["message"] == "Cannot book on behalf of another user"

    @pytest.mark.asyncio
    async def test_admin_books_for_user(self, client):
        response = await client.post("/book-appointment", json={**BOOKING, "userId": "user2"}, headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["appointment"]["userId"] == "user2"

    @pytest.mark.asyncio
    async def test_missing_slot(self, client):
        response = await client.post("/book-appointment", json={**BOOKING, "slotTime": None}, headers=USER)
        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "Please select date and time"}

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client):
        response = await client.post("/book-appointment", json={**BOOKING, "providerId": "nobody"}, headers=USER)
        assert response.status_code == 404
        assert response.json()["message"] == "Doctor not found"


class TestLifecycleRoutes:
    @pytest.mark.asyncio
    async def test_doctor_rejects_pending(self, client):
        appointment_id = await book(client)

        response = await client.post("/cancel-appointment", json={"appointmentId": appointment_id}, headers=DOCTOR)

        assert response.status_code == 200
        assert response.json()["message"] == "Appointment Rejected"
        assert response.json()["appointment"]["status"] == "rejected"

    @pytest.mark.asyncio
    async def test_user_cancel_frees_slot(self, client):
        appointment_id = await book(client)

        response = await client.post("/cancel-appointment", json={"appointmentId": appointment_id}, headers=USER)
        assert response.status_code == 200
        assert response.json()["appointment"]["cancelledBy"] == "user"

        availability = await client.post(
            "/check-availability", json={"providerId": "doc1", "providerType": "doctor", "slotDate": "1_6_2026"}
        )
        assert availability.json()["slotsBooked"] == []

    @pytest.mark.asyncio
    async def test_repeat_cancel_conflicts(self, client):
        appointment_id = await book(client)
        await client.post("/cancel-appointment", json={"appointmentId": appointment_id}, headers=USER)

        response = await client.post("/cancel-appointment", json={"appointmentId": appointment_id}, headers=USER)
        assert response.status_code == 409
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_admin_cancel(self, client):
        appointment_id = await book(client)

        response = await client.post("/cancel-appointment", json={"appointmentId": appointment_id}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["message"] == "Appointment cancelled"
        assert response.json()["appointment"]["status"] == "cancelled"
        assert response.json()["appointment"]["cancelledBy"] is None

    @pytest.mark.asyncio
    async def test_other_user_cannot_cancel(self, client):
        appointment_id = await book(client)
        response = await client.post("/cancel-appointment", json={"appointmentId": appointment_id}, headers=OTHER_USER)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_complete(self, client):
        appointment_id = await book(client)

        response = await client.post("/complete-appointment", json={"appointmentId": appointment_id}, headers=DOCTOR)

        assert response.status_code == 200
        assert response.json()["message"] == "Appointment Booked"
        assert response.json()["appointment"]["isCompleted"] is True

    @pytest.mark.asyncio
    async def test_user_cannot_complete(self, client):
        appointment_id = await book(client)
        response = await client.post("/complete-appointment", json={"appointmentId": appointment_id}, headers=USER)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, client):
        response = await client.post("/complete-appointment", json={"appointmentId": "aptmissing"}, headers=DOCTOR)
        assert response.status_code == 404
        assert response.json()["message"] == "Appointment not found"

    @pytest.mark.asyncio
    async def test_missing_body_field(self, client):
        response = await client.post("/complete-appointment", json={}, headers=DOCTOR)
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "appointmentId" in response.json()["message"]

    @pytest.mark.asyncio
    async def test_assign_doctor(self, client):
        appointment_id = await book(client, providerId="hosp1", providerType="hospital")

        response = await client.post(
            "/assign-doctor", json={"appointmentId": appointment_id, "doctorId": "doc2"}, headers=HOSPITAL
        )

        assert response.status_code == 200
        assert response.json()["appointment"]["docId"] == "doc2"
        assert response.json()["appointment"]["hospitalData"]["name"] == "City Care Hospital"


class TestReadRoutes:
    @pytest.mark.asyncio
    async def test_list_scoped_to_caller(self, client):
        mine = await book(client)
        await book(client, headers=OTHER_USER, slotTime="11:00 am")

        response = await client.get("/appointments", headers=USER)

        assert response.status_code == 200
        assert [a["_id"] for a in response.json()["appointments"]] == [mine]

    @pytest.mark.asyncio
    async def test_admin_sees_everything(self, client):
        await book(client)
        await book(client, headers=OTHER_USER, slotTime="11:00 am")

        response = await client.get("/appointments", headers=ADMIN)
        assert len(response.json()["appointments"]) == 2

    @pytest.mark.asyncio
    async def test_check_availability(self, client):
        await book(client)

        response = await client.post("/check-availability", json={"providerId": "doc1", "providerType": "doctor"})

        assert response.status_code == 200
        assert response.json()["available"] is True
        assert response.json()["slotsBooked"] == {"1_6_2026": ["10:00 am"]}

    @pytest.mark.asyncio
    async def test_check_availability_bad_type(self, client):
        response = await client.post("/check-availability", json={"providerId": "doc1", "providerType": "clinic"})
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid provider type"

    @pytest.mark.asyncio
    async def test_dashboard(self, client):
        accepted = await book(client)
        await book(client, headers=OTHER_USER, slotTime="11:00 am")
        await client.post("/complete-appointment", json={"appointmentId": accepted}, headers=DOCTOR)

        response = await client.get("/dashboard", headers=DOCTOR)

        assert response.status_code == 200
        data = response.json()["dashData"]
        assert data["appointments"] == 2
        assert data["bookedCount"] == 1
        assert data["pendingCount"] == 1
        assert data["patients"] == 2
        assert data["earnings"] == 500

    @pytest.mark.asyncio
    async def test_assigned_doctor_does_not_earn_hospital_fee(self, client):
        appointment_id = await book(client, providerId="hosp1", providerType="hospital")
        await client.post("/assign-doctor", json={"appointmentId": appointment_id, "doctorId": "doc2"}, headers=HOSPITAL)
        await client.post("/complete-appointment", json={"appointmentId": appointment_id}, headers=HOSPITAL)

        doctor = (await client.get("/dashboard", headers=bearer("doc2", "doctor"))).json()["dashData"]
        hospital = (await client.get("/dashboard", headers=HOSPITAL)).json()["dashData"]
        admin = (await client.get("/dashboard", headers=ADMIN)).json()["dashData"]

        assert doctor["appointments"] == 1
        assert doctor["bookedCount"] == 1
        assert doctor["earnings"] == 0
        assert hospital["earnings"] == 300
        assert admin["earnings"] == 300

    @pytest.mark.asyncio
    async def test_users_have_no_dashboard(self, client):
        response = await client.get("/dashboard", headers=USER)
        assert response.status_code == 403
