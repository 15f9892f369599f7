import uuid
from typing import Optional

from pymongo import DESCENDING, ReturnDocument

from errors import NotFoundError
from models.appointment_model import PROVIDER_TYPES, Appointment, ProviderSnapshot
from models.models import Actor
from mongo import APPOINTMENTS, translate_store_errors

OVERDUE_CANDIDATES = {"status": "pending", "cancelled": False, "isCompleted": False}
UNRELEASED = {"cancelled": True, "slotReleased": False}


def new_appointment_id() -> str:
    return f"apt{uuid.uuid4().hex[:12]}"


def actor_scope(actor: Actor) -> dict:
    """Mongo filter selecting the appointments an actor may see."""
    if actor.role == "user":
        return {"userId": actor.id}
    if actor.role == "doctor":
        return {"docId": actor.id}
    if actor.role == "hospital":
        return {"hospitalId": actor.id}
    return {}


class AppointmentStore:
    def __init__(self, db):
        self.collection = db[APPOINTMENTS]

    @translate_store_errors("save appointment")
    async def insert(self, appointment: Appointment) -> Appointment:
        await self.collection.insert_one(appointment.to_document())
        return appointment

    @translate_store_errors("load appointment")
    async def find(self, appointment_id: str) -> Optional[Appointment]:
        doc = await self.collection.find_one({"_id": appointment_id})
        return Appointment.model_validate(doc) if doc else None

    async def get(self, appointment_id: str) -> Appointment:
        appointment = await self.find(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found")
        return appointment

    @translate_store_errors("list appointments")
    async def list_for_actor(self, actor: Actor) -> list:
        cursor = self.collection.find(actor_scope(actor), sort=[("createdAt", DESCENDING)])
        return [Appointment.model_validate(doc) async for doc in cursor]

    @translate_store_errors("list pending appointments")
    async def overdue_candidates(self) -> list:
        return [doc async for doc in self.collection.find(OVERDUE_CANDIDATES)]

    @translate_store_errors("update appointment")
    async def transition(self, appointment_id: str, from_statuses, changes: dict) -> Optional[Appointment]:
        """Apply ``changes`` only while the appointment is in one of ``from_statuses``.

        Returns the updated appointment, or None when the guard did not match.
        """
        doc = await self.collection.find_one_and_update(
            {"_id": appointment_id, "status": {"$in": list(from_statuses)}},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        return Appointment.model_validate(doc) if doc else None

    @translate_store_errors("record slot release")
    async def record_release(self, appointment_id: str, provider_id: str):
        await self.collection.update_one({"_id": appointment_id}, {"$addToSet": {"releasedFrom": provider_id}})

    @translate_store_errors("record slot release")
    async def mark_released(self, appointment_id: str):
        await self.collection.update_one({"_id": appointment_id}, {"$set": {"slotReleased": True}})

    @translate_store_errors("list unreleased appointments")
    async def unreleased(self) -> list:
        """Cancelled appointments whose ledger entries are not all freed yet."""
        cursor = self.collection.find(UNRELEASED)
        return [Appointment.model_validate(doc) async for doc in cursor]

    @translate_store_errors("assign doctor")
    async def attach_doctor(self, appointment_id: str, doctor_id: str,
                            doctor: ProviderSnapshot) -> Optional[Appointment]:
        doc = await self.collection.find_one_and_update(
            {
                "_id": appointment_id,
                "providerType": "hospital",
                "docId": {"$exists": False},
                "status": {"$in": ["pending", "booked"]},
            },
            {"$set": {"docId": doctor_id, "docData": doctor.model_dump(exclude_none=True)}},
            return_document=ReturnDocument.AFTER,
        )
        return Appointment.model_validate(doc) if doc else None


def summarize(appointments: list, role: Optional[str] = None) -> dict:
    """Dashboard figures for a provider or admin panel.

    Earnings only count appointments booked with the provider itself, so a
    doctor assigned to a hospital appointment does not earn the hospital's fee.
    """
    booked = [a for a in appointments if a.status == "booked"]
    paid = [a for a in booked if role not in PROVIDER_TYPES or a.provider_type == role]
    return {
        "appointments": len(appointments),
        "bookedCount": len(booked),
        "pendingCount": sum(1 for a in appointments if a.status == "pending"),
        "cancelledCount": sum(1 for a in appointments if a.cancelled),
        "patients": len({a.user_id for a in appointments}),
        "earnings": sum(a.amount for a in paid),
        "latestAppointments": [a.for_client() for a in appointments[:5]],
    }
