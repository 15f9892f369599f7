import copy

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from appointment_store import AppointmentStore
from booking import BookingEngine
from directory import ProviderDirectory, UserDirectory
from lifecycle import LifecycleManager
from notifications import NotificationSink
from scheduler import OverdueScheduler
from slot_ledger import SlotLedger

DOCTOR = {
    "_id": "doc1",
    "name": "Dr. Asha Rao",
    "email": "asha@example.com",
    "password": "hashed",
    "image": "https://img.example.com/asha.png",
    "speciality": "Cardiologist",
    "degree": "MBBS",
    "experience": "8 Years",
    "about": "Heart specialist",
    "fees": 500,
    "address": {"line1": "12 Park Street"},
    "available": True,
    "slots_booked": {},
}

SECOND_DOCTOR = {
    **DOCTOR,
    "_id": "doc2",
    "name": "Dr. Vikram Sen",
    "email": "vikram@example.com",
    "speciality": "Neurologist",
    "hospitalId": "hosp1",
}

HOSPITAL = {
    "_id": "hosp1",
    "name": "City Care Hospital",
    "email": "care@example.com",
    "password": "hashed",
    "image": "https://img.example.com/city.png",
    "speciality": "General Hospital",
    "degree": "NABH",
    "experience": 20,
    "about": "Multi speciality hospital",
    "fees": 300,
    "address": {"line1": "1 Main Road"},
    "available": True,
    "slots_booked": {},
}

USER = {
    "_id": "user1",
    "name": "Priya Nair",
    "email": "priya@example.com",
    "password": "hashed",
    "image": "https://img.example.com/priya.png",
    "phone": "9999999999",
}

OTHER_USER = {**USER, "_id": "user2", "name": "Rahul Das", "email": "rahul@example.com"}


@pytest.fixture
def db():
    return AsyncMongoMockClient()["lifesync_test"]


@pytest_asyncio.fixture
async def seeded_db(db):
    await db["doctors"].insert_many(copy.deepcopy([DOCTOR, SECOND_DOCTOR]))
    await db["hospitals"].insert_one(copy.deepcopy(HOSPITAL))
    await db["users"].insert_many(copy.deepcopy([USER, OTHER_USER]))
    return db


class Services:
    def __init__(self, db, notification_timeout=5):
        self.db = db
        self.providers = ProviderDirectory(db)
        self.users = UserDirectory(db)
        self.ledger = SlotLedger(self.providers)
        self.appointments = AppointmentStore(db)
        self.notifier = NotificationSink(db, timeout=notification_timeout)
        self.lifecycle = LifecycleManager(self.appointments, self.ledger, self.providers, self.notifier)
        self.booking = BookingEngine(self.providers, self.users, self.ledger, self.appointments, self.notifier)
        self.scheduler = OverdueScheduler(self.appointments, self.lifecycle, interval_seconds=3600)

    async def slots(self, provider_type, provider_id, slot_date):
        return await self.ledger.booked(provider_id, provider_type, slot_date)


@pytest.fixture
def services(seeded_db):
    return Services(seeded_db)
